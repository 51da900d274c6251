"""Tests for settings."""

from scrow.config import Settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings(private_key=None)
        assert settings.rpc_url == "http://127.0.0.1:8545"
        assert settings.poll_interval == 8.0
        assert settings.min_duration == 3600
        assert settings.audit_log_size == 200
        assert not settings.has_signer

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SCROW_POLL_INTERVAL", "2.5")
        monkeypatch.setenv("SCROW_SWAP_ADDRESS", "0x" + "12" * 20)
        settings = Settings()
        assert settings.poll_interval == 2.5
        assert settings.swap_address == "0x" + "12" * 20

    def test_safe_dict_redacts_key(self):
        settings = Settings(private_key="0x" + "11" * 32)
        safe = settings.get_safe_dict()
        assert safe["private_key"] == "***"
        assert "11" * 32 not in str(safe)
