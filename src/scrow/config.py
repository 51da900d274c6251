"""Application configuration using pydantic-settings.

Values come from the environment (or a local .env file). Components never
read settings themselves; the session factory and CLI pass them in.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SCROW_",
        extra="ignore",
    )

    # ======================
    # Ledger connection
    # ======================
    rpc_url: str = Field(default="http://127.0.0.1:8545", description="JSON-RPC endpoint")
    chain_id: int = Field(default=31337, description="EVM chain ID used when signing")
    rpc_timeout: float = Field(default=15.0, description="Per-request RPC timeout in seconds")

    # ======================
    # Contracts
    # ======================
    swap_address: str = Field(
        default="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        description="Escrow (TokenSwap) contract address",
    )

    # ======================
    # Signing identity
    # ======================
    private_key: Optional[str] = Field(
        default=None, description="Hex private key; unset means read-only"
    )

    # ======================
    # Polling / confirmation
    # ======================
    poll_interval: float = Field(default=8.0, description="Seconds between refresh ticks")
    confirmation_timeout: float = Field(
        default=120.0, description="Seconds to wait for a transaction receipt"
    )
    confirmation_poll_interval: float = Field(
        default=2.0, description="Seconds between receipt lookups"
    )

    # ======================
    # Domain rules
    # ======================
    min_duration: int = Field(default=3600, description="Minimum operation duration (seconds)")
    audit_log_size: int = Field(default=200, description="Audit trail capacity")
    gas_limit_multiplier: float = Field(
        default=1.2, description="Headroom applied to eth_estimateGas"
    )

    @property
    def has_signer(self) -> bool:
        """Check if a signing key is configured."""
        return bool(self.private_key and self.private_key.strip())

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "rpc_url": self.rpc_url,
            "chain_id": self.chain_id,
            "swap_address": self.swap_address,
            "private_key": "***" if self.has_signer else "(not set)",
            "poll_interval": self.poll_interval,
            "confirmation_timeout": self.confirmation_timeout,
            "min_duration": self.min_duration,
            "audit_log_size": self.audit_log_size,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
