"""Local signing backend.

Uses an in-memory private key. Suitable for development chains and small
hot wallets.

WARNING: The private key is held in memory for the process lifetime.
"""

import logging

from eth_account import Account

from scrow.signing.base import KeyNotFoundError, SignerBackend, SignerType, SigningError

logger = logging.getLogger(__name__)


class LocalSigner(SignerBackend):
    """Signs transactions with an eth-account key held in memory."""

    def __init__(self, private_key: str):
        super().__init__(SignerType.LOCAL)
        if not private_key or not private_key.strip():
            raise KeyNotFoundError("No private key provided")
        try:
            self._account = Account.from_key(private_key.strip())
        except Exception as e:
            raise KeyNotFoundError(f"Invalid private key: {e}") from e
        logger.info(f"Loaded local signer for {self.address}")

    @property
    def address(self) -> str:
        return self._account.address.lower()

    async def sign_transaction(self, tx: dict) -> str:
        """Sign a transaction with the local key."""
        try:
            signed = self._account.sign_transaction(tx)
        except Exception as e:
            logger.error(f"Local signing failed: {e}")
            raise SigningError(str(e)) from e
        return "0x" + bytes(signed.raw_transaction).hex()
