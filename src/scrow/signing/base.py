"""Base interfaces for transaction signing.

Signing flow:
1. Ledger writer builds an unsigned transaction dict
2. Signer returns the raw signed transaction (private key never leaves it)
3. Writer broadcasts the raw transaction
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum

logger = logging.getLogger(__name__)


class SignerType(str, Enum):
    """Type of signing backend."""
    LOCAL = "local"           # Private key in memory (hot wallet)


class SignerBackend(ABC):
    """Abstract base class for signing identities.

    Implementations should NEVER expose raw private keys.
    """

    def __init__(self, signer_type: SignerType):
        self.signer_type = signer_type

    @property
    @abstractmethod
    def address(self) -> str:
        """Lower-cased address of the signing account."""
        pass

    @abstractmethod
    async def sign_transaction(self, tx: dict) -> str:
        """Sign an unsigned transaction.

        Args:
            tx: Transaction fields (nonce, gasPrice, gas, to, value, data, chainId)

        Returns:
            Raw signed transaction as 0x-prefixed hex

        Raises:
            SigningError: If the signer declines or cannot sign
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.signer_type.value})"


class SigningError(Exception):
    """Exception raised when signing fails."""
    pass


class KeyNotFoundError(SigningError):
    """Exception raised when signing key is not found."""
    pass
