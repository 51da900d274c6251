"""Error taxonomy for ledger reads, writes and workflows.

Input and duplicate checks raise before any write is attempted. Wallet and
ledger failures during a write propagate to the caller unchanged.
"""

from typing import Optional


class ScrowError(Exception):
    """Base class for all errors raised by this package."""


class NoSigningIdentity(ScrowError):
    """Raised when a write is requested but no signer is configured."""


class InvalidInput(ScrowError):
    """Raised for malformed addresses, amounts, token pairs or durations."""


class Unauthorized(ScrowError):
    """Raised when a privileged action is attempted by a non-owner."""


class DuplicateRegistration(ScrowError):
    """Raised when a token (address, name or symbol) is already whitelisted."""


class AllowanceInsufficient(ScrowError):
    """Delegated allowance is below the required amount.

    Internal only: the allowance coordinator always resolves it.
    """

    def __init__(self, token: str, current: int, required: int):
        self.token = token
        self.current = current
        self.required = required
        super().__init__(f"Allowance for {token} is {current}, need {required}")


class TransactionRejected(ScrowError):
    """Raised when the signer declines or fails to sign a transaction."""


class TransactionReverted(ScrowError):
    """Raised when the ledger rejects a call (business-rule revert)."""

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ):
        self.reason = reason
        self.tx_hash = tx_hash
        super().__init__(message)


class MetadataUnavailable(ScrowError):
    """Raised when a token does not expose name/symbol/decimals."""


class LedgerTransportError(ScrowError):
    """Raised on network or RPC failures that are not ledger reverts."""


class ConfirmationTimeout(LedgerTransportError):
    """Raised when a receipt is not observed within the configured timeout."""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"Transaction {tx_hash} not confirmed within {timeout}s")
