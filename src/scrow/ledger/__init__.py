"""Ledger bindings and value types."""

from scrow.ledger.client import (
    LedgerClient,
    LedgerReader,
    LedgerWriter,
    PendingTransaction,
    normalize_address,
)
from scrow.ledger.models import (
    ZERO_ADDRESS,
    AllowedToken,
    MetadataResult,
    Operation,
    OperationStatus,
    Snapshot,
    TokenBalance,
    TokenMetadata,
    TransactionReceipt,
    Unavailable,
)
from scrow.ledger.rpc import JsonRpcTransport

__all__ = [
    "ZERO_ADDRESS",
    "AllowedToken",
    "JsonRpcTransport",
    "LedgerClient",
    "LedgerReader",
    "LedgerWriter",
    "MetadataResult",
    "Operation",
    "OperationStatus",
    "PendingTransaction",
    "Snapshot",
    "TokenBalance",
    "TokenMetadata",
    "TransactionReceipt",
    "Unavailable",
    "normalize_address",
]
