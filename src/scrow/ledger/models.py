"""Ledger-derived value types.

Everything here is a read-only, point-in-time copy of ledger state. Addresses
are stored lower-cased; amounts are raw integers in the token's smallest unit.
"""

import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class OperationStatus(str, Enum):
    """Status of an escrow operation."""

    OPEN = "open"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def from_code(cls, code: int) -> "OperationStatus":
        """Map the ledger's uint8 status code."""
        try:
            return _STATUS_CODES[int(code)]
        except KeyError:
            raise ValueError(f"Unknown operation status code: {code}")

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.OPEN


_STATUS_CODES = {
    0: OperationStatus.OPEN,
    1: OperationStatus.COMPLETED,
    2: OperationStatus.CANCELLED,
}


@dataclass(frozen=True)
class Operation:
    """A proposed or settled escrow swap."""

    id: int
    maker: str
    taker: str
    token_a: str
    token_b: str
    amount_a: int
    amount_b: int
    status: OperationStatus
    created_at: int = 0
    completed_at: int = 0
    cancelled_at: int = 0
    expires_at: int = 0

    @property
    def is_open(self) -> bool:
        return self.status is OperationStatus.OPEN

    @property
    def has_taker(self) -> bool:
        return self.taker != ZERO_ADDRESS

    def is_expired(self, now: Optional[float] = None) -> bool:
        """True if the operation is open and past its expiry timestamp."""
        if not self.is_open or not self.expires_at:
            return False
        return (now if now is not None else time.time()) >= self.expires_at


@dataclass(frozen=True)
class TokenMetadata:
    """Descriptive ERC-20 data for one token."""

    address: str
    name: str
    symbol: str
    decimals: int

    is_available = True

    @property
    def label(self) -> str:
        return self.symbol.strip() or self.name.strip() or truncate_address(self.address)


@dataclass(frozen=True)
class Unavailable:
    """Metadata could not be read for this token."""

    address: str
    reason: str = ""

    is_available = False

    @property
    def label(self) -> str:
        return truncate_address(self.address)


MetadataResult = Union[TokenMetadata, Unavailable]


@dataclass(frozen=True)
class AllowedToken:
    """One whitelist entry and its activity flag."""

    address: str
    active: bool


@dataclass(frozen=True)
class TokenBalance:
    """Raw balance of a token together with the decimals used to format it."""

    token: str
    raw: int
    decimals: int

    @property
    def amount(self) -> Decimal:
        return Decimal(self.raw).scaleb(-self.decimals)


@dataclass(frozen=True)
class TransactionReceipt:
    """Confirmation receipt of a mined transaction."""

    tx_hash: str
    block_number: int
    gas_used: int
    status: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


T = TypeVar("T")


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    """Immutable copy of a projection plus when it was taken."""

    items: tuple = ()
    fetched_at: float = 0.0
    generation: int = 0

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items


def truncate_address(address: str, start: int = 6, end: int = 4) -> str:
    """Shorten an address for display, e.g. 0xe7f1…0512."""
    if not address:
        return "-"
    if len(address) <= start + end:
        return address
    return f"{address[:start]}…{address[-end:]}"
