"""Read-side projections of ledger state.

Each projection is split into fetch (talks to the ledger, no side effects)
and apply (replaces the held snapshot in one assignment). The polling
scheduler calls them separately so a stale fetch can be dropped before it is
applied.
"""

import logging
import time
from typing import Iterable, Optional

from scrow.ledger.client import LedgerReader, normalize_address
from scrow.ledger.models import Operation, OperationStatus, Snapshot, TokenBalance, Unavailable
from scrow.services.metadata_cache import TokenMetadataCache

logger = logging.getLogger(__name__)


class OperationRepository:
    """Snapshots of all escrow operations and of the active token whitelist."""

    def __init__(self, reader: LedgerReader, retain_on_empty: bool = True):
        """Initialize repository.

        Args:
            reader: Ledger read binding
            retain_on_empty: Keep the previous non-empty operation snapshot
                when a fetch returns nothing (treated as a transient glitch)
        """
        self._reader = reader
        self.retain_on_empty = retain_on_empty
        self._operations: Snapshot = Snapshot()
        self._tokens: Snapshot = Snapshot()

    @property
    def operations(self) -> Snapshot:
        return self._operations

    @property
    def active_tokens(self) -> Snapshot:
        return self._tokens

    # ======================
    # Operations
    # ======================

    async def fetch_operations(self) -> list[Operation]:
        """Full operation set, newest id first."""
        operations = await self._reader.get_all_operations()
        return sorted(operations, key=lambda op: op.id, reverse=True)

    def apply_operations(self, operations: Iterable[Operation], generation: int = 0) -> Snapshot:
        """Replace the snapshot, honoring the empty-result guard.

        An operation already seen in a terminal state is never replaced by an
        Open copy of itself from a lagging read.
        """
        operations = tuple(operations)
        previous = self._operations

        if not operations and not previous.is_empty and self.retain_on_empty:
            logger.debug(
                f"Ignoring empty operation set; keeping {len(previous)} from previous snapshot"
            )
            return previous

        settled = {op.id: op for op in previous if op.status.is_terminal}
        merged = []
        for op in operations:
            seen = settled.get(op.id)
            if seen is not None and op.status is OperationStatus.OPEN:
                logger.debug(f"Operation {op.id} read as open after {seen.status.value}; keeping")
                merged.append(seen)
            else:
                merged.append(op)

        self._operations = Snapshot(items=tuple(merged), fetched_at=time.time(), generation=generation)
        return self._operations

    async def refresh(self) -> tuple:
        """Fetch and apply; returns the retained operations, newest first."""
        return self.apply_operations(await self.fetch_operations()).items

    def get(self, operation_id: int) -> Optional[Operation]:
        for op in self._operations:
            if op.id == operation_id:
                return op
        return None

    def by_status(self, status: OperationStatus) -> list[Operation]:
        return [op for op in self._operations if op.status is status]

    def open(self) -> list[Operation]:
        return self.by_status(OperationStatus.OPEN)

    def completed(self) -> list[Operation]:
        return self.by_status(OperationStatus.COMPLETED)

    def cancelled(self) -> list[Operation]:
        return self.by_status(OperationStatus.CANCELLED)

    # ======================
    # Active whitelist
    # ======================

    async def fetch_active_tokens(self) -> list[str]:
        return await self._reader.get_active_allowed_tokens()

    def apply_active_tokens(self, tokens: Iterable[str], generation: int = 0) -> Snapshot:
        self._tokens = Snapshot(items=tuple(tokens), fetched_at=time.time(), generation=generation)
        return self._tokens

    async def refresh_tokens(self) -> tuple:
        return self.apply_active_tokens(await self.fetch_active_tokens()).items


def can_cancel(operation: Operation, account: Optional[str]) -> bool:
    """Open operations can be cancelled by their maker."""
    return bool(account) and operation.is_open and operation.maker == account.lower()


def can_complete(operation: Operation, account: Optional[str]) -> bool:
    """Open operations can be completed by anyone except their maker."""
    return bool(account) and operation.is_open and operation.maker != account.lower()


class BalanceRepository:
    """Escrowed balances per user and holdings of the escrow contract."""

    def __init__(self, reader: LedgerReader, metadata: TokenMetadataCache):
        self._reader = reader
        self._metadata = metadata
        self._user: Snapshot = Snapshot()
        self._escrow: Snapshot = Snapshot()

    @property
    def user_balances(self) -> Snapshot:
        return self._user

    @property
    def escrow_balances(self) -> Snapshot:
        return self._escrow

    async def fetch_user_balances(self, user: str) -> list[TokenBalance]:
        user = normalize_address(user, "user")
        raw = await self._reader.get_user_balances(user)
        metas = await self._metadata.prefetch(token for token, _ in raw)
        out = []
        for token, amount in raw:
            meta = metas[token]
            decimals = 18 if isinstance(meta, Unavailable) else meta.decimals
            out.append(TokenBalance(token=token, raw=amount, decimals=decimals))
        return out

    async def fetch_escrow_balances(self) -> list[TokenBalance]:
        return await self._reader.get_escrow_balances()

    async def fetch(self, user: Optional[str]) -> tuple[list[TokenBalance], list[TokenBalance]]:
        user_balances = await self.fetch_user_balances(user) if user else []
        return user_balances, await self.fetch_escrow_balances()

    def apply(
        self,
        balances: tuple[list[TokenBalance], list[TokenBalance]],
        generation: int = 0,
    ) -> None:
        user_balances, escrow_balances = balances
        now = time.time()
        self._user = Snapshot(items=tuple(user_balances), fetched_at=now, generation=generation)
        self._escrow = Snapshot(items=tuple(escrow_balances), fetched_at=now, generation=generation)
