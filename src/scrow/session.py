"""Explicit wiring of ledger client, caches, repositories and schedulers.

There is no ambient connection: one LedgerClient is built here and handed to
every component that needs it.
"""

import logging
from decimal import Decimal
from typing import Optional, Union

import httpx

from scrow.config import Settings, get_settings
from scrow.ledger.client import LedgerClient
from scrow.ledger.models import MetadataResult, Snapshot, TransactionReceipt
from scrow.services.allowance import AllowanceCoordinator
from scrow.services.metadata_cache import TokenMetadataCache
from scrow.services.orchestrator import TransactionOrchestrator, Workflow
from scrow.services.polling import DEFAULT_INTERVAL, PollingScheduler
from scrow.services.repository import BalanceRepository, OperationRepository
from scrow.signing.base import SignerBackend
from scrow.signing.factory import get_signer

logger = logging.getLogger(__name__)


class EscrowSession:
    """Everything a front end needs: snapshots to read, workflows to call."""

    def __init__(
        self,
        ledger: LedgerClient,
        poll_interval: float = DEFAULT_INTERVAL,
        min_duration: int = 3600,
        audit_size: int = 200,
        retain_on_empty: bool = True,
    ):
        self.ledger = ledger
        self.metadata = TokenMetadataCache(ledger.reader)
        self.allowances = AllowanceCoordinator(ledger)
        self.orchestrator = TransactionOrchestrator(
            ledger,
            self.allowances,
            self.metadata,
            min_duration=min_duration,
            audit_size=audit_size,
        )
        self.operations = OperationRepository(ledger.reader, retain_on_empty=retain_on_empty)
        self.balances = BalanceRepository(ledger.reader, self.metadata)

        self.schedulers = {
            "operations": PollingScheduler(
                "operations",
                self.operations.fetch_operations,
                self.operations.apply_operations,
                interval=poll_interval,
            ),
            "tokens": PollingScheduler(
                "tokens",
                self.operations.fetch_active_tokens,
                self.operations.apply_active_tokens,
                interval=poll_interval,
            ),
            "balances": PollingScheduler(
                "balances",
                lambda: self.balances.fetch(self.ledger.account),
                self.balances.apply,
                interval=poll_interval,
            ),
            "metadata": PollingScheduler(
                "metadata",
                self._fetch_metadata,
                # Only warms the cache; entries are immutable, so there is no
                # snapshot for the generation check to guard
                lambda result, generation: None,
                interval=poll_interval,
            ),
        }
        self.orchestrator.on_success(self._after_write)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        signer: Optional[SignerBackend] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "EscrowSession":
        settings = settings or get_settings()
        if signer is None:
            signer = get_signer(settings)
        ledger = LedgerClient.from_settings(settings, signer=signer, transport=transport)
        return cls(
            ledger,
            poll_interval=settings.poll_interval,
            min_duration=settings.min_duration,
            audit_size=settings.audit_log_size,
        )

    # ======================
    # Lifecycle
    # ======================

    def start(self) -> None:
        for scheduler in self.schedulers.values():
            scheduler.start()

    def set_visible(self, visible: bool) -> None:
        for scheduler in self.schedulers.values():
            scheduler.set_visible(visible)

    async def stop(self) -> None:
        for scheduler in self.schedulers.values():
            await scheduler.stop()

    async def __aenter__(self) -> "EscrowSession":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False

    # ======================
    # Snapshots
    # ======================

    @property
    def account(self) -> Optional[str]:
        return self.ledger.account

    @property
    def operations_snapshot(self) -> Snapshot:
        return self.operations.operations

    @property
    def active_tokens(self) -> Snapshot:
        return self.operations.active_tokens

    @property
    def user_balances(self) -> Snapshot:
        return self.balances.user_balances

    @property
    def escrow_balances(self) -> Snapshot:
        return self.balances.escrow_balances

    def token_metadata(self, address: str) -> Optional[MetadataResult]:
        return self.metadata.peek(address)

    # ======================
    # Writes
    # ======================

    async def create_operation(
        self,
        token_a: str,
        token_b: str,
        amount_a: Union[str, Decimal],
        amount_b: Union[str, Decimal],
        duration: Optional[int] = None,
    ) -> TransactionReceipt:
        return await self.orchestrator.create_operation(
            token_a, token_b, amount_a, amount_b, duration
        )

    async def complete_operation(self, operation_id: int) -> TransactionReceipt:
        return await self.orchestrator.complete_operation(operation_id)

    async def cancel_operation(self, operation_id: int) -> TransactionReceipt:
        return await self.orchestrator.cancel_operation(operation_id)

    async def add_token(self, token: str) -> TransactionReceipt:
        return await self.orchestrator.add_token(token)

    async def _fetch_metadata(self) -> dict[str, MetadataResult]:
        addresses = list(self.operations.active_tokens)
        for op in self.operations.operations:
            addresses.extend((op.token_a, op.token_b))
        return await self.metadata.prefetch(addresses)

    def _after_write(self, workflow: Workflow) -> None:
        logger.debug(f"Refreshing after {workflow.description}")
        self.schedulers["operations"].refresh_now()
        self.schedulers["balances"].refresh_now()
        if workflow.kind == "addToken":
            self.schedulers["tokens"].refresh_now()

    async def wait_idle(self) -> None:
        """Wait for refreshes already spawned (e.g. after a write) to finish."""
        for scheduler in self.schedulers.values():
            await scheduler.wait_idle()
