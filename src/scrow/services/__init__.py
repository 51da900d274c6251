"""Caches, projections, schedulers and write workflows built on the ledger client."""

from scrow.services.allowance import AllowanceCoordinator, AllowanceResult
from scrow.services.metadata_cache import TokenMetadataCache
from scrow.services.orchestrator import (
    AuditTrail,
    Phase,
    PhaseState,
    TransactionOrchestrator,
    Workflow,
)
from scrow.services.polling import PollingScheduler, PollState
from scrow.services.repository import BalanceRepository, OperationRepository

__all__ = [
    "AllowanceCoordinator",
    "AllowanceResult",
    "AuditTrail",
    "BalanceRepository",
    "OperationRepository",
    "Phase",
    "PhaseState",
    "PollState",
    "PollingScheduler",
    "TokenMetadataCache",
    "TransactionOrchestrator",
    "Workflow",
]
