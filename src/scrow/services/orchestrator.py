"""Write workflows against the escrow contract.

Create and complete are two separate ledger transactions: an allowance grant
followed by the escrow action. There is no atomicity across them. If the
grant confirms and the action then fails, the allowance stays on the ledger
until consumed or revoked; it is not rolled back. Each Workflow exposes its
two phases so callers can see exactly how far it got.

Validation and duplicate checks run in the prepare_* step, before any write.
"""

import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from scrow.errors import DuplicateRegistration, InvalidInput, Unauthorized
from scrow.ledger.client import LedgerClient, PendingTransaction, normalize_address
from scrow.ledger.models import TransactionReceipt, Unavailable
from scrow.services.allowance import AllowanceCoordinator, AllowanceResult
from scrow.services.metadata_cache import TokenMetadataCache
from scrow.services.units import MAX_UINT256, parse_units

logger = logging.getLogger(__name__)

DEFAULT_MIN_DURATION = 3600
DEFAULT_AUDIT_SIZE = 200


class PhaseState(str, Enum):
    """State of one workflow phase."""

    PENDING = "pending"
    SKIPPED = "skipped"        # No allowance needed, or workflow has no grant step
    SUBMITTED = "submitted"    # Broadcast, awaiting confirmation
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class Phase:
    """One observable step of a workflow."""

    name: str
    state: PhaseState = PhaseState.PENDING
    tx_hash: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def done(self) -> bool:
        return self.state in (PhaseState.SKIPPED, PhaseState.CONFIRMED)


@dataclass(frozen=True)
class AuditEntry:
    """One line of the advisory audit trail."""

    timestamp: float
    action: str
    state: str
    tx_hash: Optional[str] = None

    def __str__(self) -> str:
        suffix = f" tx={self.tx_hash}" if self.tx_hash else ""
        return f"{self.action} {self.state}{suffix}"


class AuditTrail:
    """Bounded, most-recent-first log of attempted actions.

    Advisory only; nothing reads it for correctness.
    """

    def __init__(self, maxlen: int = DEFAULT_AUDIT_SIZE):
        self._entries: deque[AuditEntry] = deque(maxlen=maxlen)

    def record(self, action: str, state: str, tx_hash: Optional[str] = None) -> AuditEntry:
        entry = AuditEntry(time.time(), action, state, tx_hash)
        self._entries.appendleft(entry)
        logger.info(str(entry))
        return entry

    def entries(self) -> list[AuditEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


AllowanceStep = Callable[[], Awaitable[AllowanceResult]]
ActionStep = Callable[[], Awaitable[PendingTransaction]]
TransitionHook = Callable[["Workflow", Phase], None]


class Workflow:
    """A grant-then-act write sequence with individually observable phases."""

    def __init__(
        self,
        kind: str,
        description: str,
        action_step: ActionStep,
        allowance_step: Optional[AllowanceStep] = None,
        on_transition: Optional[TransitionHook] = None,
    ):
        self.kind = kind
        self.description = description
        self.allowance = Phase("allowance")
        self.action = Phase(kind)
        self.allowance_result: Optional[AllowanceResult] = None
        self.receipt: Optional[TransactionReceipt] = None
        self._allowance_step = allowance_step
        self._action_step = action_step
        self._on_transition = on_transition

    @property
    def succeeded(self) -> bool:
        return self.action.state is PhaseState.CONFIRMED

    @property
    def leftover_allowance(self) -> bool:
        """Grant confirmed but the action did not complete."""
        return (
            self.allowance.state is PhaseState.CONFIRMED
            and self.action.state is not PhaseState.CONFIRMED
        )

    def _set(self, phase: Phase, state: PhaseState, tx_hash=None, error=None) -> None:
        phase.state = state
        if tx_hash is not None:
            phase.tx_hash = tx_hash
        phase.error = error
        if self._on_transition is not None:
            self._on_transition(self, phase)

    async def grant(self) -> Optional[AllowanceResult]:
        """Run phase 1 (allowance). Skipped when not needed."""
        if self.allowance.done:
            return self.allowance_result
        if self._allowance_step is None:
            self._set(self.allowance, PhaseState.SKIPPED)
            return None

        try:
            result = await self._allowance_step()
        except Exception as e:
            self._set(self.allowance, PhaseState.FAILED, error=e)
            raise

        self.allowance_result = result
        if result.granted:
            self._set(self.allowance, PhaseState.CONFIRMED, tx_hash=result.tx_hash)
        else:
            self._set(self.allowance, PhaseState.SKIPPED)
        return result

    async def act(self) -> TransactionReceipt:
        """Run phase 2 (escrow action) and wait for confirmation."""
        if not self.allowance.done:
            raise RuntimeError(f"{self.kind}: allowance phase has not completed")
        if self.receipt is not None:
            return self.receipt

        try:
            pending = await self._action_step()
        except Exception as e:
            self._set(self.action, PhaseState.FAILED, error=e)
            raise
        self._set(self.action, PhaseState.SUBMITTED, tx_hash=pending.tx_hash)

        try:
            receipt = await pending.wait()
        except Exception as e:
            self._set(self.action, PhaseState.FAILED, error=e)
            raise

        self.receipt = receipt
        self._set(self.action, PhaseState.CONFIRMED)
        return receipt

    async def execute(self) -> TransactionReceipt:
        await self.grant()
        return await self.act()

    def __repr__(self) -> str:
        return (
            f"Workflow({self.description!r}, allowance={self.allowance.state.value}, "
            f"action={self.action.state.value})"
        )


SuccessHook = Callable[[Workflow], Union[Awaitable[None], None]]


class TransactionOrchestrator:
    """Validates and sequences the escrow write workflows."""

    def __init__(
        self,
        ledger: LedgerClient,
        allowances: AllowanceCoordinator,
        metadata: Optional[TokenMetadataCache] = None,
        min_duration: int = DEFAULT_MIN_DURATION,
        audit_size: int = DEFAULT_AUDIT_SIZE,
    ):
        self._ledger = ledger
        self._allowances = allowances
        self._metadata = metadata or TokenMetadataCache(ledger.reader)
        self.min_duration = min_duration
        self.audit = AuditTrail(audit_size)
        self.last_workflow: Optional[Workflow] = None
        self._success_hooks: list[SuccessHook] = []

    def on_success(self, hook: SuccessHook) -> None:
        """Register a callback run after any workflow confirms."""
        self._success_hooks.append(hook)

    # ======================
    # Create
    # ======================

    async def prepare_create_operation(
        self,
        token_a: str,
        token_b: str,
        amount_a: Union[str, Decimal],
        amount_b: Union[str, Decimal],
        duration: Optional[int] = None,
    ) -> Workflow:
        """Validate inputs and build the create workflow.

        Amounts are human units, scaled with decimals read from the ledger
        at submission time rather than from the metadata cache.

        Raises:
            NoSigningIdentity: No signer configured
            InvalidInput: Bad token pair, amount or duration
        """
        writer = self._ledger.writer
        account = writer.address

        if not token_a or not token_b:
            raise InvalidInput("Both tokens must be selected")
        token_a = normalize_address(token_a, "tokenA")
        token_b = normalize_address(token_b, "tokenB")
        if token_a == token_b:
            raise InvalidInput("Tokens must be different")

        _require_positive(amount_a, "amountA")
        _require_positive(amount_b, "amountB")

        if duration is not None:
            try:
                duration = int(duration)
            except (TypeError, ValueError):
                raise InvalidInput(f"Invalid duration: {duration!r}")
            if duration > MAX_UINT256:
                raise InvalidInput(f"Duration {duration} is too large")
            if duration < 0 or 0 < duration < self.min_duration:
                raise InvalidInput(f"Minimum duration is {self.min_duration} seconds")
        use_duration = duration if duration else None

        decimals_a = await self._ledger.reader.token_decimals(token_a)
        decimals_b = await self._ledger.reader.token_decimals(token_b)
        raw_a = parse_units(amount_a, decimals_a)
        raw_b = parse_units(amount_b, decimals_b)
        if raw_a <= 0 or raw_b <= 0:
            raise InvalidInput("Amounts must be greater than zero")

        swap = self._ledger.swap_address
        return self._workflow(
            "createOperation",
            f"createOperation({token_a}, {token_b}, {raw_a}, {raw_b}, {use_duration})",
            action_step=lambda: writer.create_operation(
                token_a, token_b, raw_a, raw_b, use_duration
            ),
            allowance_step=lambda: self._allowances.ensure_allowance(
                token_a, account, swap, raw_a
            ),
        )

    async def create_operation(
        self,
        token_a: str,
        token_b: str,
        amount_a: Union[str, Decimal],
        amount_b: Union[str, Decimal],
        duration: Optional[int] = None,
    ) -> TransactionReceipt:
        workflow = await self.prepare_create_operation(
            token_a, token_b, amount_a, amount_b, duration
        )
        return await self.execute(workflow)

    # ======================
    # Complete / cancel
    # ======================

    async def prepare_complete_operation(self, operation_id: int) -> Workflow:
        """Read the operation and build the complete workflow.

        The allowance covers the operation's tokenB/amountB, already scaled.
        """
        writer = self._ledger.writer
        account = writer.address
        operation_id = _require_id(operation_id)

        operation = await self._ledger.reader.get_operation(operation_id)
        if not operation.is_open:
            raise InvalidInput(
                f"Operation {operation_id} is {operation.status.value}, not open"
            )

        swap = self._ledger.swap_address
        return self._workflow(
            "completeOperation",
            f"completeOperation({operation_id})",
            action_step=lambda: writer.complete_operation(operation_id),
            allowance_step=lambda: self._allowances.ensure_allowance(
                operation.token_b, account, swap, operation.amount_b
            ),
        )

    async def complete_operation(self, operation_id: int) -> TransactionReceipt:
        return await self.execute(await self.prepare_complete_operation(operation_id))

    async def prepare_cancel_operation(self, operation_id: int) -> Workflow:
        writer = self._ledger.writer
        operation_id = _require_id(operation_id)
        return self._workflow(
            "cancelOperation",
            f"cancelOperation({operation_id})",
            action_step=lambda: writer.cancel_operation(operation_id),
        )

    async def cancel_operation(self, operation_id: int) -> TransactionReceipt:
        return await self.execute(await self.prepare_cancel_operation(operation_id))

    # ======================
    # Token registration
    # ======================

    async def prepare_add_token(self, token: str) -> Workflow:
        """Check ownership and duplicates locally, then build the addToken workflow.

        The owner check is for early feedback; the ledger enforces it.

        Raises:
            Unauthorized: Caller is not the escrow owner
            DuplicateRegistration: Address, name or symbol already whitelisted
            MetadataUnavailable: Token does not expose name/symbol/decimals
        """
        writer = self._ledger.writer
        token = normalize_address(token, "token")

        owner = await self._ledger.reader.owner()
        if owner != writer.address:
            raise Unauthorized("Only the escrow owner can register tokens")

        active = await self._ledger.reader.get_active_allowed_tokens()
        if token in active:
            raise DuplicateRegistration(f"Token {token} is already whitelisted")

        # Without metadata the name and symbol checks cannot run
        candidate = await self._metadata.require(token)
        known = await self._metadata.prefetch(active)
        names = {_norm(m.name) for m in known.values() if not isinstance(m, Unavailable)}
        symbols = {_norm(m.symbol) for m in known.values() if not isinstance(m, Unavailable)}
        if _norm(candidate.name) and _norm(candidate.name) in names:
            raise DuplicateRegistration(f"Name {candidate.name!r} is already in use")
        if _norm(candidate.symbol) and _norm(candidate.symbol) in symbols:
            raise DuplicateRegistration(f"Symbol {candidate.symbol!r} is already in use")

        return self._workflow(
            "addToken",
            f"addToken({token})",
            action_step=lambda: writer.add_token(token),
        )

    async def add_token(self, token: str) -> TransactionReceipt:
        return await self.execute(await self.prepare_add_token(token))

    # ======================
    # Execution
    # ======================

    async def execute(self, workflow: Workflow) -> TransactionReceipt:
        """Run both phases; on success notify the registered hooks.

        Failures propagate unchanged and are not retried.
        """
        self.last_workflow = workflow
        try:
            receipt = await workflow.execute()
        except Exception:
            if workflow.leftover_allowance:
                logger.warning(
                    f"{workflow.description} failed after allowance "
                    f"{workflow.allowance.tx_hash} confirmed; allowance left in place"
                )
            raise

        for hook in self._success_hooks:
            try:
                result = hook(workflow)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Post-success hook failed for {workflow.description}: {e}")
        return receipt

    def _workflow(
        self,
        kind: str,
        description: str,
        action_step: ActionStep,
        allowance_step: Optional[AllowanceStep] = None,
    ) -> Workflow:
        return Workflow(
            kind,
            description,
            action_step=action_step,
            allowance_step=allowance_step,
            on_transition=self._record,
        )

    def _record(self, workflow: Workflow, phase: Phase) -> None:
        if phase.state is PhaseState.PENDING:
            return
        if phase is workflow.allowance and phase.state is PhaseState.SKIPPED:
            return
        name = "approve" if phase is workflow.allowance else workflow.description
        self.audit.record(name, phase.state.value, phase.tx_hash)


def _require_positive(value: Union[str, Decimal], field: str) -> None:
    if isinstance(value, float):
        raise InvalidInput(f"{field} must be a string or Decimal")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidInput(f"Invalid {field}: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidInput(f"{field} must be greater than zero")


def _require_id(operation_id: int) -> int:
    try:
        value = int(operation_id)
    except (TypeError, ValueError):
        raise InvalidInput(f"Invalid operation id: {operation_id!r}")
    if value < 0:
        raise InvalidInput(f"Invalid operation id: {operation_id!r}")
    return value


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()
