"""Delegated-transfer allowance management.

Before the escrow contract can pull tokens from a holder, the holder must
have approved at least the amount being moved. The coordinator reads the
current allowance and grants exactly the required amount only when it is
short. It never lowers a larger allowance and never batches grants.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from scrow.errors import AllowanceInsufficient
from scrow.ledger.client import LedgerClient, normalize_address
from scrow.ledger.models import TransactionReceipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllowanceResult:
    """Outcome of an allowance check."""

    token: str
    spender: str
    current: int
    required: int
    tx_hash: Optional[str] = None
    receipt: Optional[TransactionReceipt] = None

    @property
    def granted(self) -> bool:
        """True if a grant transaction was submitted and confirmed."""
        return self.tx_hash is not None


class AllowanceCoordinator:
    """Ensures a spender may move at least a required amount of a token."""

    def __init__(self, ledger: LedgerClient):
        self._ledger = ledger

    async def check(self, token: str, holder: str, spender: str, required: int) -> int:
        """Return the current allowance, raising if it is below `required`.

        Raises:
            AllowanceInsufficient: Current allowance is too small
        """
        current = await self._ledger.reader.allowance(token, holder, spender)
        if current < required:
            raise AllowanceInsufficient(token, current, required)
        return current

    async def ensure_allowance(
        self, token: str, holder: str, spender: str, required_amount: int
    ) -> AllowanceResult:
        """Grant `required_amount` to `spender` if the current allowance is lower.

        Args:
            token: ERC-20 token address
            holder: Account whose tokens will be moved
            spender: Contract that will move them
            required_amount: Raw amount needed

        Returns:
            AllowanceResult; `granted` is False when no write was needed

        Raises:
            NoSigningIdentity: No signer configured
            TransactionRejected: Signer declined the grant
            TransactionReverted: Grant reverted on-ledger
        """
        token = normalize_address(token, "token")
        holder = normalize_address(holder, "holder")
        spender = normalize_address(spender, "spender")
        # Fail before any read when writes are impossible
        writer = self._ledger.writer

        try:
            current = await self.check(token, holder, spender, required_amount)
            logger.debug(f"Allowance for {token} sufficient: {current} >= {required_amount}")
            return AllowanceResult(token, spender, current, required_amount)
        except AllowanceInsufficient as shortfall:
            current = shortfall.current

        logger.info(f"Approving {token} for {required_amount} (current {current})")
        pending = await writer.approve(token, spender, required_amount)
        receipt = await pending.wait()
        logger.info(f"Approval confirmed: {pending.tx_hash}")

        return AllowanceResult(
            token=token,
            spender=spender,
            current=current,
            required=required_amount,
            tx_hash=pending.tx_hash,
            receipt=receipt,
        )
