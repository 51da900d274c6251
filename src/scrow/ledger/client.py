"""Typed bindings to the escrow contract and arbitrary ERC-20 tokens.

LedgerReader needs only an RPC endpoint. LedgerWriter additionally needs a
signing identity; every write returns a PendingTransaction that must be
awaited before the action is treated as durable.
"""

import asyncio
import logging
from typing import Optional

import httpx
from eth_abi.exceptions import DecodingError

from scrow.config import Settings
from scrow.errors import (
    ConfirmationTimeout,
    InvalidInput,
    NoSigningIdentity,
    ScrowError,
    TransactionRejected,
    TransactionReverted,
)
from scrow.ledger import abi
from scrow.ledger.abi import ContractFunction, is_address, to_checksum
from scrow.ledger.models import AllowedToken, Operation, TokenBalance, TransactionReceipt
from scrow.ledger.rpc import JsonRpcTransport
from scrow.signing.base import SignerBackend, SigningError

logger = logging.getLogger(__name__)


def normalize_address(address: str, field: str = "address") -> str:
    """Validate an address and return it lower-cased.

    Raises:
        InvalidInput: If the value is not a 20-byte hex address
    """
    if not isinstance(address, str) or not is_address(address.strip()):
        raise InvalidInput(f"Invalid {field}: {address!r}")
    return address.strip().lower()


class PendingTransaction:
    """Handle for a submitted write awaiting ledger confirmation."""

    def __init__(
        self,
        tx_hash: str,
        action: str,
        rpc: JsonRpcTransport,
        timeout: float = 120.0,
        poll_interval: float = 2.0,
    ):
        self.tx_hash = tx_hash
        self.action = action
        self._rpc = rpc
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._receipt: Optional[TransactionReceipt] = None

    @property
    def confirmed(self) -> bool:
        return self._receipt is not None

    async def wait(self) -> TransactionReceipt:
        """Poll for the receipt until mined.

        Raises:
            TransactionReverted: Receipt status is 0
            ConfirmationTimeout: No receipt within the timeout
        """
        if self._receipt is not None:
            return self._receipt

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        while True:
            raw = await self._rpc.get_transaction_receipt(self.tx_hash)
            if raw is not None:
                receipt = TransactionReceipt(
                    tx_hash=self.tx_hash,
                    block_number=int(raw.get("blockNumber") or "0x0", 16),
                    gas_used=int(raw.get("gasUsed") or "0x0", 16),
                    status=int(raw.get("status") or "0x0", 16),
                )
                if not receipt.succeeded:
                    logger.warning(f"{self.action} reverted on-ledger: {self.tx_hash}")
                    raise TransactionReverted(
                        f"{self.action} reverted on-ledger", tx_hash=self.tx_hash
                    )
                logger.info(
                    f"{self.action} confirmed in block {receipt.block_number}: {self.tx_hash}"
                )
                self._receipt = receipt
                return receipt

            if loop.time() >= deadline:
                raise ConfirmationTimeout(self.tx_hash, self._timeout)
            await asyncio.sleep(self._poll_interval)

    def __repr__(self) -> str:
        return f"PendingTransaction(action={self.action!r}, tx_hash={self.tx_hash!r})"


class LedgerReader:
    """Read-only binding; usable without a signer."""

    def __init__(self, rpc: JsonRpcTransport, swap_address: str):
        self.rpc = rpc
        self.swap_address = normalize_address(swap_address, "swap address")

    async def _call(self, to: str, fn: ContractFunction, *args) -> tuple:
        result = await self.rpc.eth_call(to_checksum(to), fn.encode_call(*args))
        if not result or result == "0x":
            raise TransactionReverted(
                f"{fn.signature} returned no data from {to}", reason="empty return data"
            )
        try:
            return fn.decode_result(result)
        except (DecodingError, ValueError) as e:
            raise TransactionReverted(
                f"{fn.signature} returned malformed data from {to}", reason=str(e)
            ) from e

    # ======================
    # Escrow contract
    # ======================

    async def owner(self) -> str:
        (owner,) = await self._call(self.swap_address, abi.OWNER)
        return owner.lower()

    async def get_allowed_tokens(self) -> list[str]:
        """Every token ever registered, in registration order."""
        (tokens,) = await self._call(self.swap_address, abi.GET_ALLOWED_TOKENS)
        return [t.lower() for t in tokens]

    async def allowed_token(self, token: str) -> bool:
        (allowed,) = await self._call(
            self.swap_address, abi.ALLOWED_TOKEN, normalize_address(token, "token")
        )
        return bool(allowed)

    async def list_allowed_tokens(self) -> list[AllowedToken]:
        """Whitelist with each entry's activity flag."""
        tokens = await self.get_allowed_tokens()
        flags = await asyncio.gather(*(self.allowed_token(t) for t in tokens))
        return [AllowedToken(address=t, active=f) for t, f in zip(tokens, flags)]

    async def get_active_allowed_tokens(self) -> list[str]:
        return [t.address for t in await self.list_allowed_tokens() if t.active]

    async def get_operation(self, operation_id: int) -> Operation:
        (raw,) = await self._call(self.swap_address, abi.GET_OPERATION, int(operation_id))
        return abi.operation_from_tuple(raw)

    async def get_all_operations(self) -> list[Operation]:
        """All operations in ledger order."""
        (raw_ops,) = await self._call(self.swap_address, abi.GET_ALL_OPERATIONS)
        return [abi.operation_from_tuple(raw) for raw in raw_ops]

    async def get_user_balances(self, user: str) -> list[tuple[str, int]]:
        """Escrowed balances per token for a user, as (token, raw amount)."""
        tokens, balances = await self._call(
            self.swap_address, abi.GET_USER_BALANCES, normalize_address(user, "user")
        )
        return [(t.lower(), int(b)) for t, b in zip(tokens, balances)]

    # ======================
    # ERC-20
    # ======================

    async def token_name(self, token: str) -> str:
        (name,) = await self._call(normalize_address(token, "token"), abi.NAME)
        return name

    async def token_symbol(self, token: str) -> str:
        (symbol,) = await self._call(normalize_address(token, "token"), abi.SYMBOL)
        return symbol

    async def token_decimals(self, token: str) -> int:
        (decimals,) = await self._call(normalize_address(token, "token"), abi.DECIMALS)
        return int(decimals)

    async def token_balance(self, token: str, holder: str) -> int:
        (balance,) = await self._call(
            normalize_address(token, "token"),
            abi.BALANCE_OF,
            normalize_address(holder, "holder"),
        )
        return int(balance)

    async def allowance(self, token: str, holder: str, spender: str) -> int:
        (amount,) = await self._call(
            normalize_address(token, "token"),
            abi.ALLOWANCE,
            normalize_address(holder, "holder"),
            normalize_address(spender, "spender"),
        )
        return int(amount)

    async def get_escrow_balances(self) -> list[TokenBalance]:
        """Holdings of the escrow contract in every active token.

        Tokens whose decimals cannot be read fall back to 18; tokens whose
        balance cannot be read are skipped.
        """
        out = []
        for token in await self.get_active_allowed_tokens():
            try:
                decimals = await self.token_decimals(token)
            except ScrowError:
                decimals = 18
            try:
                raw = await self.token_balance(token, self.swap_address)
            except ScrowError as e:
                logger.warning(f"Skipping escrow balance for {token}: {e}")
                continue
            out.append(TokenBalance(token=token, raw=raw, decimals=decimals))
        return out


class LedgerWriter:
    """Write binding; requires a signing identity."""

    def __init__(
        self,
        rpc: JsonRpcTransport,
        swap_address: str,
        signer: SignerBackend,
        chain_id: int,
        gas_limit_multiplier: float = 1.2,
        confirmation_timeout: float = 120.0,
        confirmation_poll_interval: float = 2.0,
    ):
        self.rpc = rpc
        self.swap_address = normalize_address(swap_address, "swap address")
        self.signer = signer
        self.chain_id = chain_id
        self.gas_limit_multiplier = gas_limit_multiplier
        self.confirmation_timeout = confirmation_timeout
        self.confirmation_poll_interval = confirmation_poll_interval

    @property
    def address(self) -> str:
        return self.signer.address

    async def _submit(self, to: str, data: str, action: str) -> PendingTransaction:
        """Estimate, sign and broadcast a contract call.

        A revert during gas estimation surfaces as TransactionReverted before
        anything is signed.
        """
        sender = to_checksum(self.address)
        target = to_checksum(to)

        gas_estimate = await self.rpc.estimate_gas({"from": sender, "to": target, "data": data})
        nonce = await self.rpc.get_transaction_count(sender, "pending")
        gas_price = await self.rpc.gas_price()

        tx = {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": int(gas_estimate * self.gas_limit_multiplier),
            "to": target,
            "value": 0,
            "data": data,
            "chainId": self.chain_id,
        }

        try:
            raw_tx = await self.signer.sign_transaction(tx)
        except SigningError as e:
            raise TransactionRejected(f"{action} was not signed: {e}") from e

        tx_hash = await self.rpc.send_raw_transaction(raw_tx)
        logger.info(f"{action} submitted: {tx_hash}")

        return PendingTransaction(
            tx_hash=tx_hash,
            action=action,
            rpc=self.rpc,
            timeout=self.confirmation_timeout,
            poll_interval=self.confirmation_poll_interval,
        )

    async def add_token(self, token: str) -> PendingTransaction:
        token = normalize_address(token, "token")
        return await self._submit(
            self.swap_address, abi.ADD_TOKEN.encode_call(token), f"addToken({token})"
        )

    async def approve(self, token: str, spender: str, amount: int) -> PendingTransaction:
        token = normalize_address(token, "token")
        spender = normalize_address(spender, "spender")
        return await self._submit(
            token,
            abi.APPROVE.encode_call(spender, int(amount)),
            f"approve({token}, {spender}, {amount})",
        )

    async def create_operation(
        self,
        token_a: str,
        token_b: str,
        amount_a: int,
        amount_b: int,
        duration: Optional[int] = None,
    ) -> PendingTransaction:
        """Create an operation; without a duration the ledger applies its default."""
        token_a = normalize_address(token_a, "tokenA")
        token_b = normalize_address(token_b, "tokenB")
        if duration is not None:
            data = abi.CREATE_OPERATION_WITH_DURATION.encode_call(
                token_a, token_b, int(amount_a), int(amount_b), int(duration)
            )
        else:
            data = abi.CREATE_OPERATION.encode_call(token_a, token_b, int(amount_a), int(amount_b))
        return await self._submit(self.swap_address, data, "createOperation")

    async def complete_operation(self, operation_id: int) -> PendingTransaction:
        return await self._submit(
            self.swap_address,
            abi.COMPLETE_OPERATION.encode_call(int(operation_id)),
            f"completeOperation({operation_id})",
        )

    async def cancel_operation(self, operation_id: int) -> PendingTransaction:
        return await self._submit(
            self.swap_address,
            abi.CANCEL_OPERATION.encode_call(int(operation_id)),
            f"cancelOperation({operation_id})",
        )


class LedgerClient:
    """Explicitly constructed connection to the ledger.

    Holds a read binding always and a write binding only when a signer is
    available. Passed by reference into every component that needs it.
    """

    def __init__(
        self,
        rpc: JsonRpcTransport,
        swap_address: str,
        signer: Optional[SignerBackend] = None,
        chain_id: int = 31337,
        gas_limit_multiplier: float = 1.2,
        confirmation_timeout: float = 120.0,
        confirmation_poll_interval: float = 2.0,
    ):
        self.rpc = rpc
        self.reader = LedgerReader(rpc, swap_address)
        self._writer: Optional[LedgerWriter] = None
        if signer is not None:
            self._writer = LedgerWriter(
                rpc,
                swap_address,
                signer,
                chain_id,
                gas_limit_multiplier=gas_limit_multiplier,
                confirmation_timeout=confirmation_timeout,
                confirmation_poll_interval=confirmation_poll_interval,
            )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        signer: Optional[SignerBackend] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "LedgerClient":
        rpc = JsonRpcTransport(settings.rpc_url, settings.rpc_timeout, transport=transport)
        return cls(
            rpc,
            settings.swap_address,
            signer=signer,
            chain_id=settings.chain_id,
            gas_limit_multiplier=settings.gas_limit_multiplier,
            confirmation_timeout=settings.confirmation_timeout,
            confirmation_poll_interval=settings.confirmation_poll_interval,
        )

    @property
    def swap_address(self) -> str:
        return self.reader.swap_address

    @property
    def has_signer(self) -> bool:
        return self._writer is not None

    @property
    def account(self) -> Optional[str]:
        """Lower-cased signer address, or None for a read-only client."""
        return self._writer.address if self._writer else None

    @property
    def writer(self) -> LedgerWriter:
        if self._writer is None:
            raise NoSigningIdentity("Connect a signing identity first")
        return self._writer
