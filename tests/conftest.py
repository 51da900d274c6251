"""Pytest configuration and fixtures."""

import itertools
import os
from typing import Optional

import pytest

# Keep a developer's .env out of the tests
os.environ["SCROW_PRIVATE_KEY"] = ""

from scrow.errors import NoSigningIdentity, TransactionReverted
from scrow.ledger.models import Operation, OperationStatus, TokenBalance, TransactionReceipt, ZERO_ADDRESS

SWAP = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
OWNER = "0x" + "0f" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
TOKEN_X = "0x" + "11" * 20
TOKEN_Y = "0x" + "22" * 20
TOKEN_Z = "0x" + "33" * 20


def make_operation(
    op_id: int,
    status: OperationStatus = OperationStatus.OPEN,
    maker: str = ALICE,
    token_a: str = TOKEN_X,
    token_b: str = TOKEN_Y,
    amount_a: int = 10**18,
    amount_b: int = 5 * 10**6,
) -> Operation:
    return Operation(
        id=op_id,
        maker=maker,
        taker=BOB if status is OperationStatus.COMPLETED else ZERO_ADDRESS,
        token_a=token_a,
        token_b=token_b,
        amount_a=amount_a,
        amount_b=amount_b,
        status=status,
        created_at=1_700_000_000,
        completed_at=1_700_000_100 if status is OperationStatus.COMPLETED else 0,
        cancelled_at=1_700_000_100 if status is OperationStatus.CANCELLED else 0,
        expires_at=1_700_086_400,
    )


class FakeReader:
    """In-memory stand-in for LedgerReader that records every call."""

    def __init__(self):
        self.swap_address = SWAP
        self.calls: list[tuple] = []
        self.owner_address = OWNER
        self.whitelist: list[tuple[str, bool]] = []
        self.tokens: dict[str, dict] = {}
        self.broken: dict[str, set] = {}
        self.allowances: dict[tuple, int] = {}
        self.operations: dict[int, Operation] = {}
        self.user_balances: dict[str, list[tuple[str, int]]] = {}
        self.token_balances: dict[tuple, int] = {}

    def add_token(self, address, name, symbol, decimals, active=True):
        self.tokens[address] = {"name": name, "symbol": symbol, "decimals": decimals}
        self.whitelist.append((address, active))

    def _token_field(self, token, field):
        self.calls.append((field, token))
        if field in self.broken.get(token, set()) or token not in self.tokens:
            raise TransactionReverted(f"{field}() reverted", reason="no data")
        return self.tokens[token][field]

    async def owner(self):
        self.calls.append(("owner",))
        return self.owner_address

    async def get_allowed_tokens(self):
        self.calls.append(("get_allowed_tokens",))
        return [t for t, _ in self.whitelist]

    async def allowed_token(self, token):
        self.calls.append(("allowed_token", token))
        return dict(self.whitelist).get(token, False)

    async def get_active_allowed_tokens(self):
        self.calls.append(("get_active_allowed_tokens",))
        return [t for t, active in self.whitelist if active]

    async def get_operation(self, operation_id):
        self.calls.append(("get_operation", operation_id))
        if operation_id not in self.operations:
            raise TransactionReverted("getOperation reverted", reason="Operation does not exist")
        return self.operations[operation_id]

    async def get_all_operations(self):
        self.calls.append(("get_all_operations",))
        return sorted(self.operations.values(), key=lambda op: op.id)

    async def get_user_balances(self, user):
        self.calls.append(("get_user_balances", user))
        return list(self.user_balances.get(user, []))

    async def token_name(self, token):
        return self._token_field(token, "name")

    async def token_symbol(self, token):
        return self._token_field(token, "symbol")

    async def token_decimals(self, token):
        return self._token_field(token, "decimals")

    async def token_balance(self, token, holder):
        self.calls.append(("token_balance", token, holder))
        return self.token_balances.get((token, holder), 0)

    async def allowance(self, token, holder, spender):
        self.calls.append(("allowance", token, holder, spender))
        return self.allowances.get((token, holder, spender), 0)

    async def get_escrow_balances(self):
        self.calls.append(("get_escrow_balances",))
        return [
            TokenBalance(token=t, raw=self.token_balances.get((t, SWAP), 0), decimals=self.tokens[t]["decimals"])
            for t, active in self.whitelist
            if active
        ]


class FakePending:
    """PendingTransaction stand-in; confirmation runs the on_confirm effect."""

    def __init__(self, tx_hash, action, error=None, on_confirm=None):
        self.tx_hash = tx_hash
        self.action = action
        self._error = error
        self._on_confirm = on_confirm

    async def wait(self):
        if self._error is not None:
            raise self._error
        if self._on_confirm is not None:
            self._on_confirm()
        return TransactionReceipt(tx_hash=self.tx_hash, block_number=1, gas_used=21000, status=1)


class FakeWriter:
    """In-memory stand-in for LedgerWriter.

    `submit_errors` raise when the write is submitted (e.g. signer declined);
    `wait_errors` raise when its confirmation is awaited (e.g. on-ledger revert).
    """

    def __init__(self, reader: FakeReader, address: str = ALICE):
        self.reader = reader
        self.address = address
        self.submitted: list[tuple] = []
        self.submit_errors: dict[str, Exception] = {}
        self.wait_errors: dict[str, Exception] = {}
        self._hashes = itertools.count(1)

    def _submit(self, action, args, on_confirm=None):
        if action in self.submit_errors:
            raise self.submit_errors[action]
        self.submitted.append((action, *args))
        tx_hash = f"0x{next(self._hashes):064x}"
        return FakePending(tx_hash, action, self.wait_errors.get(action), on_confirm)

    async def approve(self, token, spender, amount):
        def confirm():
            self.reader.allowances[(token, self.address, spender)] = amount

        return self._submit("approve", (token, spender, amount), confirm)

    async def create_operation(self, token_a, token_b, amount_a, amount_b, duration=None):
        return self._submit("createOperation", (token_a, token_b, amount_a, amount_b, duration))

    async def complete_operation(self, operation_id):
        return self._submit("completeOperation", (operation_id,))

    async def cancel_operation(self, operation_id):
        return self._submit("cancelOperation", (operation_id,))

    async def add_token(self, token):
        return self._submit("addToken", (token,))


class FakeLedger:
    """LedgerClient stand-in with a read binding and an optional write binding."""

    def __init__(self, reader: FakeReader, writer: Optional[FakeWriter] = None):
        self.reader = reader
        self._writer = writer

    @property
    def swap_address(self):
        return SWAP

    @property
    def has_signer(self):
        return self._writer is not None

    @property
    def account(self):
        return self._writer.address if self._writer else None

    @property
    def writer(self):
        if self._writer is None:
            raise NoSigningIdentity("Connect a signing identity first")
        return self._writer


@pytest.fixture
def reader() -> FakeReader:
    r = FakeReader()
    r.add_token(TOKEN_X, "Token X", "TKX", 18)
    r.add_token(TOKEN_Y, "Token Y", "TKY", 6)
    return r


@pytest.fixture
def writer(reader) -> FakeWriter:
    return FakeWriter(reader)


@pytest.fixture
def ledger(reader, writer) -> FakeLedger:
    return FakeLedger(reader, writer)


@pytest.fixture
def readonly_ledger(reader) -> FakeLedger:
    return FakeLedger(reader)
