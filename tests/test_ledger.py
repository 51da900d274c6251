"""Tests for ABI encoding, JSON-RPC transport and the ledger bindings."""

import json

import httpx
import pytest
from eth_abi import encode

from scrow.errors import (
    ConfirmationTimeout,
    InvalidInput,
    LedgerTransportError,
    NoSigningIdentity,
    TransactionReverted,
)
from scrow.ledger import abi
from scrow.ledger.client import LedgerClient, PendingTransaction, normalize_address
from scrow.ledger.models import OperationStatus, Unavailable, truncate_address
from scrow.ledger.rpc import JsonRpcTransport, classify_rpc_error

from conftest import ALICE, BOB, SWAP, TOKEN_X, TOKEN_Y

RPC_URL = "http://ledger.test"


def revert_data(reason: str) -> str:
    return abi.REVERT_SELECTOR + encode(["string"], [reason]).hex()


def operation_tuple(op_id, status, maker=ALICE):
    return (op_id, maker, "0x" + "00" * 20, TOKEN_X, TOKEN_Y, 10**18, 5 * 10**6, status, 100, 0, 0, 3700)


class FakeNode:
    """Serves eth_call results keyed by 4-byte selector."""

    def __init__(self):
        self.calls: dict[str, str] = {}
        self.errors: dict[str, dict] = {}
        self.receipts: list = []
        self.requests: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        method = body["method"]
        if method == "eth_call":
            selector = body["params"][0]["data"][:10]
            if selector in self.errors:
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": self.errors[selector]})
            result = self.calls.get(selector, "0x")
        elif method == "eth_getTransactionReceipt":
            result = self.receipts.pop(0) if self.receipts else None
        else:
            result = None
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def serve(self, fn: abi.ContractFunction, types, values):
        self.calls["0x" + fn.selector.hex()] = "0x" + encode(types, values).hex()

    def transport(self) -> JsonRpcTransport:
        return JsonRpcTransport(RPC_URL, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def node():
    return FakeNode()


class TestAbi:
    """Tests for contract function descriptors."""

    def test_known_selectors(self):
        """Selectors match the standard ERC-20 ones."""
        assert abi.APPROVE.selector.hex() == "095ea7b3"
        assert abi.ALLOWANCE.selector.hex() == "dd62ed3e"
        assert abi.BALANCE_OF.selector.hex() == "70a08231"

    def test_create_overloads_differ(self):
        assert abi.CREATE_OPERATION.selector != abi.CREATE_OPERATION_WITH_DURATION.selector

    def test_encode_call(self):
        data = abi.APPROVE.encode_call(SWAP, 250)
        assert data.startswith("0x095ea7b3")
        assert len(data) == 2 + 8 + 64 * 2
        assert data.endswith(f"{250:064x}")

    def test_encode_call_wrong_arity(self):
        with pytest.raises(TypeError):
            abi.APPROVE.encode_call(SWAP)

    def test_operation_from_tuple(self):
        op = abi.operation_from_tuple(operation_tuple(3, 1))
        assert op.id == 3
        assert op.status is OperationStatus.COMPLETED
        assert op.token_a == TOKEN_X
        assert not op.has_taker

    def test_unknown_status_code(self):
        with pytest.raises(ValueError):
            abi.operation_from_tuple(operation_tuple(3, 7))

    def test_decode_revert_reason(self):
        assert abi.decode_revert_reason(revert_data("Not owner")) == "Not owner"
        assert abi.decode_revert_reason("0x1234") is None
        assert abi.decode_revert_reason(None) is None


class TestAddresses:
    """Tests for address helpers."""

    def test_normalize_lowercases(self):
        assert normalize_address("0x5FbDB2315678afecb367f032d93F642f64180aa3") == SWAP

    @pytest.mark.parametrize("value", ["", "0x1234", "not an address", None])
    def test_normalize_rejects(self, value):
        with pytest.raises(InvalidInput):
            normalize_address(value)

    def test_truncate_address(self):
        assert truncate_address(SWAP) == "0x5fbd…0aa3"
        assert Unavailable(address=SWAP).label == "0x5fbd…0aa3"


class TestRpcErrors:
    """Tests for JSON-RPC error classification."""

    def test_code_3_is_revert(self):
        err = classify_rpc_error(
            "eth_call", {"code": 3, "message": "execution reverted", "data": revert_data("Tokens must differ")}
        )
        assert isinstance(err, TransactionReverted)
        assert err.reason == "Tokens must differ"

    def test_hardhat_reason_string(self):
        err = classify_rpc_error(
            "eth_estimateGas",
            {
                "code": -32603,
                "message": "Error: VM Exception while processing transaction: "
                "reverted with reason string 'Operation is not open'",
            },
        )
        assert isinstance(err, TransactionReverted)
        assert err.reason == "Operation is not open"

    def test_nested_revert_data(self):
        err = classify_rpc_error(
            "eth_call",
            {"code": -32603, "message": "execution reverted", "data": {"data": revert_data("Paused")}},
        )
        assert isinstance(err, TransactionReverted)
        assert err.reason == "Paused"

    def test_other_errors_are_transport(self):
        err = classify_rpc_error("eth_call", {"code": -32000, "message": "header not found"})
        assert isinstance(err, LedgerTransportError)
        assert not isinstance(err, TransactionReverted)


class TestJsonRpcTransport:
    """Tests for the httpx JSON-RPC transport."""

    @pytest.mark.asyncio
    async def test_returns_result(self):
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x7a69"})

        rpc = JsonRpcTransport(RPC_URL, transport=httpx.MockTransport(handler))
        assert await rpc.request("eth_chainId") == "0x7a69"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        rpc = JsonRpcTransport(RPC_URL, transport=httpx.MockTransport(lambda r: httpx.Response(502)))
        with pytest.raises(LedgerTransportError):
            await rpc.request("eth_chainId")

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        rpc = JsonRpcTransport(RPC_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(LedgerTransportError):
            await rpc.request("eth_chainId")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        rpc = JsonRpcTransport(
            RPC_URL, transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"<html>"))
        )
        with pytest.raises(LedgerTransportError):
            await rpc.request("eth_chainId")

    @pytest.mark.asyncio
    async def test_send_raw_adds_prefix(self, node):
        rpc = node.transport()
        await rpc.send_raw_transaction("abcd")
        assert node.requests[-1]["params"] == ["0xabcd"]


class TestLedgerReader:
    """Tests for LedgerReader against a mocked node."""

    @pytest.mark.asyncio
    async def test_get_all_operations(self, node):
        node.serve(
            abi.GET_ALL_OPERATIONS,
            [abi.OPERATION_TUPLE + "[]"],
            [[operation_tuple(0, 0), operation_tuple(1, 2, maker=BOB)]],
        )
        client = LedgerClient(node.transport(), SWAP)

        ops = await client.reader.get_all_operations()

        assert [op.id for op in ops] == [0, 1]
        assert ops[1].status is OperationStatus.CANCELLED
        assert ops[1].maker == BOB

    @pytest.mark.asyncio
    async def test_token_metadata_reads(self, node):
        node.serve(abi.NAME, ["string"], ["Token X"])
        node.serve(abi.SYMBOL, ["string"], ["TKX"])
        node.serve(abi.DECIMALS, ["uint8"], [6])
        client = LedgerClient(node.transport(), SWAP)

        assert await client.reader.token_name(TOKEN_X) == "Token X"
        assert await client.reader.token_symbol(TOKEN_X) == "TKX"
        assert await client.reader.token_decimals(TOKEN_X) == 6

    @pytest.mark.asyncio
    async def test_empty_return_is_revert(self, node):
        """A contract without symbol() returns no data."""
        client = LedgerClient(node.transport(), SWAP)
        with pytest.raises(TransactionReverted):
            await client.reader.token_symbol(TOKEN_X)

    @pytest.mark.asyncio
    async def test_revert_reason_surfaces(self, node):
        node.errors["0x" + abi.GET_OPERATION.selector.hex()] = {
            "code": 3,
            "message": "execution reverted",
            "data": revert_data("Operation does not exist"),
        }
        client = LedgerClient(node.transport(), SWAP)
        with pytest.raises(TransactionReverted) as exc:
            await client.reader.get_operation(99)
        assert exc.value.reason == "Operation does not exist"

    @pytest.mark.asyncio
    async def test_user_balances(self, node):
        node.serve(abi.GET_USER_BALANCES, ["address[]", "uint256[]"], [[TOKEN_X, TOKEN_Y], [5, 0]])
        client = LedgerClient(node.transport(), SWAP)

        balances = await client.reader.get_user_balances(ALICE)

        assert balances == [(TOKEN_X, 5), (TOKEN_Y, 0)]

    @pytest.mark.asyncio
    async def test_escrow_balances_fall_back_to_18_decimals(self, node):
        node.serve(abi.GET_ALLOWED_TOKENS, ["address[]"], [[TOKEN_X]])
        node.serve(abi.ALLOWED_TOKEN, ["bool"], [True])
        node.serve(abi.BALANCE_OF, ["uint256"], [42])
        client = LedgerClient(node.transport(), SWAP)

        balances = await client.reader.get_escrow_balances()

        assert len(balances) == 1
        assert balances[0].raw == 42
        assert balances[0].decimals == 18

    @pytest.mark.asyncio
    async def test_escrow_balances_skip_unreachable_token(self, node):
        """A transport failure on one token's balance skips that token only."""
        node.serve(abi.GET_ALLOWED_TOKENS, ["address[]"], [[TOKEN_X]])
        node.serve(abi.ALLOWED_TOKEN, ["bool"], [True])
        node.serve(abi.DECIMALS, ["uint8"], [6])
        node.errors["0x" + abi.BALANCE_OF.selector.hex()] = {"code": -32000, "message": "header not found"}
        client = LedgerClient(node.transport(), SWAP)

        assert await client.reader.get_escrow_balances() == []


class TestLedgerClient:
    """Tests for LedgerClient construction."""

    def test_read_only_client_refuses_writes(self, node):
        client = LedgerClient(node.transport(), SWAP)
        assert not client.has_signer
        assert client.account is None
        with pytest.raises(NoSigningIdentity):
            client.writer


class TestPendingTransaction:
    """Tests for receipt polling."""

    @pytest.mark.asyncio
    async def test_waits_for_receipt(self, node):
        node.receipts = [None, {"blockNumber": "0x5", "gasUsed": "0x5208", "status": "0x1"}]
        pending = PendingTransaction("0xabc", "approve", node.transport(), timeout=5, poll_interval=0)

        receipt = await pending.wait()

        assert receipt.block_number == 5
        assert receipt.gas_used == 21000
        assert pending.confirmed

    @pytest.mark.asyncio
    async def test_failed_receipt_is_revert(self, node):
        node.receipts = [{"blockNumber": "0x5", "gasUsed": "0x5208", "status": "0x0"}]
        pending = PendingTransaction("0xabc", "completeOperation(7)", node.transport(), poll_interval=0)

        with pytest.raises(TransactionReverted) as exc:
            await pending.wait()
        assert exc.value.tx_hash == "0xabc"

    @pytest.mark.asyncio
    async def test_timeout(self, node):
        pending = PendingTransaction("0xabc", "approve", node.transport(), timeout=0, poll_interval=0)
        with pytest.raises(ConfirmationTimeout):
            await pending.wait()
