"""JSON-RPC transport for the ledger node.

Every call is a POST over httpx. Failures are split into two families:
ledger reverts (TransactionReverted) and everything else
(LedgerTransportError), so callers can tell a business-rule rejection from a
network problem.
"""

import itertools
import logging
import re
from typing import Any, Optional

import httpx

from scrow.errors import LedgerTransportError, TransactionReverted
from scrow.ledger.abi import decode_revert_reason

logger = logging.getLogger(__name__)

# Geth/anvil use code 3 for "execution reverted"
REVERT_ERROR_CODE = 3

_REASON_RE = re.compile(r"reverted with reason string '(.*)'")
_CUSTOM_ERROR_RE = re.compile(r"reverted with custom error '(.*)'")


class JsonRpcTransport:
    """Minimal async JSON-RPC client for an EVM node."""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize transport.

        Args:
            url: Node endpoint
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._ids = itertools.count(1)

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """Send one JSON-RPC request and return its result.

        Raises:
            TransactionReverted: The node reported an execution revert
            LedgerTransportError: Network, HTTP or protocol failure
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise LedgerTransportError(f"{method} failed: {e}") from e

        if response.status_code != 200:
            raise LedgerTransportError(
                f"{method} failed: HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise LedgerTransportError(f"{method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise LedgerTransportError(f"{method} returned unexpected payload")

        if data.get("error") is not None:
            raise classify_rpc_error(method, data["error"])

        if "result" not in data:
            raise LedgerTransportError(f"{method} response has no result")

        return data["result"]

    # ======================
    # eth_* helpers
    # ======================

    async def eth_call(self, to: str, data: str) -> str:
        return await self.request("eth_call", [{"to": to, "data": data}, "latest"])

    async def estimate_gas(self, tx: dict) -> int:
        return int(await self.request("eth_estimateGas", [tx]), 16)

    async def gas_price(self) -> int:
        return int(await self.request("eth_gasPrice"), 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.request("eth_getTransactionCount", [address, block]), 16)

    async def send_raw_transaction(self, raw_tx_hex: str) -> str:
        if not raw_tx_hex.startswith("0x"):
            raw_tx_hex = f"0x{raw_tx_hex}"
        return await self.request("eth_sendRawTransaction", [raw_tx_hex])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.request("eth_getTransactionReceipt", [tx_hash])


def classify_rpc_error(method: str, error: Any) -> Exception:
    """Turn a JSON-RPC error object into a revert or a transport error."""
    if not isinstance(error, dict):
        return LedgerTransportError(f"{method} failed: {error}")

    code = error.get("code")
    message = str(error.get("message", ""))
    data = error.get("data")
    if isinstance(data, dict):
        data = data.get("data") or data.get("result")

    if code == REVERT_ERROR_CODE or "revert" in message.lower():
        reason = decode_revert_reason(data) or _reason_from_message(message)
        logger.debug(f"{method} reverted: {reason or message}")
        return TransactionReverted(f"{method} reverted: {reason or message}", reason=reason)

    return LedgerTransportError(f"{method} failed ({code}): {message}")


def _reason_from_message(message: str) -> Optional[str]:
    for pattern in (_REASON_RE, _CUSTOM_ERROR_RE):
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None
