"""Process-lifetime cache of ERC-20 descriptive metadata.

Entries are keyed by lower-cased address and never expire: token name,
symbol and decimals are conventionally immutable after deployment. A failed
read is cached as Unavailable so later lookups do not repeat the failing
calls. Concurrent misses for the same address share one in-flight fetch.
"""

import asyncio
import logging
from typing import Iterable, Optional

from scrow.errors import MetadataUnavailable, ScrowError
from scrow.ledger.abi import is_address
from scrow.ledger.client import LedgerReader
from scrow.ledger.models import MetadataResult, TokenMetadata, Unavailable

logger = logging.getLogger(__name__)


class TokenMetadataCache:
    """Memoizes name/symbol/decimals per token address."""

    def __init__(self, reader: LedgerReader):
        self._reader = reader
        self._entries: dict[str, MetadataResult] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, address: str) -> bool:
        return _key(address) in self._entries

    def peek(self, address: str) -> Optional[MetadataResult]:
        """Return the cached entry without touching the ledger."""
        return self._entries.get(_key(address))

    async def get(self, address: str) -> MetadataResult:
        """Return metadata for a token, fetching it on first request."""
        key = _key(address)
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            logger.debug(f"Metadata cache miss: {key}")
            task = asyncio.ensure_future(self._fetch(key))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))

        # A cancelled waiter must not cancel the shared fetch
        return await asyncio.shield(task)

    async def require(self, address: str) -> TokenMetadata:
        """Like get(), but raise MetadataUnavailable instead of returning it."""
        result = await self.get(address)
        if isinstance(result, Unavailable):
            raise MetadataUnavailable(
                f"Metadata unavailable for {result.address}: {result.reason}"
            )
        return result

    async def label(self, address: str) -> str:
        """Display label: symbol, else name, else truncated address."""
        return (await self.get(address)).label

    async def prefetch(self, addresses: Iterable[str]) -> dict[str, MetadataResult]:
        """Resolve metadata for many tokens concurrently."""
        keys = list(dict.fromkeys(_key(a) for a in addresses))
        results = await asyncio.gather(*(self.get(k) for k in keys))
        return dict(zip(keys, results))

    def forget(self, address: str) -> None:
        """Drop an entry so the next get() reads the ledger again."""
        self._entries.pop(_key(address), None)

    async def _fetch(self, key: str) -> MetadataResult:
        if not is_address(key):
            result: MetadataResult = Unavailable(address=key, reason="invalid address")
            self._entries[key] = result
            return result

        name, symbol, decimals = await asyncio.gather(
            self._reader.token_name(key),
            self._reader.token_symbol(key),
            self._reader.token_decimals(key),
            return_exceptions=True,
        )

        failure = next(
            (r for r in (name, symbol, decimals) if isinstance(r, BaseException)), None
        )
        if failure is not None:
            if not isinstance(failure, ScrowError):
                raise failure
            logger.warning(f"Metadata unavailable for {key}: {failure}")
            result = Unavailable(address=key, reason=str(failure))
        else:
            result = TokenMetadata(address=key, name=name, symbol=symbol, decimals=decimals)

        self._entries[key] = result
        return result


def _key(address: str) -> str:
    return (address or "").strip().lower()
