"""Periodic, cancellable re-fetch of ledger projections.

One scheduler drives one stream (operations, balances, metadata...). Every
refresh is tagged with a generation number at issue time; its result is
applied only if no newer refresh was issued meanwhile, so a slow old
response can never overwrite a newer one. Streams converge independently.

States:
    IDLE     created, not yet activated
    POLLING  timer armed
    PAUSED   application not visible; timer torn down
    STOPPED  torn down for good; late results are discarded
"""

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 8.0


class PollState(str, Enum):
    """Scheduler lifecycle state."""

    IDLE = "idle"
    POLLING = "polling"
    PAUSED = "paused"
    STOPPED = "stopped"


class PollingScheduler:
    """Drives periodic refreshes of one stream with stale-result rejection."""

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        apply: Callable[[Any, int], Any],
        interval: float = DEFAULT_INTERVAL,
    ):
        """Initialize scheduler.

        Args:
            name: Stream name for logging
            fetch: Coroutine function that reads the ledger
            apply: Called with (result, generation) when the result is current
            interval: Seconds between ticks
        """
        self.name = name
        self.interval = interval
        self._fetch = fetch
        self._apply = apply

        self.state = PollState.IDLE
        self.generation = 0
        self.applied_generation = 0
        self.last_error: Optional[Exception] = None
        self.consecutive_failures = 0

        self._visible = True
        self._timer: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._in_flight = 0

    @property
    def refreshing(self) -> bool:
        return self._in_flight > 0

    @property
    def visible(self) -> bool:
        return self._visible

    # ======================
    # Lifecycle
    # ======================

    def start(self) -> Optional[asyncio.Task]:
        """Activate: refresh immediately, then arm the timer if visible."""
        if self.state is not PollState.IDLE:
            return None

        logger.info(f"Starting {self.name} polling (interval: {self.interval}s)")
        task = self.refresh_now()
        if self._visible:
            self._arm()
        else:
            self.state = PollState.PAUSED
        return task

    def set_visible(self, visible: bool) -> None:
        """Pause on hide, resume on show.

        Resuming arms a new timer without forcing a refresh; the next one
        happens on the next tick.
        """
        self._visible = visible
        if self.state is PollState.POLLING and not visible:
            self._disarm()
            self.state = PollState.PAUSED
            logger.debug(f"{self.name} polling paused")
        elif self.state is PollState.PAUSED and visible:
            self._arm()
            logger.debug(f"{self.name} polling resumed")

    async def stop(self) -> None:
        """Tear down the timer. In-flight reads finish but are discarded."""
        if self.state is PollState.STOPPED:
            return
        self._disarm()
        self.state = PollState.STOPPED
        self.generation += 1
        logger.info(f"Stopped {self.name} polling")

    async def wait_idle(self) -> None:
        """Wait for every refresh spawned so far to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ======================
    # Refresh
    # ======================

    async def refresh(self) -> bool:
        """Run one refresh. Returns True if its result was applied.

        Read errors are logged and swallowed; the previous snapshot stays.
        """
        if self.state is PollState.STOPPED:
            return False

        self.generation += 1
        generation = self.generation
        self._in_flight += 1
        try:
            result = await self._fetch()
        except Exception as e:
            self.last_error = e
            self.consecutive_failures += 1
            logger.error(f"{self.name} refresh failed (generation {generation}): {e}")
            return False
        finally:
            self._in_flight -= 1

        if generation != self.generation:
            logger.debug(
                f"Discarding stale {self.name} result "
                f"(generation {generation}, current {self.generation})"
            )
            return False

        self._apply(result, generation)
        self.applied_generation = generation
        self.last_error = None
        self.consecutive_failures = 0
        return True

    def refresh_now(self) -> asyncio.Task:
        """Spawn an out-of-band refresh without waiting for the next tick."""
        task = asyncio.ensure_future(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def tick(self) -> Optional[asyncio.Task]:
        """Timer callback: skip instead of queueing when a refresh is in flight."""
        if self.refreshing:
            logger.debug(f"{self.name} tick skipped; refresh in flight")
            return None
        return self.refresh_now()

    # ======================
    # Timer
    # ======================

    def _arm(self) -> None:
        self._disarm()
        self._timer = asyncio.ensure_future(self._run_timer())
        self.state = PollState.POLLING

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            while True:
                await asyncio.sleep(self.interval)
                self.tick()

    def __repr__(self) -> str:
        return (
            f"PollingScheduler(name={self.name!r}, state={self.state.value}, "
            f"generation={self.generation})"
        )
