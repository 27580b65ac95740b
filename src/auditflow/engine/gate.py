"""Shared inter-dispatch rate limiter for one task's worker pool."""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class DispatchGate:
    """
    Enforce a minimum gap between consecutive analyzer dispatches across a pool.

    Waiters are served one at a time under an asyncio lock, so each worker gets
    its own slot at least `gap_seconds` after the previous one. Sleeping here
    only suspends the waiting coroutine; other pools are unaffected.
    """

    def __init__(self, gap_seconds: float):
        if gap_seconds < 0:
            raise ValueError(f"gap_seconds must be >= 0, got {gap_seconds}")
        self.gap_seconds = gap_seconds
        self._lock = asyncio.Lock()
        self._last_dispatch: float | None = None
        self._not_before: float = 0.0
        self.dispatches = 0

    async def wait_turn(self) -> None:
        """Suspend until this caller may dispatch, then claim the slot."""
        async with self._lock:
            now = time.monotonic()
            ready_at = self._not_before
            if self._last_dispatch is not None:
                ready_at = max(ready_at, self._last_dispatch + self.gap_seconds)

            delay = ready_at - now
            if delay > 0:
                await asyncio.sleep(delay)

            self._last_dispatch = time.monotonic()
            self.dispatches += 1

    def defer(self, seconds: float) -> None:
        """Push the next slot at least `seconds` into the future (provider backoff)."""
        if seconds <= 0:
            return
        not_before = time.monotonic() + seconds
        if not_before > self._not_before:
            self._not_before = not_before
            logger.info(f"Dispatch gate deferred for {seconds:.1f}s")
