"""
rate_limiter.py — Sliding-window admission queue for outbound provider calls.

The market data provider enforces a hard quota (75 calls/minute on the
premium plan, 25 calls/day on the free plan). Every network call goes
through RateLimiter.schedule(), which:

- Queues callers strictly FIFO
- Admits the head of the queue only while fewer than max_calls timestamps
  fall inside the trailing window
- Otherwise sleeps exactly until the oldest timestamp leaves the window
  (plus a small buffer) instead of busy-polling
- Runs admitted operations concurrently; a failing operation only fails
  its own caller

A single drain task runs at a time, guarded by a boolean flag.

Usage:
    limiter = RateLimiter("premium")
    data = await limiter.schedule(lambda: client.get(url))
    print(limiter.remaining_calls())
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Optional, Set, Tuple, TypeVar

from loguru import logger


T = TypeVar("T")


# ─── Tiers ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RateLimitTier:
    """Quota for one provider plan."""
    name: str
    max_calls: int
    window_seconds: float


PREMIUM_TIER = RateLimitTier(name="premium", max_calls=75, window_seconds=60.0)
FREE_TIER = RateLimitTier(name="free", max_calls=25, window_seconds=24 * 60 * 60.0)

TIERS = {
    PREMIUM_TIER.name: PREMIUM_TIER,
    FREE_TIER.name: FREE_TIER,
}

# Extra wait after the oldest call leaves the window
ADMISSION_BUFFER_SECONDS = 0.05


# ─── Rate Limiter ─────────────────────────────────────────────────────────────


class RateLimiter:
    """
    FIFO sliding-window limiter.

    Parameters
    ----------
    tier : "premium" | "free"
        Selects the quota. Ignored for any value overridden below.
    max_calls, window_seconds : optional overrides (mostly for tests).
    buffer_seconds : slack added to each computed wait.
    clock : monotonic time source in seconds.
    """

    def __init__(
        self,
        tier: str = "premium",
        *,
        max_calls: Optional[int] = None,
        window_seconds: Optional[float] = None,
        buffer_seconds: float = ADMISSION_BUFFER_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if tier not in TIERS:
            raise ValueError(f"tier must be one of {sorted(TIERS)}, got {tier!r}")
        base = TIERS[tier]
        self.tier = tier
        self.max_calls = max_calls if max_calls is not None else base.max_calls
        self.window_seconds = (
            window_seconds if window_seconds is not None else base.window_seconds
        )
        if self.max_calls <= 0:
            raise ValueError(f"max_calls must be positive, got {self.max_calls}")
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {self.window_seconds}")
        self.buffer_seconds = buffer_seconds
        self._clock = clock

        self._timestamps: Deque[float] = deque()
        self._queue: Deque[Tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._draining = False
        self._drain_task: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()

    # ─── Public API ──────────────────────────────────────────────────────────

    async def schedule(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run operation once capacity allows and return its result.

        Admission order equals submission order. If the caller stops
        waiting, the operation still runs when admitted and still
        consumes a slot.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.append((operation, future))
        self._ensure_draining()
        return await future

    def remaining_calls(self) -> int:
        """Slots left in the current window."""
        self._prune(self._clock())
        return max(0, self.max_calls - len(self._timestamps))

    @property
    def pending(self) -> int:
        """Operations waiting for admission."""
        return len(self._queue)

    # ─── Drain Loop ──────────────────────────────────────────────────────────

    def _ensure_draining(self) -> None:
        if self._draining:
            return
        self._draining = True
        self._drain_task = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        try:
            while self._queue:
                now = self._clock()
                self._prune(now)

                if len(self._timestamps) >= self.max_calls:
                    wait = self._timestamps[0] + self.window_seconds - now + self.buffer_seconds
                    if wait > 0:
                        logger.debug(
                            "Rate limit reached ({}/{} in {}s window), waiting {:.2f}s, {} queued",
                            len(self._timestamps), self.max_calls,
                            self.window_seconds, wait, len(self._queue),
                        )
                        await asyncio.sleep(wait)
                    continue

                operation, future = self._queue.popleft()
                self._timestamps.append(self._clock())
                task = asyncio.ensure_future(self._run(operation, future))
                self._running.add(task)
                task.add_done_callback(self._running.discard)
                # let the admitted operation start before the next admission
                await asyncio.sleep(0)
        finally:
            self._draining = False

    @staticmethod
    async def _run(operation: Callable[[], Awaitable[Any]], future: asyncio.Future) -> None:
        try:
            result = await operation()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
            return
        if not future.done():
            future.set_result(result)

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()
