"""
One-shot delayed callbacks.

The channel client never sleeps: reconnect backoff and the reload notice delay
are scheduled callbacks that can be cancelled. ``AsyncioScheduler`` relies on
the running event loop; ``ManualScheduler`` keeps a virtual clock so tests can
advance time without waiting.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger("signup.scheduler")


class ScheduledCall(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall: ...


class AsyncioScheduler:
    """Delegates to ``loop.call_later``; ``TimerHandle`` already supports cancel()."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(0.0, delay), callback)


class ManualCall:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self._cancelled = False
        self.done = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """Virtual-time scheduler: nothing runs until ``advance()`` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, ManualCall]] = []
        self.history: List[float] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualCall:
        delay = max(0.0, delay)
        call = ManualCall(self.now + delay, callback)
        heapq.heappush(self._queue, (call.when, next(self._seq), call))
        self.history.append(delay)
        return call

    @property
    def pending(self) -> List[ManualCall]:
        return [c for _, _, c in sorted(self._queue) if not c.cancelled()]

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every call that falls due. Returns the count run."""
        target = self.now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            when, _, call = heapq.heappop(self._queue)
            self.now = when
            if call.cancelled():
                continue
            call.done = True
            ran += 1
            call.callback()
        self.now = target
        return ran

    def run_all(self, limit: int = 1000) -> int:
        """Run pending calls in order (including ones they schedule) up to ``limit``."""
        ran = 0
        while self._queue and ran < limit:
            when = self._queue[0][0]
            ran += self.advance(max(0.0, when - self.now))
        return ran
