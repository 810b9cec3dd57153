"""Clock and timer abstractions shared by the entity model and the adapter manager."""

import asyncio
import heapq
import itertools
import time
from typing import Any, Callable, List, Optional, Tuple

__all__ = ["TimerHandle", "Scheduler", "LoopScheduler", "VirtualScheduler"]


class TimerHandle:
    """Cancellable handle for a callback scheduled on a Scheduler."""

    def __init__(self, when: float, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self.when = when
        self._callback = callback
        self._args = args
        self._cancelled = False
        self._fired = False
        self._loop_handle: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        """True while the callback is still waiting to run."""
        return not (self._cancelled or self._fired)

    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call more than once."""
        self._cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()
            self._loop_handle = None

    def _run(self) -> None:
        if not self.active:
            return
        self._fired = True
        self._loop_handle = None
        self._callback(*self._args)


class Scheduler:
    """
    Source of time and deferred callbacks.

    Implementations decide whether time is real (asyncio loop) or virtual
    (advanced explicitly, for replay and tests).
    """

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        raise NotImplementedError


class LoopScheduler(Scheduler):
    """
    Scheduler backed by the running asyncio event loop.

    Parameters:
        loop (asyncio.AbstractEventLoop | None): Loop to schedule on. When omitted,
            the loop running at the time of each `call_later` is used.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = TimerHandle(self.now() + max(0.0, delay), callback, args)
        handle._loop_handle = loop.call_later(max(0.0, delay), handle._run)
        return handle


class VirtualScheduler(Scheduler):
    """
    Deterministic scheduler whose clock only moves when told to.

    Callbacks fire in due-time order (ties in scheduling order) while `advance`
    walks the clock forward, so replaying the same writes always yields the
    same commits and update events.
    """

    MAX_CALLBACKS_PER_RUN = 100_000

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._sequence = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        handle = TimerHandle(self._now + max(0.0, delay), callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._sequence), handle))
        return handle

    @property
    def pending(self) -> int:
        """Number of scheduled callbacks that have not been cancelled."""
        return sum(1 for _, _, handle in self._queue if handle.active)

    def advance(self, seconds: float) -> None:
        """Move the clock forward by `seconds`, firing every callback that falls due."""
        target = self._now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if not handle.active:
                continue
            self._now = max(self._now, when)
            handle._run()
            fired += 1
            if fired > self.MAX_CALLBACKS_PER_RUN:
                raise RuntimeError("VirtualScheduler.advance exceeded callback limit")
        self._now = target

    def jump(self, seconds: float) -> None:
        """Move the clock forward without firing anything that falls due."""
        self._now += seconds

    def run_all(self) -> None:
        """Fire callbacks until the queue is empty, moving the clock as needed."""
        fired = 0
        while self._queue:
            when, _, handle = heapq.heappop(self._queue)
            if not handle.active:
                continue
            self._now = max(self._now, when)
            handle._run()
            fired += 1
            if fired > self.MAX_CALLBACKS_PER_RUN:
                raise RuntimeError("VirtualScheduler.run_all exceeded callback limit")
