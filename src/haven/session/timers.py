"""Named, independently cancelable timers and the clock they run against.

AsyncioScheduler runs timers as tasks on the running event loop.
ManualScheduler keeps virtual time that only moves when advance() is called,
firing due timers in order, so timer-driven behavior can be tested without
sleeping.
"""

import asyncio
import heapq
import itertools
import logging
import time
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    """A scheduled timer that can be cancelled."""

    name: str

    @property
    def active(self) -> bool: ...

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Creates timers and tells the time."""

    def now(self) -> float: ...

    def call_later(self, name: str, delay: float, callback: TimerCallback) -> TimerHandle: ...

    def call_every(self, name: str, interval: float, callback: TimerCallback) -> TimerHandle: ...


async def _run_callback(name: str, callback: TimerCallback) -> None:
    try:
        await callback()
    except Exception as e:
        logger.warning("Timer %s callback failed: %s", name, e)


class AsyncioTimer:
    """A timer backed by an asyncio task."""

    def __init__(self, name: str, delay: float, callback: TimerCallback, repeat: bool) -> None:
        self.name = name
        self.delay = delay
        self.repeat = repeat
        self._callback = callback
        self._cancelled = False
        self._task = asyncio.create_task(self._loop(), name=f"haven-timer-{name}")

    async def _loop(self) -> None:
        while not self._cancelled:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                break
            if self._cancelled:
                break
            await _run_callback(self.name, self._callback)
            if not self.repeat:
                break

    @property
    def active(self) -> bool:
        return not self._cancelled and not self._task.done()

    def cancel(self) -> None:
        """Stop the timer.

        A timer cancelled from inside its own callback is only marked, so the
        running callback finishes undisturbed and the loop exits after it.
        """
        self._cancelled = True
        if self._task is not asyncio.current_task() and not self._task.done():
            self._task.cancel()


class AsyncioScheduler:
    """Scheduler for production use on the running event loop."""

    def now(self) -> float:
        return time.time()

    def call_later(self, name: str, delay: float, callback: TimerCallback) -> AsyncioTimer:
        return AsyncioTimer(name, delay, callback, repeat=False)

    def call_every(self, name: str, interval: float, callback: TimerCallback) -> AsyncioTimer:
        return AsyncioTimer(name, interval, callback, repeat=True)


class ManualTimer:
    """A timer living in a ManualScheduler's virtual time."""

    def __init__(self, name: str, due: float, interval: float, callback: TimerCallback, repeat: bool) -> None:
        self.name = name
        self.due = due
        self.interval = interval
        self.repeat = repeat
        self.callback = callback
        self.fired = 0
        self._cancelled = False

    @property
    def active(self) -> bool:
        if self._cancelled:
            return False
        return self.repeat or self.fired == 0

    def cancel(self) -> None:
        self._cancelled = True


class ManualScheduler:
    """Scheduler with virtual time, advanced explicitly by tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start
        self._queue: list[tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def _push(self, timer: ManualTimer) -> None:
        heapq.heappush(self._queue, (timer.due, next(self._seq), timer))

    def call_later(self, name: str, delay: float, callback: TimerCallback) -> ManualTimer:
        timer = ManualTimer(name, self._now + delay, delay, callback, repeat=False)
        self._push(timer)
        return timer

    def call_every(self, name: str, interval: float, callback: TimerCallback) -> ManualTimer:
        timer = ManualTimer(name, self._now + interval, interval, callback, repeat=True)
        self._push(timer)
        return timer

    def pending(self) -> list[ManualTimer]:
        """Active timers, soonest first."""
        return [timer for _, _, timer in sorted(self._queue) if timer.active]

    def get(self, name: str) -> ManualTimer | None:
        """Soonest active timer with the given name."""
        for timer in self.pending():
            if timer.name == name:
                return timer
        return None

    async def advance(self, seconds: float) -> int:
        """Move virtual time forward, firing every timer that falls due.

        Returns:
            Number of callbacks fired.
        """
        target = self._now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            if not timer.active:
                continue
            self._now = max(self._now, due)
            timer.fired += 1
            if timer.repeat:
                timer.due = due + timer.interval
                self._push(timer)
            await _run_callback(timer.name, timer.callback)
            fired += 1
        self._now = target
        return fired

    async def fire(self, name: str) -> bool:
        """Fire the named timer now, without moving time.

        Returns:
            True if an active timer with that name was fired.
        """
        timer = self.get(name)
        if timer is None:
            return False
        timer.fired += 1
        await _run_callback(timer.name, timer.callback)
        return True
