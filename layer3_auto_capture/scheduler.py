"""
Layer 3 — Schedulers
Timers that drive the sampling loop and the pre-capture delay.

ThreadScheduler runs callbacks on daemon threads for the live service.
ManualScheduler is stepped explicitly so the capture loop can be driven
tick by tick without wall-clock timing.
"""
import itertools
import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancellation handle returned by the schedulers."""

    def __init__(self):
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class ThreadScheduler:
    """
    One daemon thread per timer.

    A repeating timer waits a full period after each callback returns, so a
    slow tick delays the next one instead of overlapping it, and missed
    ticks are never queued. Once cancel() returns no new call is started.
    """

    def __init__(self, name: str = "capture-timer"):
        self.name = name

    def call_every(self, period: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle()

        def run():
            while not handle._cancelled.wait(period):
                try:
                    callback()
                except Exception:
                    logger.exception(f"{self.name}: periodic callback failed")

        threading.Thread(target=run, name=f"{self.name}-every", daemon=True).start()
        logger.debug(f"{self.name}: repeating timer armed ({period * 1000:.0f}ms)")
        return handle

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle()

        def run():
            if handle._cancelled.wait(delay):
                return
            try:
                callback()
            except Exception:
                logger.exception(f"{self.name}: delayed callback failed")

        threading.Thread(target=run, name=f"{self.name}-later", daemon=True).start()
        return handle


class ManualTimer(TimerHandle):
    """Timer registered with a ManualScheduler."""

    def __init__(self, due: float, period: Optional[float], callback: Callable[[], None], seq: int):
        super().__init__()
        self.due = due
        self.period = period
        self.callback = callback
        self.seq = seq

    @property
    def repeating(self) -> bool:
        return self.period is not None


class ManualScheduler:
    """
    Deterministic scheduler with a virtual clock.

    Nothing runs until advance() or step() is called; due timers then fire
    in order of due time, then registration order.
    """

    EPSILON = 1e-9

    def __init__(self):
        self.now = 0.0
        self._timers: List[ManualTimer] = []
        self._seq = itertools.count()

    def call_every(self, period: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + period, period, callback, next(self._seq))
        self._timers.append(timer)
        return timer

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, None, callback, next(self._seq))
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self._timers if not t.cancelled]

    @property
    def active_timers(self) -> int:
        """Number of live repeating timers."""
        return sum(1 for t in self.pending if t.repeating)

    def _next_due(self, until: Optional[float]) -> Optional[ManualTimer]:
        due = [t for t in self.pending if until is None or t.due <= until + self.EPSILON]
        if not due:
            return None
        return min(due, key=lambda t: (t.due, t.seq))

    def _fire(self, timer: ManualTimer):
        self.now = max(self.now, timer.due)
        if timer.repeating:
            timer.due += timer.period
        else:
            timer.cancel()
        timer.callback()

    def step(self) -> bool:
        """Fire the next due timer. Returns False when nothing is pending."""
        timer = self._next_due(None)
        if timer is None:
            return False
        self._fire(timer)
        self._timers = self.pending
        return True

    def advance(self, seconds: float):
        """Move the clock forward, firing every timer that falls due."""
        target = self.now + seconds
        while True:
            timer = self._next_due(target)
            if timer is None:
                break
            self._fire(timer)
        self.now = target
        self._timers = self.pending
