"""Timer primitives used by the capture controller.

The controller never sleeps or spawns timers itself; it asks a
:class:`Scheduler` for one-shot (:meth:`Scheduler.call_later`) and periodic
(:meth:`Scheduler.call_every`) callbacks so hosts and tests can drive time
however they like.
"""

import threading
import time
from typing import Callable

from loguru import logger


class TimerHandle:
    """Handle returned by a scheduler. ``cancel()`` is idempotent."""

    def cancel(self) -> None:
        raise NotImplementedError

    @property
    def cancelled(self) -> bool:
        raise NotImplementedError


class Scheduler:
    """Source of one-shot and periodic callbacks."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


class _ThreadTimer(TimerHandle):
    """Daemon thread firing *callback* once after *delay*, or every *interval*.

    Periodic ticks are scheduled against the start time so they do not drift:
    tick ``n`` fires at ``start + n * interval``.
    """

    def __init__(self, delay: float, callback: Callable[[], None], repeat: bool) -> None:
        self._delay = delay
        self._callback = callback
        self._repeat = repeat
        self._cancel_event = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.name = "SpeakPrepTimer"

    def start(self) -> "_ThreadTimer":
        self._thread.start()
        return self

    def _run(self) -> None:
        started = time.monotonic()
        ticks = 0
        while True:
            ticks += 1
            remaining = started + ticks * self._delay - time.monotonic()
            if self._cancel_event.wait(max(0.0, remaining)):
                return
            try:
                self._callback()
            except Exception as e:
                logger.error(f"Timer callback failed: {e}")
            if not self._repeat:
                return

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()


class ThreadScheduler(Scheduler):
    """Wall-clock scheduler backed by daemon threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return _ThreadTimer(delay, callback, repeat=False).start()

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        return _ThreadTimer(interval, callback, repeat=True).start()
