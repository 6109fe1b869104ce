"""Cancellable one-shot timers owned by a single registry.

The scheduler never keeps a bare ``threading.Timer``: everything goes
through :class:`TimerRegistry` so a reschedule can cancel every pending
callback in one call.  A generation counter covers the race where a timer
has already fired but its callback has not run yet when ``cancel_all()``
happens.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from fpl_live.logging_config import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class TimerHandle:
    name: str
    due_at: datetime
    generation: int
    cancelled: bool = False
    _timer: object = field(default=None, repr=False)

    def cancel(self) -> None:
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class TimerRegistry:
    """Registry of pending timers.

    Parameters
    ----------
    timer_factory:
        ``(interval_seconds, function) -> timer`` where the timer has
        ``start()`` and ``cancel()``.  Defaults to :class:`threading.Timer`;
        tests pass a fake that fires on demand.
    clock:
        Returns the current aware datetime.
    """

    def __init__(
        self,
        timer_factory: Callable = threading.Timer,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._factory = timer_factory
        self._clock = clock
        self._lock = threading.Lock()
        self._handles: list[TimerHandle] = []
        self._generation = 0

    def schedule(self, delay: float, callback: Callable[[], None], name: str) -> TimerHandle:
        """Run *callback* after *delay* seconds unless cancelled first."""
        delay = max(0.0, float(delay))
        with self._lock:
            handle = TimerHandle(
                name=name,
                due_at=self._clock() + timedelta(seconds=delay),
                generation=self._generation,
            )

            def fire() -> None:
                with self._lock:
                    if handle.cancelled or handle.generation != self._generation:
                        return
                    if handle in self._handles:
                        self._handles.remove(handle)
                try:
                    callback()
                except Exception:
                    logger.exception("Timer %s failed", name)

            timer = self._factory(delay, fire)
            if hasattr(timer, "daemon"):
                timer.daemon = True
            handle._timer = timer
            self._handles.append(handle)
        timer.start()
        logger.debug("Scheduled %s at %s", name, handle.due_at.isoformat())
        return handle

    def schedule_at(self, when: datetime, callback: Callable[[], None], name: str) -> TimerHandle:
        return self.schedule((when - self._clock()).total_seconds(), callback, name)

    def cancel(self, handle: TimerHandle) -> None:
        with self._lock:
            handle.cancel()
            if handle in self._handles:
                self._handles.remove(handle)

    def cancel_all(self) -> int:
        """Cancel and invalidate every pending timer; return how many there were."""
        with self._lock:
            self._generation += 1
            handles, self._handles = self._handles, []
            for handle in handles:
                handle.cancel()
        if handles:
            logger.debug("Cancelled %d pending timer(s)", len(handles))
        return len(handles)

    def pending(self) -> list[TimerHandle]:
        with self._lock:
            return sorted(self._handles, key=lambda h: h.due_at)

    def next_due(self) -> datetime | None:
        pending = self.pending()
        return pending[0].due_at if pending else None
