"""Clock and periodic timer capabilities injected into quiz sessions."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from threading import Event, Thread
from typing import Any, Protocol

from quizmaster.constants.session_constants import TIMER_THREAD_NAME

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime: ...


class Timer(Protocol):
    """Periodic callback source.

    ``start`` returns an opaque handle that ``cancel`` accepts. Cancelling must
    be safe from inside ``on_tick`` and must not block on the tick in flight.
    """

    def start(self, interval_seconds: float, on_tick: Callable[[], None]) -> Any: ...

    def cancel(self, handle: Any) -> None: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(slots=True)
class ThreadTimerHandle:
    interval_seconds: float
    stop_event: Event = field(default_factory=Event)
    thread: Thread | None = None

    @property
    def active(self) -> bool:
        return not self.stop_event.is_set()


class ThreadingTimer:
    """Runs ``on_tick`` every interval on a daemon thread until cancelled."""

    def __init__(self, thread_name: str = TIMER_THREAD_NAME) -> None:
        self._thread_name = thread_name

    def start(self, interval_seconds: float, on_tick: Callable[[], None]) -> ThreadTimerHandle:
        if interval_seconds <= 0:
            raise ValueError("Timer interval must be positive.")
        handle = ThreadTimerHandle(interval_seconds=interval_seconds)

        def run() -> None:
            # wait() returns True once cancelled, which ends the loop
            while not handle.stop_event.wait(interval_seconds):
                try:
                    on_tick()
                except Exception:
                    logger.exception("Timer callback failed")

        handle.thread = Thread(target=run, name=self._thread_name, daemon=True)
        handle.thread.start()
        return handle

    def cancel(self, handle: ThreadTimerHandle) -> None:
        handle.stop_event.set()
