"""Qt event-loop implementation of the session ``Timer`` capability."""

from __future__ import annotations

from collections.abc import Callable

from PySide6.QtCore import QObject, QTimer


class QtTimer:
    """Drives session ticks from a ``QTimer`` so they run on the Qt event loop.

    Ticks are delivered on the thread that owns the timer, which keeps every
    controller call on the GUI thread of a desktop client.
    """

    def __init__(self, parent: QObject | None = None) -> None:
        self._parent = parent

    def start(self, interval_seconds: float, on_tick: Callable[[], None]) -> QTimer:
        if interval_seconds <= 0:
            raise ValueError("Timer interval must be positive.")
        timer = QTimer(self._parent)
        timer.setInterval(int(interval_seconds * 1000))
        timer.timeout.connect(on_tick)
        timer.start()
        return timer

    def cancel(self, handle: QTimer) -> None:
        handle.stop()
