"""Timer-based debouncer."""

from __future__ import annotations

import threading
from collections.abc import Callable


class Debouncer:
    """Run a callback once, ``delay`` seconds after the last trigger.

    Each trigger cancels the pending timer and starts a new one.
    """

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self._callback = callback
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def trigger(self) -> None:
        """Schedule (or reschedule) the callback."""
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        """Drop a pending callback."""
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._callback()
