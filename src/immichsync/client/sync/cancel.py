"""Cooperative cancellation for long-running sync work."""

from __future__ import annotations

import threading

from immichsync.core.errors import CancelledError


class CancelToken:
    """Cancellation flag shared between a run and whoever may stop it.

    Pipelines check the token at each loop boundary, between streamed chunks
    and while sleeping (retry backoff, throttling).
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise CancelledError if cancellation was requested."""
        if self._event.is_set():
            raise CancelledError("Operation cancelled")

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``, waking early on cancellation.

        Raises:
            CancelledError: If cancelled before or during the sleep.
        """
        if seconds > 0:
            self._event.wait(seconds)
        self.raise_if_cancelled()
