"""Retry logic with quadratic backoff.

This module provides:
- retry_with_backoff: retry a transfer up to N attempts, sleeping
  ``attempt**2 * base_delay`` between attempts
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from immichsync.core.errors import CancelledError

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.2  # seconds

T = TypeVar("T")


def retry_with_backoff(
    func: Callable[[], T],
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> T:
    """Execute a function, retrying on failure.

    After failed attempt ``n`` (1-based) the function sleeps ``n*n*base_delay``
    seconds. CancelledError is never retried.

    Args:
        func: Function to execute.
        attempts: Total number of attempts.
        base_delay: Backoff unit in seconds.
        sleep: Sleep function (CancelToken.sleep makes the backoff interruptible).
        retryable_exceptions: Exception types to retry on.

    Returns:
        Result of the function.

    Raises:
        The last exception if all attempts fail.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except CancelledError:
            raise
        except retryable_exceptions as e:
            if attempt >= attempts:
                logger.error(f"All {attempts} attempts failed: {e}")
                raise
            delay = attempt * attempt * base_delay
            logger.warning(f"Attempt {attempt}/{attempts} failed: {e}. Retrying in {delay:.1f}s...")
            sleep(delay)

    raise RuntimeError("Unexpected retry loop exit")
