"""Bandwidth throttling by post-transfer delay."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


def throttle_delay(nbytes: int, limit_mb_per_s: float) -> float:
    """Seconds to wait after moving ``nbytes`` to stay under the limit.

    Args:
        nbytes: Bytes just transferred.
        limit_mb_per_s: Limit in megabytes (10**6 bytes) per second; <= 0 disables.
    """
    if limit_mb_per_s <= 0 or nbytes <= 0:
        return 0.0
    return nbytes / (limit_mb_per_s * 1_000_000)


def throttle(
    nbytes: int,
    limit_mb_per_s: float,
    sleep: Callable[[float], None] = time.sleep,
) -> float:
    """Sleep long enough to honour the bandwidth limit.

    Returns:
        The delay that was applied.
    """
    delay = throttle_delay(nbytes, limit_mb_per_s)
    if delay > 0:
        logger.debug(f"Throttling {nbytes} bytes: sleeping {delay:.2f}s")
        sleep(delay)
    return delay
