"""Local duplicate scanner.

Counts files in the backup folder that share a (name, size) pair with
another file. Hidden entries are skipped.
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from datetime import datetime
from pathlib import Path

from immichsync.client.sync.cancel import CancelToken
from immichsync.client.sync.types import LocalDuplicateReport

logger = logging.getLogger(__name__)

MAX_FILES = 200_000
CANCEL_CHECK_INTERVAL = 2_000


def scan_local_duplicates(
    folder: Path,
    cancel_token: CancelToken | None = None,
    max_files: int = MAX_FILES,
) -> LocalDuplicateReport:
    """Scan a folder tree for (name, size) duplicates.

    Args:
        folder: Root of the scan; a missing folder yields an empty report.
        cancel_token: Checked every CANCEL_CHECK_INTERVAL files.
        max_files: Stop after this many files (report is marked truncated).

    Returns:
        LocalDuplicateReport with ``count = sum(max(0, n - 1))`` over groups.

    Raises:
        CancelledError: If cancelled during the scan.
    """
    token = cancel_token or CancelToken()
    if not folder.is_dir():
        return LocalDuplicateReport(count=0, processed=0, truncated=False, checked_at=datetime.now())

    groups: Counter[tuple[str, int]] = Counter()
    processed = 0
    truncated = False
    for root, dirs, files in os.walk(folder):
        dirs[:] = [d for d in dirs if not d.startswith(".")]
        for name in files:
            if name.startswith("."):
                continue
            path = os.path.join(root, name)
            try:
                if not os.path.isfile(path) or os.path.islink(path):
                    continue
                size = os.path.getsize(path)
            except OSError:
                continue
            groups[(name, size)] += 1
            processed += 1
            if processed % CANCEL_CHECK_INTERVAL == 0:
                token.raise_if_cancelled()
            if processed >= max_files:
                truncated = True
                break
        if truncated:
            logger.info(f"Duplicate scan stopped after {processed} files")
            break

    count = sum(max(0, n - 1) for n in groups.values())
    return LocalDuplicateReport(
        count=count, processed=processed, truncated=truncated, checked_at=datetime.now()
    )
