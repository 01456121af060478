"""Persistent index store for the sync engine.

This module provides:
- DownloadIndex: set of asset IDs already present in the backup folder
- UploadIndex: local path -> remote asset ID for uploaded files
- ServerDuplicateCache: fingerprint key -> "already on server" verdict
- SyncHistoryStore: bounded run history, newest first
- StateStore: the four stores rooted at one state directory

Architecture:
    Each store is loaded once at engine start. A missing or unreadable file
    loads as empty. Writes go through atomic_write_json, so a failed save
    never corrupts the previous file.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from immichsync.core.errors import FilesystemError

logger = logging.getLogger(__name__)

DOWNLOAD_INDEX_FILE = "downloaded-assets.json"
UPLOAD_INDEX_FILE = "uploaded-assets.json"
DUPLICATE_CACHE_FILE = "server-duplicate-cache.json"
HISTORY_FILE = "sync-history.json"

HISTORY_LIMIT = 100


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write bytes atomically: temp file in the same directory, fsync, replace.

    Raises:
        FilesystemError: If the write fails. The previous file is untouched.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as e:
        raise FilesystemError(f"Cannot write {path}: {e}") from e
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, path)
    except OSError as e:
        with contextlib.suppress(OSError):
            os.unlink(temp_name)
        raise FilesystemError(f"Cannot write {path}: {e}") from e


def atomic_write_json(path: Path, payload: Any) -> None:
    """Serialize payload as JSON and write it atomically."""
    atomic_write_bytes(path, json.dumps(payload, indent=2, sort_keys=False).encode("utf-8"))


def _load_json(path: Path, expected: type) -> Any:
    """Load a JSON document, returning an empty ``expected`` on any problem."""
    if not path.exists():
        return expected()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return expected()
    if not isinstance(data, expected):
        logger.warning("Ignoring state file %s with unexpected shape", path)
        return expected()
    return data


class DownloadIndex:
    """Asset IDs already downloaded to the backup folder.

    Entries are never removed because a local file disappeared; the only
    way to forget them is clear().
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._ids: set[str] = {
            item for item in _load_json(path, list) if isinstance(item, str)
        }

    def __contains__(self, asset_id: object) -> bool:
        with self._lock:
            return asset_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def add(self, asset_id: str) -> None:
        with self._lock:
            self._ids.add(asset_id)

    def clear(self) -> None:
        """Forget all downloaded IDs and persist the empty index."""
        with self._lock:
            self._ids.clear()
        self.save()

    def save(self) -> None:
        with self._lock:
            snapshot = sorted(self._ids)
        atomic_write_json(self.path, snapshot)


class UploadIndex:
    """Absolute local path -> remote asset ID of uploaded files."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._entries: dict[str, str] = {
            k: v for k, v in _load_json(path, dict).items() if isinstance(v, str)
        }

    def __contains__(self, local_path: object) -> bool:
        with self._lock:
            return str(local_path) in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, local_path: str | Path) -> str | None:
        with self._lock:
            return self._entries.get(str(local_path))

    def add(self, local_path: str | Path, asset_id: str) -> None:
        with self._lock:
            self._entries[str(local_path)] = asset_id

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self.save()

    def save(self) -> None:
        with self._lock:
            snapshot = dict(self._entries)
        atomic_write_json(self.path, snapshot)


class ServerDuplicateCache:
    """Fingerprint key -> whether the server already holds the content."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._entries: dict[str, bool] = {
            k: v for k, v in _load_json(path, dict).items() if isinstance(v, bool)
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> bool | None:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value: bool) -> None:
        with self._lock:
            self._entries[key] = value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self.save()

    def save(self) -> None:
        with self._lock:
            snapshot = dict(self._entries)
        atomic_write_json(self.path, snapshot)


class RunType(str, Enum):
    """Direction of a sync run."""

    DOWNLOAD = "download"
    UPLOAD = "upload"


@dataclass(frozen=True)
class SyncHistoryItem:
    """Summary of one finished run.

    Attributes:
        type: Run direction.
        started_at: When the run started (UTC).
        ended_at: When the run ended (UTC).
        downloaded: Assets downloaded.
        uploaded: Files uploaded.
        skipped: Items skipped.
        errors: Errors encountered (0 or 1, runs stop on the first error).
        id: Unique record ID.
    """

    type: RunType
    started_at: datetime
    ended_at: datetime
    downloaded: int = 0
    uploaded: int = 0
    skipped: int = 0
    errors: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "startedAt": self.started_at.isoformat(),
            "endedAt": self.ended_at.isoformat(),
            "downloaded": self.downloaded,
            "uploaded": self.uploaded,
            "skipped": self.skipped,
            "errors": self.errors,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncHistoryItem:
        """Create from a persisted record.

        Raises:
            KeyError, ValueError: If the record is malformed.
        """
        return cls(
            id=str(data["id"]),
            type=RunType(data["type"]),
            started_at=datetime.fromisoformat(data["startedAt"]),
            ended_at=datetime.fromisoformat(data["endedAt"]),
            downloaded=int(data.get("downloaded", 0)),
            uploaded=int(data.get("uploaded", 0)),
            skipped=int(data.get("skipped", 0)),
            errors=int(data.get("errors", 0)),
        )


class SyncHistoryStore:
    """Run history, newest first, capped at HISTORY_LIMIT entries."""

    def __init__(self, path: Path, limit: int = HISTORY_LIMIT) -> None:
        self.path = path
        self.limit = limit
        self._lock = threading.Lock()
        self._items: list[SyncHistoryItem] = []
        for record in _load_json(path, list):
            try:
                self._items.append(SyncHistoryItem.from_dict(record))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping malformed history record: %s", e)
        self._items = self._items[: self.limit]

    def items(self) -> list[SyncHistoryItem]:
        """Return a copy of the history, newest first."""
        with self._lock:
            return list(self._items)

    def append(self, item: SyncHistoryItem) -> None:
        """Insert a record at the front, evict the oldest beyond the cap, save."""
        with self._lock:
            self._items.insert(0, item)
            del self._items[self.limit :]
        self.save()

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
        self.save()

    def save(self) -> None:
        with self._lock:
            payload = [item.to_dict() for item in self._items]
        atomic_write_json(self.path, payload)


class StateStore:
    """All persistent engine state under one directory."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self.downloads = DownloadIndex(state_dir / DOWNLOAD_INDEX_FILE)
        self.uploads = UploadIndex(state_dir / UPLOAD_INDEX_FILE)
        self.duplicates = ServerDuplicateCache(state_dir / DUPLICATE_CACHE_FILE)
        self.history = SyncHistoryStore(state_dir / HISTORY_FILE)

    def reset(self) -> None:
        """Clear every store."""
        self.downloads.clear()
        self.uploads.clear()
        self.duplicates.clear()
        self.history.clear()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
