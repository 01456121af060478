"""Upload folder watcher.

This module provides:
- FolderWatcher: protocol the coordinator depends on
- UploadFolderWatcher: watchdog-based implementation that reports changes
  to a callback (debouncing is the caller's job)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from watchdog.events import (
    DirModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


class FolderWatcher(Protocol):
    """Something that reports changes below a folder until stopped."""

    def start(self) -> None: ...

    def stop(self) -> None: ...


ChangeCallback = Callable[[Path], None]
WatcherFactory = Callable[[Path, ChangeCallback], FolderWatcher]


def _decode(path: str | bytes) -> Path:
    if isinstance(path, bytes):
        path = path.decode("utf-8", errors="replace")
    return Path(path)


class ChangeHandler(FileSystemEventHandler):
    """Forward relevant file events to a callback.

    Directory modification events and hidden entries are ignored.
    """

    def __init__(self, base_path: Path, on_change: ChangeCallback) -> None:
        super().__init__()
        self._base_path = base_path
        self._on_change = on_change

    def _is_hidden(self, path: Path) -> bool:
        try:
            parts = path.relative_to(self._base_path).parts
        except ValueError:
            parts = (path.name,)
        return any(part.startswith(".") for part in parts)

    def _handle(self, path: Path) -> None:
        if self._is_hidden(path):
            return
        logger.debug(f"Change detected: {path}")
        self._on_change(path)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        self._handle(_decode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        if isinstance(event, DirModifiedEvent):
            return
        self._handle(_decode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event (the destination is the new file)."""
        self._handle(_decode(event.dest_path))


class UploadFolderWatcher:
    """Watches the upload folder with watchdog."""

    def __init__(self, watch_path: Path, on_change: ChangeCallback, recursive: bool = True) -> None:
        """Initialize the watcher.

        Args:
            watch_path: Directory to watch.
            on_change: Called with the changed path (on the observer thread).
            recursive: Watch subfolders too.

        Raises:
            ValueError: If watch_path is not a directory.
        """
        self._watch_path = Path(watch_path).expanduser().resolve()
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")
        self._handler = ChangeHandler(self._watch_path, on_change)
        self._recursive = recursive
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def watch_path(self) -> Path:
        """Get the watched directory path."""
        return self._watch_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return
        self._observer.schedule(self._handler, str(self._watch_path), recursive=self._recursive)
        self._observer.start()
        self._running = True
        logger.info(f"Watching {self._watch_path}")

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False

    def __enter__(self) -> UploadFolderWatcher:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
