"""Upload pipeline: push new local files from the upload folder.

This module provides:
- discover_files: walk the upload folder and apply type/allow/deny filters
- Fingerprint: content hash + size + mtime used for the server duplicate check
- UploadPipeline: skip known files, check the server, upload, index
- validate_upload_settings: precondition checks run before an upload
"""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from immichsync.client.api import APIError, DuplicateCandidate
from immichsync.client.sync.cancel import CancelToken
from immichsync.client.sync.retry import DEFAULT_ATTEMPTS, retry_with_backoff
from immichsync.client.sync.throttle import throttle
from immichsync.client.sync.types import (
    UploadProgress,
    UploadProgressCallback,
    UploadResult,
)
from immichsync.core.errors import (
    CancelledError,
    ConfigurationError,
    FilesystemError,
)

if TYPE_CHECKING:
    from immichsync.client.api import ImmichClient
    from immichsync.client.state import ServerDuplicateCache, UploadIndex
    from immichsync.core.config import SyncSettings

logger = logging.getLogger(__name__)

PHOTO_EXTENSIONS = frozenset(
    {"jpg", "jpeg", "png", "heic", "heif", "tif", "tiff", "gif", "bmp", "webp", "dng", "raw"}
)
VIDEO_EXTENSIONS = frozenset({"mov", "mp4", "m4v", "avi", "mkv", "webm", "3gp"})

HASH_BLOCK_SIZE = 1024 * 1024


def validate_upload_settings(settings: SyncSettings, api_key: str) -> None:
    """Check upload preconditions.

    Raises:
        ConfigurationError: With the first missing piece of configuration.
        FilesystemError: If the upload folder is not a readable directory.
    """
    if not settings.upload_folder:
        raise ConfigurationError("Pick an upload folder first.")
    folder = Path(settings.upload_folder).expanduser()
    if not folder.is_dir() or not os.access(folder, os.R_OK | os.X_OK):
        raise FilesystemError(f"Upload folder is not readable: {folder}")
    if not settings.server_url.strip():
        raise ConfigurationError("Server URL is required.")
    if not api_key.strip():
        raise ConfigurationError("API key is required.")
    if not (settings.upload_include_photos or settings.upload_include_videos):
        raise ConfigurationError("Select at least one upload type.")


def parse_extension_list(text: str) -> set[str]:
    """Parse a comma-separated extension list (case-insensitive, dot optional)."""
    return {part.strip().lstrip(".").lower() for part in text.split(",") if part.strip()}


def extension_allowed(path: Path, settings: SyncSettings) -> bool:
    """Apply the type table, then the allow-list (which wins) or deny-list."""
    ext = path.suffix.lstrip(".").lower()
    photos, videos = settings.upload_include_photos, settings.upload_include_videos
    if not (photos and videos):
        allowed = (PHOTO_EXTENSIONS if photos else frozenset()) | (
            VIDEO_EXTENSIONS if videos else frozenset()
        )
        if ext not in allowed:
            return False
    allow = parse_extension_list(settings.upload_allow_list)
    if allow:
        return ext in allow
    deny = parse_extension_list(settings.upload_deny_list)
    return ext not in deny


def _walk(folder: Path, recursive: bool) -> Iterator[Path]:
    try:
        entries = list(os.scandir(folder))
    except OSError as e:
        logger.warning(f"Cannot list {folder}: {e}")
        return
    for entry in entries:
        if entry.name.startswith("."):
            continue
        try:
            if entry.is_file(follow_symlinks=False):
                yield Path(entry.path)
            elif recursive and entry.is_dir(follow_symlinks=False):
                yield from _walk(Path(entry.path), recursive)
        except OSError as e:
            logger.warning(f"Skipping {entry.path}: {e}")


def discover_files(settings: SyncSettings) -> list[Path]:
    """List upload candidates, sorted for stable enumeration order.

    Hidden entries are skipped and only regular files are returned.
    """
    folder = Path(settings.upload_folder).expanduser().resolve()
    files = (
        path
        for path in _walk(folder, settings.include_upload_subfolders)
        if extension_allowed(path, settings)
    )
    return sorted(files)


def file_times(path: Path) -> tuple[datetime, datetime]:
    """Return (created, modified) for a file as aware UTC datetimes.

    Creation uses the birth time where the platform reports one, else ctime.
    """
    try:
        stat = path.stat()
    except OSError:
        now = datetime.now(timezone.utc)
        return now, now
    created = getattr(stat, "st_birthtime", None) or stat.st_ctime
    return (
        datetime.fromtimestamp(created, timezone.utc),
        datetime.fromtimestamp(stat.st_mtime, timezone.utc),
    )


@dataclass(frozen=True)
class Fingerprint:
    """Content fingerprint of a local file."""

    sha1: str
    size: int
    mtime: float

    @property
    def key(self) -> str:
        """Server duplicate cache key."""
        return f"{self.sha1}|{self.size}|{self.mtime}"

    @classmethod
    def of(cls, path: Path, cancel_token: CancelToken | None = None) -> Fingerprint:
        """Hash a file."""
        stat = path.stat()
        digest = hashlib.sha1()
        with path.open("rb") as f:
            for block in iter(lambda: f.read(HASH_BLOCK_SIZE), b""):
                if cancel_token:
                    cancel_token.raise_if_cancelled()
                digest.update(block)
        return cls(sha1=digest.hexdigest(), size=stat.st_size, mtime=stat.st_mtime)


class UploadPipeline:
    """Upload new files from the upload folder to the server."""

    def __init__(
        self,
        client: ImmichClient,
        settings: SyncSettings,
        index: UploadIndex,
        duplicate_cache: ServerDuplicateCache,
        cancel_token: CancelToken | None = None,
        on_progress: UploadProgressCallback | None = None,
        attempts: int = DEFAULT_ATTEMPTS,
    ) -> None:
        """Initialize the pipeline.

        Args:
            client: Remote catalog client.
            settings: Engine settings (folder, filters, options).
            index: Upload index, saved after every successful upload.
            duplicate_cache: Server duplicate verdicts by fingerprint.
            cancel_token: Token checked at every loop boundary.
            on_progress: Progress callback.
            attempts: Transfer attempts per file.
        """
        self._client = client
        self._settings = settings
        self._index = index
        self._cache = duplicate_cache
        self._token = cancel_token or CancelToken()
        self._on_progress = on_progress
        self._attempts = attempts
        self._progress = UploadProgress()

    def run(self) -> UploadResult:
        """Run the upload.

        Returns:
            UploadResult; ``no_files`` is set if discovery found nothing and
            ``cancelled`` if the token fired.

        Raises:
            ConfigurationError: If folder or type selection is missing.
            FilesystemError: If the folder is unreadable or the index cannot be saved.
            APIError: If an upload fails after retries.
        """
        settings = self._settings
        if not settings.upload_folder:
            raise ConfigurationError("Pick an upload folder first.")
        if not (settings.upload_include_photos or settings.upload_include_videos):
            raise ConfigurationError("Select at least one upload type.")
        folder = Path(settings.upload_folder).expanduser()
        if not folder.is_dir():
            raise FilesystemError(f"Upload folder is not readable: {folder}")

        files = discover_files(settings)
        self._update(total=len(files))
        self._emit()
        if not files:
            logger.info(f"No files to upload in {folder}")
            return UploadResult(no_files=True)

        cancelled = False
        try:
            for path in files:
                self._token.raise_if_cancelled()
                self._process(path)
        except CancelledError:
            logger.info("Upload cancelled")
            cancelled = True

        progress = self._progress
        return UploadResult(
            uploaded=progress.uploaded,
            skipped=progress.skipped,
            bytes=progress.bytes,
            total=progress.total,
            local_duplicates=progress.local_duplicates,
            server_duplicates=progress.server_duplicates,
            cancelled=cancelled,
        )

    def _process(self, path: Path) -> None:
        if str(path) in self._index:
            self._update(
                skipped=self._progress.skipped + 1,
                local_duplicates=self._progress.local_duplicates + 1,
            )
            self._emit()
            return

        if self._settings.check_server_duplicates and self._on_server(path):
            logger.debug(f"{path} already on server")
            self._update(
                skipped=self._progress.skipped + 1,
                server_duplicates=self._progress.server_duplicates + 1,
            )
            self._emit()
            return

        self._update(current=path.name)
        self._emit()
        created, modified = file_times(path)
        uploaded = retry_with_backoff(
            lambda: self._client.upload_asset(
                path,
                device_id=self._settings.device_id,
                created_at=created,
                modified_at=modified,
            ),
            attempts=self._attempts,
            sleep=self._token.sleep,
        )
        logger.info(f"Uploaded {path} as {uploaded.asset_id}")
        self._index.add(path, uploaded.asset_id)
        self._index.save()
        self._update(
            uploaded=self._progress.uploaded + 1,
            bytes=self._progress.bytes + uploaded.bytes,
            current=None,
        )
        self._emit()
        throttle(uploaded.bytes, self._settings.upload_bandwidth_limit, sleep=self._token.sleep)

    def _on_server(self, path: Path) -> bool:
        """Ask the server (through the cache) whether it already has the file.

        A failing check counts as "not on server" and is not cached.
        """
        try:
            fingerprint = Fingerprint.of(path, self._token)
        except OSError as e:
            logger.warning(f"Cannot fingerprint {path}: {e}")
            return False

        cached = self._cache.get(fingerprint.key)
        if cached is not None:
            return cached

        created, modified = file_times(path)
        candidate = DuplicateCandidate(
            device_asset_id=f"{path.name}-{fingerprint.size}",
            device_id=self._settings.device_id,
            file_created_at=created,
            file_modified_at=modified,
            filename=path.name,
            size=fingerprint.size,
            checksum=fingerprint.sha1,
        )
        try:
            verdict = self._client.bulk_duplicate_check([candidate])[0]
        except APIError as e:
            logger.warning(f"Server duplicate check failed for {path}: {e}")
            return False

        self._cache.set(fingerprint.key, verdict)
        try:
            self._cache.save()
        except FilesystemError as e:
            logger.warning(f"Cannot save duplicate cache: {e}")
        return verdict

    def _update(self, **changes: object) -> None:
        self._progress = replace(self._progress, **changes)

    def _emit(self) -> None:
        if self._on_progress:
            self._on_progress(self._progress)
