"""Download pipeline: mirror remote assets into the backup folder.

This module provides:
- DownloadPipeline: enumerate, filter, transfer, verify and index assets
- validate_download_settings: precondition checks run before a download
- file_matches_checksum: compare a local file with a server checksum

A run walks the selected albums (or the whole library, page by page) in
enumeration order. Each asset is skipped if it is already indexed or its
destination exists, otherwise it is downloaded to a temp file, moved into
place, optionally verified and given a metadata sidecar, then indexed.
The first transfer or verification failure aborts the run. The index is
saved every INDEX_FLUSH_INTERVAL downloads and whenever the run ends.
"""

from __future__ import annotations

import base64
import contextlib
import hashlib
import json
import logging
import os
import time
from collections.abc import Callable, Iterator
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

from immichsync.client.api import APIError, AssetSummary
from immichsync.client.state import atomic_write_bytes
from immichsync.client.sync.cancel import CancelToken
from immichsync.client.sync.paths import destination_path, sanitize, sidecar_path
from immichsync.client.sync.retry import DEFAULT_ATTEMPTS, retry_with_backoff
from immichsync.client.sync.throttle import throttle
from immichsync.client.sync.types import (
    DownloadItemState,
    DownloadProgress,
    DownloadProgressCallback,
    DownloadResult,
    DownloadStatusCallback,
    DownloadStatusItem,
)
from immichsync.core.errors import (
    CancelledError,
    ConfigurationError,
    FilesystemError,
    VerificationError,
)
from immichsync.core.types import AssetType

if TYPE_CHECKING:
    from immichsync.client.api import ImmichClient
    from immichsync.client.state import DownloadIndex
    from immichsync.core.config import SyncSettings

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
INDEX_FLUSH_INTERVAL = 25
PROGRESS_INTERVAL = 0.2  # seconds between progress callbacks
HASH_BLOCK_SIZE = 1024 * 1024


def validate_download_settings(settings: SyncSettings, api_key: str) -> None:
    """Check download preconditions.

    Raises:
        ConfigurationError: With the first missing piece of configuration.
    """
    if not settings.download_folder:
        raise ConfigurationError("Pick a backup folder first.")
    if not settings.server_url.strip():
        raise ConfigurationError("Server URL is required.")
    if not api_key.strip():
        raise ConfigurationError("API key is required.")
    if not (settings.include_photos or settings.include_videos):
        raise ConfigurationError("Select at least one asset type.")


def requested_type(settings: SyncSettings) -> AssetType | None:
    """Server-side type filter: only set when exactly one type is enabled."""
    if settings.include_photos == settings.include_videos:
        return None
    return AssetType.IMAGE if settings.include_photos else AssetType.VIDEO


def passes_filter(asset: AssetSummary, settings: SyncSettings) -> bool:
    """Apply the trashed and type filters. Unknown types always pass."""
    if settings.skip_trashed and asset.is_trashed:
        return False
    if asset.type is None or (settings.include_photos and settings.include_videos):
        return True
    if settings.include_photos and asset.type == AssetType.IMAGE:
        return True
    return settings.include_videos and asset.type == AssetType.VIDEO


def _file_digests(path: Path) -> tuple[bytes, bytes]:
    sha1 = hashlib.sha1()
    sha256 = hashlib.sha256()
    with path.open("rb") as f:
        for block in iter(lambda: f.read(HASH_BLOCK_SIZE), b""):
            sha1.update(block)
            sha256.update(block)
    return sha1.digest(), sha256.digest()


def file_matches_checksum(path: Path, checksum: str) -> bool:
    """Check a local file against a server checksum.

    Hex SHA-256, hex SHA-1 and base64 SHA-1/SHA-256 are recognized.
    """
    sha1, sha256 = _file_digests(path)
    candidate = checksum.strip()
    if candidate.lower() in (sha256.hex(), sha1.hex()):
        return True
    encoded = {base64.b64encode(sha1).decode("ascii"), base64.b64encode(sha256).decode("ascii")}
    return candidate in encoded


def extract_checksum(metadata: bytes | None) -> str | None:
    """Read ``checksum`` / ``checksumValue`` from a metadata document."""
    if not metadata:
        return None
    try:
        data = json.loads(metadata)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    for key in ("checksum", "checksumValue"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class _RateLimiter:
    """Allow one event per interval; forced events always pass."""

    def __init__(self, interval: float, clock: Callable[[], float]) -> None:
        self._interval = interval
        self._clock = clock
        self._last: float | None = None

    def ready(self, force: bool = False) -> bool:
        now = self._clock()
        if force or self._last is None or now - self._last >= self._interval:
            self._last = now
            return True
        return False


class DownloadPipeline:
    """Download remote assets into the configured backup folder."""

    def __init__(
        self,
        client: ImmichClient,
        settings: SyncSettings,
        index: DownloadIndex,
        cancel_token: CancelToken | None = None,
        on_progress: DownloadProgressCallback | None = None,
        on_status: DownloadStatusCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
        attempts: int = DEFAULT_ATTEMPTS,
    ) -> None:
        """Initialize the pipeline.

        Args:
            client: Remote catalog client.
            settings: Engine settings (folder, filters, options).
            index: Download index, updated strictly after each success.
            cancel_token: Token checked at every loop boundary.
            on_progress: Progress callback, rate-limited to one per 200 ms.
            on_status: Per-asset status callback.
            clock: Monotonic clock used for rate limiting.
            attempts: Transfer attempts per asset.
        """
        self._client = client
        self._settings = settings
        self._index = index
        self._token = cancel_token or CancelToken()
        self._on_progress = on_progress
        self._on_status = on_status
        self._progress_limiter = _RateLimiter(PROGRESS_INTERVAL, clock)
        self._status_limiter = _RateLimiter(PROGRESS_INTERVAL, clock)
        self._attempts = attempts
        self._progress = DownloadProgress()
        self._since_flush = 0

    @property
    def base_folder(self) -> Path:
        return Path(self._settings.download_folder).expanduser()

    def run(self) -> DownloadResult:
        """Run the download.

        Returns:
            DownloadResult; ``cancelled`` is set if the token fired.

        Raises:
            ConfigurationError: If folder or type selection is missing.
            FilesystemError: If a destination cannot be created.
            VerificationError: If a downloaded file fails verification.
            APIError: If enumeration or a transfer fails after retries.
        """
        settings = self._settings
        if not settings.download_folder:
            raise ConfigurationError("Pick a backup folder first.")
        if not (settings.include_photos or settings.include_videos):
            raise ConfigurationError("Select at least one asset type.")

        cancelled = False
        try:
            self._make_dirs(self.base_folder)
            for asset, album_name in self._enumerate():
                self._token.raise_if_cancelled()
                self._process(asset, album_name)
        except CancelledError:
            logger.info("Download cancelled")
            cancelled = True
        finally:
            self._flush_index()
            self._emit_progress(force=True)

        progress = self._progress
        return DownloadResult(
            downloaded=progress.downloaded,
            skipped=progress.skipped,
            bytes=progress.bytes,
            total=progress.total,
            cancelled=cancelled,
        )

    # === Enumeration ===

    def _enumerate(self) -> Iterator[tuple[AssetSummary, str | None]]:
        if self._settings.selected_album_ids:
            yield from self._enumerate_albums()
        else:
            yield from self._enumerate_library()

    def _enumerate_albums(self) -> Iterator[tuple[AssetSummary, str | None]]:
        settings = self._settings
        album_ids = settings.selected_album_ids
        names: dict[str, str] = {}
        if settings.organize_by_album:
            names = {album.id: album.name for album in self._client.list_albums()}
            for album_id in album_ids:
                if album_id in names:
                    self._make_dirs(self.base_folder / sanitize(names[album_id]))

        seen: set[str] = set()
        combined: list[tuple[AssetSummary, str | None]] = []
        for album_id in album_ids:
            self._token.raise_if_cancelled()
            album_name = names.get(album_id)
            for asset in self._client.list_album_assets(album_id):
                if asset.id in seen:
                    continue
                seen.add(asset.id)
                combined.append((asset, album_name))
            logger.debug(f"Album {album_id}: {len(combined)} unique assets so far")

        self._update(total=len(combined))
        yield from combined

    def _enumerate_library(self) -> Iterator[tuple[AssetSummary, str | None]]:
        asset_type = requested_type(self._settings)
        page = 1
        seen = 0
        while True:
            self._token.raise_if_cancelled()
            assets, total = self._client.list_assets_page(page, asset_type, PAGE_SIZE)
            if not assets:
                return
            seen += len(assets)
            self._update(total=total if total is not None else max(seen, self._progress.total))
            self._emit_progress()
            logger.debug(f"Page {page}: {len(assets)} assets")
            for asset in assets:
                yield asset, None
            page += 1

    # === Per asset ===

    def _process(self, asset: AssetSummary, album_name: str | None) -> None:
        settings = self._settings
        if not passes_filter(asset, settings):
            self._skip()
            return
        if asset.id in self._index:
            self._skip()
            return

        destination = destination_path(
            self.base_folder,
            asset,
            settings.structure,
            album_name if settings.organize_by_album else None,
        )
        if destination.exists():
            self._index.add(asset.id)
            self._skip()
            return

        self._make_dirs(destination.parent)
        name = asset.original_file_name or asset.id
        self._update(current=name)
        if self._status_limiter.ready():
            self._post_status(asset, name, DownloadItemState.DOWNLOADING)

        try:
            nbytes, expected = retry_with_backoff(
                lambda: self._transfer(asset, destination),
                attempts=self._attempts,
                sleep=self._token.sleep,
            )
            if nbytes > 0 and (settings.verify_integrity or settings.write_sidecar):
                self._finish_file(asset, destination, nbytes, expected)
        except CancelledError:
            raise
        except Exception as e:
            logger.error(f"Download of {asset.id} failed: {e}")
            self._post_status(asset, name, DownloadItemState.FAILED, str(e))
            raise

        self._index.add(asset.id)
        self._update(
            downloaded=self._progress.downloaded + 1,
            bytes=self._progress.bytes + nbytes,
            current=None,
        )
        self._post_status(asset, name, DownloadItemState.DONE)
        self._emit_progress()
        self._since_flush += 1
        if self._since_flush >= INDEX_FLUSH_INTERVAL:
            self._flush_index()
        throttle(nbytes, settings.download_bandwidth_limit, sleep=self._token.sleep)

    def _transfer(self, asset: AssetSummary, destination: Path) -> tuple[int, int | None]:
        """Download into a temp file and move it into place.

        Returns:
            (bytes written, expected size). Bytes is 0 when the destination
            appeared while downloading; the existing file is left untouched.
        """
        downloaded = self._client.download_asset(
            asset.id,
            destination.parent,
            cancel_check=self._token.is_cancelled,
            timeout=self._settings.download_timeout,
        )
        if destination.exists():
            with contextlib.suppress(OSError):
                downloaded.path.unlink()
            logger.info(f"{destination} already exists, keeping existing file")
            return 0, None
        try:
            os.replace(downloaded.path, destination)
        except OSError as e:
            with contextlib.suppress(OSError):
                downloaded.path.unlink()
            raise FilesystemError(f"Cannot write {destination}: {e}") from e
        return downloaded.bytes_written, downloaded.expected_size

    def _finish_file(
        self,
        asset: AssetSummary,
        destination: Path,
        nbytes: int,
        expected: int | None,
    ) -> None:
        """Verify the file and write its sidecar from one metadata fetch."""
        metadata: bytes | None = None
        try:
            metadata = self._client.fetch_asset_metadata(asset.id)
        except APIError as e:
            logger.warning(f"Metadata for {asset.id} unavailable: {e}")

        if self._settings.verify_integrity:
            try:
                self._verify(destination, nbytes, expected, extract_checksum(metadata))
            except VerificationError:
                with contextlib.suppress(OSError):
                    destination.unlink()
                raise

        if self._settings.write_sidecar and metadata is not None:
            try:
                atomic_write_bytes(sidecar_path(destination), metadata)
            except FilesystemError as e:
                logger.warning(f"Sidecar for {asset.id} not written: {e}")

    @staticmethod
    def _verify(path: Path, nbytes: int, expected: int | None, checksum: str | None) -> None:
        if expected is not None and expected > 0 and nbytes != expected:
            raise VerificationError(
                f"Size mismatch for {path.name}: expected {expected}, got {nbytes}",
                path=str(path),
            )
        if checksum is None:
            logger.debug(f"No server checksum for {path.name}, size check only")
            return
        if not file_matches_checksum(path, checksum):
            raise VerificationError(f"Checksum mismatch for {path.name}", path=str(path))

    # === Bookkeeping ===

    def _skip(self) -> None:
        self._update(skipped=self._progress.skipped + 1)
        self._emit_progress()

    def _update(self, **changes: object) -> None:
        self._progress = replace(self._progress, **changes)

    def _emit_progress(self, force: bool = False) -> None:
        if self._on_progress and self._progress_limiter.ready(force):
            self._on_progress(self._progress)

    def _post_status(
        self,
        asset: AssetSummary,
        name: str,
        state: DownloadItemState,
        detail: str = "",
    ) -> None:
        if self._on_status:
            self._on_status(DownloadStatusItem(asset.id, name, state, detail))

    def _flush_index(self) -> None:
        self._since_flush = 0
        try:
            self._index.save()
        except FilesystemError as e:
            logger.error(f"Cannot save download index: {e}")

    @staticmethod
    def _make_dirs(directory: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create {directory}: {e}") from e
