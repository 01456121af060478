"""Shared types and dataclasses for sync operations.

This module provides:
- CompletionState: outcome of the last run in one direction
- ConnectionStatus, ConnectionReport: health probe result
- DownloadProgress, UploadProgress: progress tracking dataclasses
- DownloadResult, UploadResult: pipeline result dataclasses
- DownloadStatusItem: per-asset status line
- LocalDuplicateReport: local duplicate scan result
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CompletionState(str, Enum):
    """Outcome of the most recent run in one direction."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ConnectionStatus(str, Enum):
    """Result of the connection health probe."""

    UNKNOWN = "unknown"
    CHECKING = "checking"
    OK = "ok"
    LIMITED = "limited"
    INVALID = "invalid"


@dataclass(frozen=True)
class ConnectionReport:
    """Connection status plus the warnings that led to it."""

    status: ConnectionStatus
    message: str = ""
    warnings: tuple[str, ...] = ()


class DownloadItemState(str, Enum):
    """State of one asset in the download status list."""

    DOWNLOADING = "downloading"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class DownloadStatusItem:
    """One line of the download status list."""

    asset_id: str
    name: str
    state: DownloadItemState
    detail: str = ""


@dataclass(frozen=True)
class DownloadProgress:
    """Download run progress.

    Attributes:
        downloaded: Assets transferred so far.
        skipped: Assets skipped (indexed, existing or filtered).
        total: Total assets known so far (grows while paging).
        bytes: Bytes written so far.
        current: Asset currently transferring, if any.
    """

    downloaded: int = 0
    skipped: int = 0
    total: int = 0
    bytes: int = 0
    current: str | None = None

    @property
    def text(self) -> str:
        return f"Downloaded {self.downloaded}, skipped {self.skipped} of {self.total}"


@dataclass(frozen=True)
class UploadProgress:
    """Upload run progress.

    Attributes:
        uploaded: Files uploaded so far.
        skipped: Files skipped (local + server duplicates).
        total: Files discovered.
        bytes: Bytes uploaded so far.
        local_duplicates: Files skipped because they were uploaded before.
        server_duplicates: Files skipped because the server already has them.
        current: File currently uploading, if any.
    """

    uploaded: int = 0
    skipped: int = 0
    total: int = 0
    bytes: int = 0
    local_duplicates: int = 0
    server_duplicates: int = 0
    current: str | None = None

    @property
    def text(self) -> str:
        return f"Uploaded {self.uploaded}, skipped {self.skipped} of {self.total}"


@dataclass
class DownloadResult:
    """Result of a download run."""

    downloaded: int = 0
    skipped: int = 0
    bytes: int = 0
    total: int = 0
    cancelled: bool = False

    @property
    def message(self) -> str:
        if self.cancelled:
            return "Stopped."
        return f"Done. Downloaded {self.downloaded}, skipped {self.skipped}."


@dataclass
class UploadResult:
    """Result of an upload run.

    ``no_files`` marks a run that discovered nothing to upload.
    """

    uploaded: int = 0
    skipped: int = 0
    bytes: int = 0
    total: int = 0
    local_duplicates: int = 0
    server_duplicates: int = 0
    cancelled: bool = False
    no_files: bool = False

    @property
    def message(self) -> str:
        if self.cancelled:
            return "Stopped."
        if self.no_files:
            return "No files found to upload. Check filters or allow/deny lists."
        if self.uploaded == 0 and self.skipped > 0:
            return "All files already on server."
        return f"Done. Uploaded {self.uploaded}, skipped {self.skipped}."


@dataclass(frozen=True)
class LocalDuplicateReport:
    """Result of a local duplicate scan.

    Attributes:
        count: Sum over (name, size) groups of (group size - 1).
        processed: Files examined.
        truncated: True if the scan stopped at the file limit.
        checked_at: When the scan finished.
    """

    count: int
    processed: int
    truncated: bool
    checked_at: datetime = field(default_factory=datetime.now)


# Callback types
DownloadProgressCallback = Callable[[DownloadProgress], None]
UploadProgressCallback = Callable[[UploadProgress], None]
DownloadStatusCallback = Callable[[DownloadStatusItem], None]


@dataclass(frozen=True)
class CoordinatorSnapshot:
    """Immutable copy of the coordinator's observable state."""

    download_running: bool = False
    upload_running: bool = False
    download_state: CompletionState = CompletionState.IDLE
    upload_state: CompletionState = CompletionState.IDLE
    download_progress: DownloadProgress = field(default_factory=DownloadProgress)
    upload_progress: UploadProgress = field(default_factory=UploadProgress)
    download_text: str = ""
    upload_text: str = ""
    last_error: str | None = None
    connection: ConnectionReport = field(
        default_factory=lambda: ConnectionReport(ConnectionStatus.UNKNOWN)
    )
    paused: bool = False
    rescan_pending: bool = False
    server_version: str | None = None
    duplicate_groups: int = 0
    duplicate_items: int = 0
    album_count: int = 0
    local_duplicates: LocalDuplicateReport | None = None
    download_items: tuple[DownloadStatusItem, ...] = ()
    error_log: tuple[str, ...] = ()
