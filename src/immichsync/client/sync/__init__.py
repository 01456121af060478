"""Sync engine: download and upload pipelines plus their coordinator.

Architecture:
    SyncCoordinator → DownloadPipeline / UploadPipeline → ImmichClient

Components:
- **SyncCoordinator**: Owns engine state, starts/stops runs, one per direction
- **DownloadPipeline**: Enumerates remote assets and mirrors them locally
- **UploadPipeline**: Discovers local files and uploads the new ones
- **ConnectionProbe**: Classifies what the API key may do
- **UploadFolderWatcher**: Watches the upload folder (watchdog)
- **SyncScheduler**: Daily download, periodic upload scan, power checks
- **scan_local_duplicates**: (name, size) duplicate count in the backup folder
"""

from immichsync.client.sync.cancel import CancelToken
from immichsync.client.sync.coordinator import SyncCoordinator
from immichsync.client.sync.debounce import Debouncer
from immichsync.client.sync.download import DownloadPipeline, validate_download_settings
from immichsync.client.sync.duplicates import scan_local_duplicates
from immichsync.client.sync.probe import ConnectionProbe
from immichsync.client.sync.retry import DEFAULT_ATTEMPTS, DEFAULT_BASE_DELAY, retry_with_backoff
from immichsync.client.sync.scheduler import SyncScheduler
from immichsync.client.sync.throttle import throttle, throttle_delay
from immichsync.client.sync.types import (
    CompletionState,
    ConnectionReport,
    ConnectionStatus,
    CoordinatorSnapshot,
    DownloadProgress,
    DownloadResult,
    LocalDuplicateReport,
    UploadProgress,
    UploadResult,
)
from immichsync.client.sync.upload import UploadPipeline, discover_files, validate_upload_settings
from immichsync.client.sync.watcher import FolderWatcher, UploadFolderWatcher

__all__ = [
    # Coordinator
    "SyncCoordinator",
    "CoordinatorSnapshot",
    "CompletionState",
    # Pipelines
    "DownloadPipeline",
    "UploadPipeline",
    "discover_files",
    "validate_download_settings",
    "validate_upload_settings",
    "DownloadProgress",
    "DownloadResult",
    "UploadProgress",
    "UploadResult",
    # Probe and scans
    "ConnectionProbe",
    "ConnectionReport",
    "ConnectionStatus",
    "LocalDuplicateReport",
    "scan_local_duplicates",
    # Helpers
    "CancelToken",
    "Debouncer",
    "DEFAULT_ATTEMPTS",
    "DEFAULT_BASE_DELAY",
    "retry_with_backoff",
    "throttle",
    "throttle_delay",
    # Watching and scheduling
    "FolderWatcher",
    "UploadFolderWatcher",
    "SyncScheduler",
]
