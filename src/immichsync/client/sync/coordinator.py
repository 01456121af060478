"""Sync coordinator: the single owner of engine state.

This module provides:
- SyncCoordinator: starts and stops download/upload runs, probes the
  connection, watches the upload folder and exposes snapshots

Threading model:
    All observable state is mutated only on the coordinator's dispatcher
    thread, which consumes a queue of callables. Pipelines run on a shared
    thread pool and report back by posting callables onto that queue.
    Public methods may be called from any thread.

Run rules:
    - At most one download run and one upload run at a time; a second start
      while one is active returns False.
    - A non-manual start while paused is refused.
    - A cancelled run ends in state IDLE with text "Stopped."
    - Failures end in state FAILED, set last_error, append to the error log
      and call the notifier.
"""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, replace
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

from immichsync.client.api import APIError, Album, ImmichClient
from immichsync.client.credentials import resolve_api_key
from immichsync.client.state import RunType, StateStore, SyncHistoryItem, utcnow
from immichsync.client.sync.cancel import CancelToken
from immichsync.client.sync.debounce import Debouncer
from immichsync.client.sync.download import DownloadPipeline, validate_download_settings
from immichsync.client.sync.duplicates import scan_local_duplicates
from immichsync.client.sync.probe import ConnectionProbe
from immichsync.client.sync.scheduler import SyncScheduler
from immichsync.client.sync.types import (
    CompletionState,
    ConnectionReport,
    ConnectionStatus,
    CoordinatorSnapshot,
    DownloadProgress,
    DownloadResult,
    DownloadStatusItem,
    LocalDuplicateReport,
    UploadProgress,
    UploadResult,
)
from immichsync.client.sync.upload import UploadPipeline, validate_upload_settings
from immichsync.client.sync.watcher import FolderWatcher, UploadFolderWatcher, WatcherFactory
from immichsync.core.config import SyncSettings
from immichsync.core.errors import CancelledError, ConfigurationError, FilesystemError, SyncError

logger = logging.getLogger(__name__)

ERROR_LOG_LIMIT = 500
DOWNLOAD_ITEMS_LIMIT = 50
PROBE_DELAY = 0.6  # seconds after a credential edit
RESCAN_DELAY = 0.2  # seconds after a folder change

DOWNLOAD_PAUSED = "Sync paused due to power settings."
UPLOAD_PAUSED = "Uploads paused due to power settings."

T = TypeVar("T")
ClientFactory = Callable[[SyncSettings, str], ImmichClient]
Notifier = Callable[[str, str], None]


def default_client_factory(settings: SyncSettings, api_key: str) -> ImmichClient:
    """Build an ImmichClient from settings and a resolved API key."""
    return ImmichClient(settings.server_config(api_key))


@dataclass
class _Run:
    """Bookkeeping for an active run."""

    token: CancelToken
    manual: bool
    started_at: datetime
    future: Future[Any] | None = None


class SyncCoordinator:
    """Façade over the pipelines, probe, watcher and scheduler.

    Usage:
        coordinator = SyncCoordinator(settings, StateStore(state_dir))
        coordinator.start()
        coordinator.start_download()
        coordinator.wait_for_runs()
        coordinator.stop()
    """

    def __init__(
        self,
        settings: SyncSettings,
        state: StateStore,
        client_factory: ClientFactory = default_client_factory,
        api_key_resolver: Callable[[SyncSettings], str] = resolve_api_key,
        pause_check: Callable[[], bool] | None = None,
        notifier: Notifier | None = None,
        watcher_factory: WatcherFactory | None = None,
        max_workers: int = 4,
        probe_delay: float = PROBE_DELAY,
        rescan_delay: float = RESCAN_DELAY,
    ) -> None:
        """Initialize the coordinator.

        Args:
            settings: Engine settings.
            state: Persistent stores.
            client_factory: Builds a client for (settings, api_key).
            api_key_resolver: Returns the effective API key for settings.
            pause_check: Returns True when runs should pause (e.g. on battery).
            notifier: Called with (title, message) for user notifications.
            watcher_factory: Builds the upload folder watcher.
            max_workers: Thread pool size.
            probe_delay: Debounce delay of connection checks.
            rescan_delay: Debounce delay of folder-change rescans.
        """
        self._settings = settings
        self._state = state
        self._client_factory = client_factory
        self._resolve_api_key = api_key_resolver
        self._pause_check = pause_check
        self._notifier = notifier
        self._watcher_factory = watcher_factory or self._default_watcher

        self._queue: queue.Queue[Callable[[], None] | None] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="immichsync")
        self._probe_debouncer = Debouncer(probe_delay, lambda: self._post(self._start_probe))
        self._rescan_debouncer = Debouncer(rescan_delay, lambda: self._post(self._rescan_fired))
        self._scheduler: SyncScheduler | None = None

        # Dispatcher-owned state
        self._download: _Run | None = None
        self._upload: _Run | None = None
        self._probe_token: CancelToken | None = None
        self._scan_token: CancelToken | None = None
        self._watcher: FolderWatcher | None = None
        self._watcher_key: tuple[str, bool] | None = None
        self._watch_enabled = False
        self._paused = False
        self._stopping = False
        self._rescan_pending = False
        self._albums: tuple[Album, ...] = ()
        self._error_log: deque[str] = deque(maxlen=ERROR_LOG_LIMIT)
        self._download_items: deque[DownloadStatusItem] = deque(maxlen=DOWNLOAD_ITEMS_LIMIT)
        self._snapshot = CoordinatorSnapshot()

    # === Lifecycle ===

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, watch: bool = False, schedule: bool = False) -> None:
        """Start the dispatcher thread.

        Args:
            watch: Watch the upload folder for changes.
            schedule: Start the scheduler (daily download, upload scans, power checks).
        """
        if self.is_running:
            logger.warning("Coordinator already running")
            return
        self._thread = threading.Thread(target=self._run, name="SyncCoordinator", daemon=True)
        self._thread.start()
        if watch:
            self._call(self._enable_watcher)
        if schedule:
            self._start_scheduler()
        logger.info("Coordinator started")

    def stop(self, timeout: float = 10.0) -> None:
        """Cancel runs, stop watcher and scheduler, then stop the dispatcher."""
        if self._scheduler:
            self._scheduler.stop()
            self._scheduler = None
        self._probe_debouncer.cancel()
        self._rescan_debouncer.cancel()
        self._call(self._shutdown_runs)
        self._executor.shutdown(wait=True)
        if self._thread and self._thread.is_alive():
            self._queue.put(None)
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Coordinator stopped")

    def __enter__(self) -> SyncCoordinator:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()

    def _run(self) -> None:
        """Dispatcher loop."""
        while True:
            task = self._queue.get()
            if task is None:
                break
            try:
                task()
            except Exception:
                logger.exception("Error in coordinator task")

    def _post(self, fn: Callable[[], None]) -> None:
        """Queue fn on the dispatcher (runs inline when it is not running)."""
        if self.is_running:
            self._queue.put(fn)
        else:
            fn()

    def _call(self, fn: Callable[[], T]) -> T:
        """Run fn on the dispatcher and wait for its result."""
        if not self.is_running or threading.current_thread() is self._thread:
            return fn()
        future: Future[T] = Future()

        def task() -> None:
            try:
                future.set_result(fn())
            except Exception as e:
                future.set_exception(e)

        self._queue.put(task)
        return future.result()

    # === Public operations ===

    def snapshot(self) -> CoordinatorSnapshot:
        """Return an immutable copy of the observable state."""
        return self._call(self._build_snapshot)

    @property
    def settings(self) -> SyncSettings:
        return self._call(lambda: self._settings)

    def start_download(self, manual: bool = True) -> bool:
        """Start a download run.

        Returns:
            True if a run was started.
        """
        return self._call(partial(self._start_download, manual))

    def stop_download(self) -> None:
        """Request cancellation of the active download run."""
        self._call(partial(self._cancel_run, RunType.DOWNLOAD))

    def start_upload(self, manual: bool = True) -> bool:
        """Start an upload run.

        Returns:
            True if a run was started.
        """
        return self._call(partial(self._start_upload, manual))

    def stop_upload(self) -> None:
        """Request cancellation of the active upload run."""
        self._call(partial(self._cancel_run, RunType.UPLOAD))

    def scan_uploads(self) -> None:
        """Periodic scan: start a non-manual upload if uploads are enabled and idle."""
        self._post(self._periodic_upload_scan)

    def schedule_upload_rescan(self) -> None:
        """Mark a rescan pending and (re)arm the rescan debounce."""
        self._post(self._mark_rescan_pending)
        self._rescan_debouncer.trigger()

    def check_connection(self) -> None:
        """Debounced connection probe."""
        self._probe_debouncer.trigger()

    def check_connection_now(self) -> Future[ConnectionReport]:
        """Run the connection probe immediately."""
        return self._call(self._start_probe)

    def check_power(self) -> None:
        """Poll the pause check and stop non-manual runs when paused."""
        if self._pause_check is None:
            return
        try:
            paused = bool(self._pause_check())
        except Exception:
            logger.exception("Power check failed")
            return
        self._post(partial(self._apply_pause, paused))

    def update_settings(self, settings: SyncSettings) -> None:
        """Replace the settings.

        A changed download folder clears the download index; a changed upload
        folder or upload flag recreates the watcher; changed credentials
        schedule a connection check.
        """
        self._call(partial(self._apply_settings, settings))

    def refresh_albums(self) -> Future[list[Album]]:
        """Fetch the album list in the background."""
        return self._submit_query(lambda client: client.list_albums(), self._set_albums, [])

    def refresh_server_info(self) -> Future[str | None]:
        """Fetch the server version in the background."""
        return self._submit_query(lambda client: client.server_version(), self._set_version, None)

    def refresh_duplicates(self) -> Future[tuple[int, int]]:
        """Fetch the server duplicate summary in the background."""
        return self._submit_query(lambda client: client.list_duplicates(), self._set_duplicates, (0, 0))

    def scan_local_duplicates(self) -> Future[LocalDuplicateReport | None]:
        """Scan the backup folder for local duplicates in the background."""
        return self._call(self._start_local_scan)

    def history(self) -> list[SyncHistoryItem]:
        return self._state.history.items()

    def clear_history(self) -> None:
        self._call(self._state.history.clear)

    def clear_upload_history(self) -> None:
        self._call(self._state.uploads.clear)

    def clear_duplicate_cache(self) -> None:
        self._call(self._state.duplicates.clear)

    def reset(self) -> None:
        """Clear every persistent store and the error log."""
        self._call(self._reset)

    def export_error_log(self, path: Path) -> int:
        """Write the error log to a file.

        Returns:
            Number of entries written.

        Raises:
            FilesystemError: If the file cannot be written.
        """
        entries = self._call(lambda: list(self._error_log))
        try:
            path.write_text("\n".join(entries) + ("\n" if entries else ""), encoding="utf-8")
        except OSError as e:
            raise FilesystemError(f"Cannot write {path}: {e}") from e
        return len(entries)

    def wait_for_runs(self, timeout: float | None = None) -> bool:
        """Wait until the currently active runs finish.

        Returns:
            True if no run is active any more.
        """
        futures = self._call(
            lambda: [run.future for run in (self._download, self._upload) if run and run.future]
        )
        if futures:
            wait_futures(futures, timeout=timeout)
        # Completion callbacks are posted after the futures resolve.
        snapshot = self.snapshot()
        return not (snapshot.download_running or snapshot.upload_running)

    # === Dispatcher: runs ===

    def _is_paused(self) -> bool:
        return self._paused and self._settings.auto_pause_on_battery

    def _start_download(self, manual: bool) -> bool:
        if self._download is not None or self._stopping:
            return False
        if not manual and self._is_paused():
            self._set(last_error=DOWNLOAD_PAUSED, download_text=DOWNLOAD_PAUSED)
            return False

        settings = self._settings
        try:
            api_key = self._resolve_api_key(settings)
            validate_download_settings(settings, api_key)
            client = self._client_factory(settings, api_key)
        except SyncError as e:
            self._fail(RunType.DOWNLOAD, e, utcnow())
            return False

        run = _Run(token=CancelToken(), manual=manual, started_at=utcnow())
        self._download = run
        self._download_items.clear()
        self._set(
            download_running=True,
            download_state=CompletionState.RUNNING,
            download_progress=DownloadProgress(),
            download_text="Preparing download...",
            last_error=None,
        )
        pipeline = DownloadPipeline(
            client,
            settings,
            self._state.downloads,
            cancel_token=run.token,
            on_progress=lambda p: self._post(partial(self._download_progress, p)),
            on_status=lambda item: self._post(partial(self._download_item, item)),
        )
        run.future = self._executor.submit(self._run_pipeline, RunType.DOWNLOAD, client, pipeline, run)
        logger.info(f"Download started ({'manual' if manual else 'automatic'})")
        return True

    def _start_upload(self, manual: bool) -> bool:
        if self._upload is not None or self._stopping:
            return False
        if not manual and self._is_paused():
            self._set(last_error=UPLOAD_PAUSED, upload_text=UPLOAD_PAUSED)
            return False

        settings = self._settings
        try:
            api_key = self._resolve_api_key(settings)
            validate_upload_settings(settings, api_key)
            client = self._client_factory(settings, api_key)
        except SyncError as e:
            self._fail(RunType.UPLOAD, e, utcnow())
            return False

        run = _Run(token=CancelToken(), manual=manual, started_at=utcnow())
        self._upload = run
        self._rescan_pending = False
        self._set(
            upload_running=True,
            upload_state=CompletionState.RUNNING,
            upload_progress=UploadProgress(),
            upload_text="Scanning upload folder...",
            rescan_pending=False,
            last_error=None,
        )
        pipeline = UploadPipeline(
            client,
            settings,
            self._state.uploads,
            self._state.duplicates,
            cancel_token=run.token,
            on_progress=lambda p: self._post(partial(self._upload_progress, p)),
        )
        run.future = self._executor.submit(self._run_pipeline, RunType.UPLOAD, client, pipeline, run)
        logger.info(f"Upload started ({'manual' if manual else 'automatic'})")
        return True

    def _run_pipeline(
        self,
        run_type: RunType,
        client: ImmichClient,
        pipeline: DownloadPipeline | UploadPipeline,
        run: _Run,
    ) -> None:
        """Worker thread: run a pipeline and post its outcome."""
        try:
            with client:
                result = pipeline.run()
        except (SyncError, APIError) as e:
            logger.error(f"{run_type.value.capitalize()} failed: {e}")
            self._post(partial(self._finish_run, run_type, run, None, e))
            return
        except Exception as e:
            logger.exception(f"Unexpected {run_type.value} failure")
            self._post(partial(self._finish_run, run_type, run, None, e))
            return
        self._post(partial(self._finish_run, run_type, run, result, None))

    def _finish_run(
        self,
        run_type: RunType,
        run: _Run,
        result: DownloadResult | UploadResult | None,
        error: Exception | None,
    ) -> None:
        """Dispatcher: record the outcome of a run."""
        ended = utcnow()
        if run_type == RunType.DOWNLOAD:
            self._download = None
            self._set(download_running=False)
            progress: Any = self._snapshot.download_progress
        else:
            self._upload = None
            self._set(upload_running=False)
            progress = self._snapshot.upload_progress

        if isinstance(result, UploadResult) and result.no_files:
            self._set(
                upload_state=CompletionState.FAILED,
                upload_text=result.message,
                last_error=result.message,
            )
        elif error is not None or result is None:
            self._fail(run_type, error or SyncError("Run ended without a result"), run.started_at, progress)
        else:
            if result.cancelled:
                state, text = CompletionState.IDLE, "Stopped."
            else:
                state, text = CompletionState.COMPLETED, result.message
                self._notify(f"{run_type.value.capitalize()} finished", text)
            if run_type == RunType.DOWNLOAD:
                self._set(download_state=state, download_text=text)
            else:
                self._set(upload_state=state, upload_text=text)
            self._record_history(
                SyncHistoryItem(
                    type=run_type,
                    started_at=run.started_at,
                    ended_at=ended,
                    downloaded=getattr(result, "downloaded", 0),
                    uploaded=getattr(result, "uploaded", 0),
                    skipped=result.skipped,
                )
            )

        if run_type == RunType.UPLOAD and self._rescan_pending:
            logger.debug("Running pending upload rescan")
            self._rescan_pending = False
            self._set(rescan_pending=False)
            self._start_upload(manual=False)

    def _fail(
        self,
        run_type: RunType,
        error: Exception,
        started_at: datetime,
        progress: DownloadProgress | UploadProgress | None = None,
    ) -> None:
        message = str(error) or type(error).__name__
        self._record_error(message)
        if run_type == RunType.DOWNLOAD:
            self._set(download_state=CompletionState.FAILED, download_text=message, last_error=message)
        else:
            self._set(upload_state=CompletionState.FAILED, upload_text=message, last_error=message)
        self._notify(f"{run_type.value.capitalize()} failed", message)
        if isinstance(error, ConfigurationError):
            return
        self._record_history(
            SyncHistoryItem(
                type=run_type,
                started_at=started_at,
                ended_at=utcnow(),
                downloaded=getattr(progress, "downloaded", 0),
                uploaded=getattr(progress, "uploaded", 0),
                skipped=getattr(progress, "skipped", 0),
                errors=1,
            )
        )

    def _cancel_run(self, run_type: RunType) -> None:
        run = self._download if run_type == RunType.DOWNLOAD else self._upload
        if run is not None:
            logger.info(f"Stopping {run_type.value}")
            run.token.cancel()

    def _shutdown_runs(self) -> None:
        self._stopping = True
        for run in (self._download, self._upload):
            if run is not None:
                run.token.cancel()
        for token in (self._probe_token, self._scan_token):
            if token is not None:
                token.cancel()
        self._stop_watcher()

    def _apply_pause(self, paused: bool) -> None:
        if paused == self._paused:
            return
        self._paused = paused
        self._set(paused=paused)
        logger.info(f"Power state changed: {'paused' if paused else 'resumed'}")
        if not self._is_paused():
            return
        if self._download is not None and not self._download.manual:
            self._download.token.cancel()
            self._set(download_text=DOWNLOAD_PAUSED)
        if self._upload is not None and not self._upload.manual:
            self._upload.token.cancel()
            self._set(upload_text=UPLOAD_PAUSED)

    # === Dispatcher: uploads on change ===

    def _periodic_upload_scan(self) -> None:
        settings = self._settings
        if settings.upload_enabled and settings.upload_folder and self._upload is None:
            self._start_upload(manual=False)

    def _mark_rescan_pending(self) -> None:
        self._rescan_pending = True
        self._set(rescan_pending=True)

    def _rescan_fired(self) -> None:
        if self._upload is not None:
            return
        self._rescan_pending = False
        self._set(rescan_pending=False)
        self._start_upload(manual=False)

    def _default_watcher(self, path: Path, on_change: Callable[[Path], None]) -> FolderWatcher:
        return UploadFolderWatcher(path, on_change, recursive=self._settings.include_upload_subfolders)

    def _enable_watcher(self) -> None:
        self._watch_enabled = True
        self._apply_watcher()

    def _apply_watcher(self) -> None:
        settings = self._settings
        key = None
        if self._watch_enabled and settings.upload_enabled and settings.upload_folder:
            key = (settings.upload_folder, settings.include_upload_subfolders)
        if key == self._watcher_key:
            return
        self._stop_watcher()
        if key is None:
            return
        try:
            watcher = self._watcher_factory(
                Path(settings.upload_folder).expanduser(), lambda _path: self.schedule_upload_rescan()
            )
            watcher.start()
        except (OSError, ValueError) as e:
            logger.warning(f"Cannot watch {settings.upload_folder}: {e}")
            return
        self._watcher, self._watcher_key = watcher, key

    def _stop_watcher(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
        self._watcher, self._watcher_key = None, None

    # === Dispatcher: settings ===

    def _apply_settings(self, settings: SyncSettings) -> None:
        old = self._settings
        self._settings = settings
        if old.download_folder and not _same_folder(old.download_folder, settings.download_folder):
            logger.info("Download folder changed, clearing download index")
            try:
                self._state.downloads.clear()
            except FilesystemError as e:
                self._record_error(str(e))
        self._apply_watcher()
        credentials = ("server_url", "api_key", "use_keychain")
        if any(getattr(old, name) != getattr(settings, name) for name in credentials):
            self._probe_debouncer.trigger()

    # === Dispatcher: connection probe ===

    def _start_probe(self) -> Future[ConnectionReport]:
        if self._probe_token is not None:
            self._probe_token.cancel()
        token = CancelToken()
        self._probe_token = token
        self._set(connection=ConnectionReport(ConnectionStatus.CHECKING, "Checking connection..."))

        settings = self._settings
        factory: Callable[[], ImmichClient] | None = None
        try:
            api_key = self._resolve_api_key(settings)
            if settings.server_url.strip() and api_key.strip():
                factory = partial(self._client_factory, settings, api_key)
        except ConfigurationError:
            factory = None

        def job() -> ConnectionReport:
            try:
                report = ConnectionProbe(factory, token).run()
            except CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Connection check failed: {e}")
                report = ConnectionReport(ConnectionStatus.INVALID, str(e))
            self._post(partial(self._finish_probe, token, report))
            return report

        return self._executor.submit(job)

    def _finish_probe(self, token: CancelToken, report: ConnectionReport) -> None:
        if token is not self._probe_token:
            return
        self._probe_token = None
        self._set(connection=report)
        logger.info(f"Connection status: {report.status.value}")

    # === Dispatcher: queries ===

    def _submit_query(
        self,
        fetch: Callable[[ImmichClient], T],
        apply: Callable[[T | None, str | None], None],
        default: T,
    ) -> Future[T]:
        settings = self._settings

        def job() -> T:
            try:
                api_key = self._resolve_api_key(settings)
                with self._client_factory(settings, api_key) as client:
                    value = fetch(client)
            except (APIError, SyncError) as e:
                logger.warning(f"Query failed: {e}")
                self._post(partial(apply, None, str(e)))
                return default
            self._post(partial(apply, value, None))
            return value

        return self._executor.submit(job)

    def _set_albums(self, albums: list[Album] | None, error: str | None) -> None:
        self._albums = tuple(albums or ())
        self._set(album_count=len(self._albums))
        if error:
            self._set(last_error=error)

    def _set_version(self, version: str | None, error: str | None) -> None:
        self._set(server_version=version)
        if error:
            self._set(last_error=error)

    def _set_duplicates(self, summary: tuple[int, int] | None, error: str | None) -> None:
        groups, items = summary or (0, 0)
        self._set(duplicate_groups=groups, duplicate_items=items)
        if error:
            self._set(last_error=error)

    def _start_local_scan(self) -> Future[LocalDuplicateReport | None]:
        if self._scan_token is not None:
            self._scan_token.cancel()
        token = CancelToken()
        self._scan_token = token
        folder = Path(self._settings.download_folder).expanduser() if self._settings.download_folder else None

        def job() -> LocalDuplicateReport | None:
            if folder is None:
                return None
            try:
                report = scan_local_duplicates(folder, token)
            except CancelledError:
                return None
            self._post(partial(self._set, local_duplicates=report))
            return report

        return self._executor.submit(job)

    # === Dispatcher: bookkeeping ===

    def _download_progress(self, progress: DownloadProgress) -> None:
        if self._download is None:
            return
        self._set(download_progress=progress, download_text=progress.text)

    def _download_item(self, item: DownloadStatusItem) -> None:
        self._download_items.append(item)
        self._set(download_items=tuple(self._download_items))

    def _upload_progress(self, progress: UploadProgress) -> None:
        if self._upload is None:
            return
        self._set(upload_progress=progress, upload_text=progress.text)

    def _record_error(self, message: str) -> None:
        self._error_log.append(f"[{utcnow().isoformat()}] {message}")
        self._set(error_log=tuple(self._error_log))

    def _record_history(self, item: SyncHistoryItem) -> None:
        try:
            self._state.history.append(item)
        except FilesystemError as e:
            logger.error(f"Cannot save sync history: {e}")

    def _notify(self, title: str, message: str) -> None:
        if self._notifier is None or not self._settings.notifications_enabled:
            return
        try:
            self._notifier(title, message)
        except Exception:
            logger.exception("Notification failed")

    def _reset(self) -> None:
        self._state.reset()
        self._error_log.clear()
        self._set(error_log=(), last_error=None)

    def _set(self, **changes: Any) -> None:
        self._snapshot = replace(self._snapshot, **changes)

    def _build_snapshot(self) -> CoordinatorSnapshot:
        return self._snapshot

    def _start_scheduler(self) -> None:
        settings = self._settings
        daily_time = None
        if settings.schedule_enabled:
            try:
                daily_time = settings.schedule_hour_minute()
            except ConfigurationError as e:
                logger.error(str(e))
        self._scheduler = SyncScheduler(
            on_daily_download=lambda: self.start_download(manual=False),
            on_upload_scan=self.scan_uploads,
            on_power_check=self.check_power if self._pause_check else None,
            daily_time=daily_time,
        )
        self._scheduler.start()


def _same_folder(a: str, b: str) -> bool:
    with contextlib.suppress(OSError):
        return Path(a).expanduser().resolve() == Path(b).expanduser().resolve()
    return a == b
