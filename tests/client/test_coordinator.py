"""Tests for sync coordinator."""

from __future__ import annotations

import tempfile
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from immichsync.client.api import (
    Album,
    AssetSummary,
    DownloadedFile,
    DuplicateCandidate,
    ProbeOutcome,
    RemoteError,
    UploadedAsset,
)
from immichsync.client.state import RunType, StateStore
from immichsync.client.sync.coordinator import DOWNLOAD_PAUSED, SyncCoordinator
from immichsync.client.sync.types import CompletionState, ConnectionStatus
from immichsync.core.config import SyncSettings
from immichsync.core.types import AssetType


class MockClient:
    """Mock catalog client for testing.

    ``gate`` blocks listing and uploading until set, so tests can observe
    an active run.
    """

    def __init__(self, assets: list[AssetSummary] | None = None) -> None:
        self.assets = assets or []
        self.gate = threading.Event()
        self.gate.set()
        self.fail: Exception | None = None
        self.uploaded: list[Path] = []

    def __enter__(self) -> MockClient:
        return self

    def __exit__(self, *args: object) -> None:
        pass

    def list_assets_page(
        self, page: int, asset_type: AssetType | None = None, size: int = 100
    ) -> tuple[list[AssetSummary], int | None]:
        self.gate.wait(timeout=5.0)
        if self.fail:
            raise self.fail
        return (self.assets if page == 1 else []), len(self.assets)

    def download_asset(
        self,
        asset_id: str,
        directory: Path,
        cancel_check: Callable[[], bool] | None = None,
        timeout: float | None = None,
    ) -> DownloadedFile:
        with tempfile.NamedTemporaryFile(dir=directory, suffix=".part", delete=False) as f:
            f.write(b"data")
        return DownloadedFile(path=Path(f.name), bytes_written=4, expected_size=4)

    def fetch_asset_metadata(self, asset_id: str, timeout: float = 30.0) -> bytes:
        return b"{}"

    def upload_asset(
        self,
        path: Path,
        device_id: str,
        created_at: datetime,
        modified_at: datetime,
        device_asset_id: str | None = None,
    ) -> UploadedAsset:
        self.gate.wait(timeout=5.0)
        self.uploaded.append(path)
        return UploadedAsset(asset_id=f"id-{path.name}", bytes=path.stat().st_size)

    def bulk_duplicate_check(self, candidates: list[DuplicateCandidate]) -> list[bool]:
        return [False for _ in candidates]

    def list_albums(self) -> list[Album]:
        return [Album(id="al1", name="Trip", asset_count=2)]

    def server_version(self) -> str:
        return "1.106.4"

    def list_duplicates(self) -> tuple[int, int]:
        return 2, 5

    def probe(
        self,
        path: str,
        method: str = "GET",
        json: Any = None,
        allowed_status: tuple[int, ...] = (),
    ) -> ProbeOutcome:
        return ProbeOutcome(ok=True, status_code=200, message="")


@pytest.fixture
def client() -> MockClient:
    """Client with one remote asset."""
    return MockClient([AssetSummary(id="a1", original_file_name="a.jpg", type=AssetType.IMAGE)])


@pytest.fixture
def settings(tmp_path: Path) -> SyncSettings:
    """Settings with a backup folder and an upload folder holding one photo."""
    upload = tmp_path / "upload"
    upload.mkdir()
    (upload / "p.jpg").write_bytes(b"photo")
    return SyncSettings(
        server_url="http://immich.test",
        api_key="key",
        download_folder=str(tmp_path / "backup"),
        write_sidecar=False,
        upload_enabled=True,
        upload_folder=str(upload),
    )


@pytest.fixture
def state(tmp_path: Path) -> StateStore:
    """Empty persistent state."""
    return StateStore(tmp_path / "state")


@pytest.fixture
def notifier() -> MagicMock:
    """Notification sink."""
    return MagicMock()


def make_coordinator(
    settings: SyncSettings,
    state: StateStore,
    client: MockClient,
    notifier: Callable[[str, str], None] | None = None,
    **kwargs: Any,
) -> SyncCoordinator:
    """Create a coordinator wired to the mock client."""
    return SyncCoordinator(
        settings,
        state,
        client_factory=lambda s, key: client,  # type: ignore[arg-type,return-value]
        api_key_resolver=lambda s: s.api_key,
        notifier=notifier,
        probe_delay=0.05,
        rescan_delay=0.05,
        **kwargs,
    )


@pytest.fixture
def coordinator(
    settings: SyncSettings, state: StateStore, client: MockClient, notifier: MagicMock
) -> Iterator[SyncCoordinator]:
    """Running coordinator, stopped after the test."""
    coord = make_coordinator(settings, state, client, notifier)
    coord.start()
    yield coord
    client.gate.set()
    coord.stop()


class TestDownloadRuns:
    """Tests for download runs."""

    def test_download_completes(
        self, coordinator: SyncCoordinator, state: StateStore, notifier: MagicMock
    ) -> None:
        """Should complete, notify and record history."""
        assert coordinator.start_download() is True
        assert coordinator.wait_for_runs(timeout=5.0)

        snapshot = coordinator.snapshot()
        assert snapshot.download_state is CompletionState.COMPLETED
        assert snapshot.download_text == "Done. Downloaded 1, skipped 0."
        assert snapshot.last_error is None
        notifier.assert_called_once_with("Download finished", "Done. Downloaded 1, skipped 0.")
        history = coordinator.history()
        assert [(h.type, h.downloaded) for h in history] == [(RunType.DOWNLOAD, 1)]
        assert "a1" in state.downloads

    def test_single_active_run(self, coordinator: SyncCoordinator, client: MockClient) -> None:
        """Should refuse a second download while one is running."""
        client.gate.clear()

        assert coordinator.start_download() is True
        assert coordinator.start_download() is False
        assert coordinator.snapshot().download_running is True

        coordinator.stop_download()
        client.gate.set()
        assert coordinator.wait_for_runs(timeout=5.0)

        snapshot = coordinator.snapshot()
        assert snapshot.download_state is CompletionState.IDLE
        assert snapshot.download_text == "Stopped."

    def test_configuration_failure(
        self, settings: SyncSettings, state: StateStore, client: MockClient
    ) -> None:
        """Should fail without history when the folder is missing."""
        settings.download_folder = ""
        coordinator = make_coordinator(settings, state, client)
        coordinator.start()
        try:
            assert coordinator.start_download() is False
            snapshot = coordinator.snapshot()
        finally:
            coordinator.stop()

        assert snapshot.download_state is CompletionState.FAILED
        assert snapshot.last_error == "Pick a backup folder first."
        assert len(snapshot.error_log) == 1
        assert snapshot.error_log[0].endswith("] Pick a backup folder first.")
        assert coordinator.history() == []

    def test_run_failure(
        self, coordinator: SyncCoordinator, client: MockClient, notifier: MagicMock
    ) -> None:
        """Should record a failed run in the error log and history."""
        client.fail = RemoteError(500, "boom")

        coordinator.start_download()
        coordinator.wait_for_runs(timeout=5.0)

        snapshot = coordinator.snapshot()
        assert snapshot.download_state is CompletionState.FAILED
        assert snapshot.last_error == "boom"
        assert coordinator.history()[0].errors == 1
        notifier.assert_called_once_with("Download failed", "boom")

    def test_export_error_log(
        self, coordinator: SyncCoordinator, client: MockClient, tmp_path: Path
    ) -> None:
        """Should write one line per error."""
        client.fail = RemoteError(500, "boom")
        coordinator.start_download()
        coordinator.wait_for_runs(timeout=5.0)

        target = tmp_path / "errors.log"
        assert coordinator.export_error_log(target) == 1
        assert target.read_text().strip().endswith("boom")


class TestPause:
    """Tests for power-based pausing."""

    def test_automatic_start_refused_when_paused(
        self, settings: SyncSettings, state: StateStore, client: MockClient
    ) -> None:
        """Should refuse non-manual starts but allow manual ones."""
        coordinator = make_coordinator(settings, state, client, pause_check=lambda: True)
        coordinator.start()
        try:
            coordinator.check_power()
            assert coordinator.start_download(manual=False) is False
            snapshot = coordinator.snapshot()
            assert snapshot.paused is True
            assert snapshot.last_error == DOWNLOAD_PAUSED

            assert coordinator.start_download(manual=True) is True
            assert coordinator.wait_for_runs(timeout=5.0)
        finally:
            coordinator.stop()

    def test_pause_cancels_automatic_run(
        self, settings: SyncSettings, state: StateStore, client: MockClient
    ) -> None:
        """Should stop an automatic run when the machine goes on battery."""
        on_battery = [False]
        coordinator = make_coordinator(settings, state, client, pause_check=lambda: on_battery[0])
        coordinator.start()
        try:
            client.gate.clear()
            assert coordinator.start_download(manual=False) is True

            on_battery[0] = True
            coordinator.check_power()
            client.gate.set()
            assert coordinator.wait_for_runs(timeout=5.0)

            assert coordinator.snapshot().download_state is CompletionState.IDLE
        finally:
            client.gate.set()
            coordinator.stop()

    def test_pause_ignored_when_disabled(
        self, settings: SyncSettings, state: StateStore, client: MockClient
    ) -> None:
        """Should not refuse runs when auto-pause is off."""
        settings.auto_pause_on_battery = False
        coordinator = make_coordinator(settings, state, client, pause_check=lambda: True)
        coordinator.start()
        try:
            coordinator.check_power()
            assert coordinator.start_download(manual=False) is True
            coordinator.wait_for_runs(timeout=5.0)
        finally:
            coordinator.stop()


class TestUploadRuns:
    """Tests for upload runs."""

    def test_upload_then_all_on_server(
        self, coordinator: SyncCoordinator, client: MockClient
    ) -> None:
        """Should upload once and skip the file on the next run."""
        assert coordinator.start_upload() is True
        coordinator.wait_for_runs(timeout=5.0)
        assert coordinator.snapshot().upload_text == "Done. Uploaded 1, skipped 0."

        assert coordinator.start_upload() is True
        coordinator.wait_for_runs(timeout=5.0)

        assert coordinator.snapshot().upload_text == "All files already on server."
        assert len(client.uploaded) == 1

    def test_no_files_is_failure(
        self,
        settings: SyncSettings,
        state: StateStore,
        client: MockClient,
        notifier: MagicMock,
        tmp_path: Path,
    ) -> None:
        """Should mark an empty upload folder failed without notifying or recording it."""
        empty = tmp_path / "empty"
        empty.mkdir()
        settings.upload_folder = str(empty)
        coordinator = make_coordinator(settings, state, client, notifier)
        coordinator.start()
        try:
            for _ in range(3):
                coordinator.start_upload(manual=False)
                coordinator.wait_for_runs(timeout=5.0)
            snapshot = coordinator.snapshot()
        finally:
            coordinator.stop()

        assert snapshot.upload_state is CompletionState.FAILED
        assert snapshot.last_error is not None
        assert snapshot.last_error.startswith("No files found to upload")
        assert snapshot.upload_text == snapshot.last_error
        notifier.assert_not_called()
        assert coordinator.history() == []
        assert snapshot.error_log == ()

    def test_rescan_after_active_upload(
        self, coordinator: SyncCoordinator, client: MockClient
    ) -> None:
        """Should run one more upload after a change seen during a run."""
        client.gate.clear()
        coordinator.start_upload()

        coordinator.schedule_upload_rescan()
        assert coordinator.snapshot().rescan_pending is True
        time.sleep(0.2)
        client.gate.set()

        coordinator.wait_for_runs(timeout=5.0)
        coordinator.wait_for_runs(timeout=5.0)

        uploads = [h for h in coordinator.history() if h.type == RunType.UPLOAD]
        assert len(uploads) == 2
        assert coordinator.snapshot().rescan_pending is False

    def test_periodic_scan_needs_upload_enabled(
        self, settings: SyncSettings, state: StateStore, client: MockClient
    ) -> None:
        """Should not start an upload when uploads are disabled."""
        settings.upload_enabled = False
        coordinator = make_coordinator(settings, state, client)
        coordinator.start()
        try:
            coordinator.scan_uploads()
            assert coordinator.snapshot().upload_running is False
        finally:
            coordinator.stop()


class TestSettings:
    """Tests for settings updates."""

    def test_download_folder_change_clears_index(
        self, coordinator: SyncCoordinator, settings: SyncSettings, state: StateStore, tmp_path: Path
    ) -> None:
        """Should clear the download index only when the folder changes."""
        state.downloads.add("x")

        coordinator.update_settings(replace(settings, include_videos=False))
        assert "x" in state.downloads

        coordinator.update_settings(replace(settings, download_folder=str(tmp_path / "other")))
        assert len(state.downloads) == 0

    def test_watcher_follows_upload_folder(
        self, settings: SyncSettings, state: StateStore, client: MockClient, tmp_path: Path
    ) -> None:
        """Should recreate the watcher when the upload folder changes."""
        factory = MagicMock()
        coordinator = make_coordinator(settings, state, client, watcher_factory=factory)
        coordinator.start(watch=True)
        try:
            assert factory.call_count == 1
            first = factory.return_value

            other = tmp_path / "other-upload"
            other.mkdir()
            coordinator.update_settings(replace(settings, upload_folder=str(other)))

            assert factory.call_count == 2
            assert factory.call_args[0][0] == other
            first.stop.assert_called()
        finally:
            coordinator.stop()

    def test_credential_change_triggers_probe(
        self, coordinator: SyncCoordinator, settings: SyncSettings
    ) -> None:
        """Should run a debounced connection check after a key change."""
        coordinator.update_settings(replace(settings, api_key="new-key"))

        deadline = time.monotonic() + 5.0
        while time.monotonic() < deadline:
            if coordinator.snapshot().connection.status is ConnectionStatus.OK:
                break
            time.sleep(0.05)
        assert coordinator.snapshot().connection.status is ConnectionStatus.OK


class TestQueries:
    """Tests for background queries."""

    def test_check_connection_now(self, coordinator: SyncCoordinator) -> None:
        """Should report OK when every probe succeeds."""
        report = coordinator.check_connection_now().result(timeout=5.0)

        assert report.status is ConnectionStatus.OK
        assert coordinator.snapshot().connection.status is ConnectionStatus.OK

    def test_missing_key_is_invalid(
        self, settings: SyncSettings, state: StateStore, client: MockClient
    ) -> None:
        """Should report INVALID without credentials."""
        settings.api_key = ""
        coordinator = make_coordinator(settings, state, client)
        coordinator.start()
        try:
            report = coordinator.check_connection_now().result(timeout=5.0)
        finally:
            coordinator.stop()

        assert report.status is ConnectionStatus.INVALID

    def test_server_queries(self, coordinator: SyncCoordinator) -> None:
        """Should publish album count, version and duplicate summary."""
        assert [a.name for a in coordinator.refresh_albums().result(timeout=5.0)] == ["Trip"]
        assert coordinator.refresh_server_info().result(timeout=5.0) == "1.106.4"
        assert coordinator.refresh_duplicates().result(timeout=5.0) == (2, 5)

        snapshot = coordinator.snapshot()
        assert snapshot.album_count == 1
        assert snapshot.server_version == "1.106.4"
        assert (snapshot.duplicate_groups, snapshot.duplicate_items) == (2, 5)

    def test_local_duplicate_scan(self, coordinator: SyncCoordinator, settings: SyncSettings) -> None:
        """Should publish the local duplicate report."""
        backup = Path(settings.download_folder)
        (backup / "x").mkdir(parents=True)
        (backup / "IMG.jpg").write_bytes(b"1")
        (backup / "x" / "IMG.jpg").write_bytes(b"1")

        report = coordinator.scan_local_duplicates().result(timeout=5.0)

        assert report is not None
        assert report.count == 1
        assert coordinator.snapshot().local_duplicates == report

    def test_reset(self, coordinator: SyncCoordinator, state: StateStore) -> None:
        """Should clear persistent state."""
        coordinator.start_download()
        coordinator.wait_for_runs(timeout=5.0)

        coordinator.reset()

        assert coordinator.history() == []
        assert len(state.downloads) == 0
