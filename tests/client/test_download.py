"""Tests for the download pipeline."""

from __future__ import annotations

import base64
import hashlib
import json
import tempfile
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from immichsync.client.api import Album, AssetSummary, DownloadedFile, RemoteError
from immichsync.client.state import DownloadIndex
from immichsync.client.sync.cancel import CancelToken
from immichsync.client.sync.download import (
    DownloadPipeline,
    extract_checksum,
    file_matches_checksum,
    passes_filter,
    requested_type,
    validate_download_settings,
)
from immichsync.client.sync.types import DownloadItemState, DownloadProgress
from immichsync.core.config import SyncSettings
from immichsync.core.errors import ConfigurationError, VerificationError
from immichsync.core.types import AssetType

CREATED = datetime(2023, 3, 15, tzinfo=timezone.utc)


def make_asset(
    asset_id: str,
    type: AssetType | None = AssetType.IMAGE,
    is_trashed: bool = False,
) -> AssetSummary:
    """Create an AssetSummary named ``<id>.jpg``."""
    return AssetSummary(
        id=asset_id,
        original_file_name=f"{asset_id}.jpg",
        type=type,
        is_trashed=is_trashed,
        created_at=CREATED,
    )


class FakeClient:
    """In-memory stand-in for ImmichClient."""

    def __init__(self, assets: list[AssetSummary], page_size: int = 100) -> None:
        self.assets = assets
        self.page_size = page_size
        self.content: dict[str, bytes] = {}
        self.metadata: dict[str, bytes] = {}
        self.albums: dict[str, list[AssetSummary]] = {}
        self.album_names: dict[str, str] = {}
        self.downloads: list[str] = []
        self.pages: list[tuple[int, AssetType | None]] = []
        self.fail_ids: set[str] = set()
        self.on_download: Callable[[str], None] | None = None

    def list_assets_page(
        self, page: int, asset_type: AssetType | None = None, size: int = 100
    ) -> tuple[list[AssetSummary], int | None]:
        self.pages.append((page, asset_type))
        start = (page - 1) * self.page_size
        return self.assets[start : start + self.page_size], len(self.assets)

    def list_album_assets(self, album_id: str) -> list[AssetSummary]:
        return self.albums.get(album_id, [])

    def list_albums(self) -> list[Album]:
        return [
            Album(id=k, name=v, asset_count=len(self.albums.get(k, [])))
            for k, v in self.album_names.items()
        ]

    def download_asset(
        self,
        asset_id: str,
        directory: Path,
        cancel_check: Callable[[], bool] | None = None,
        timeout: float | None = None,
    ) -> DownloadedFile:
        self.downloads.append(asset_id)
        if self.on_download:
            self.on_download(asset_id)
        if asset_id in self.fail_ids:
            raise RemoteError(500, "boom")
        data = self.content.get(asset_id, f"data-{asset_id}".encode())
        with tempfile.NamedTemporaryFile(
            dir=directory, prefix=".immichsync-", suffix=".part", delete=False
        ) as f:
            f.write(data)
        return DownloadedFile(path=Path(f.name), bytes_written=len(data), expected_size=len(data))

    def fetch_asset_metadata(self, asset_id: str, timeout: float = 30.0) -> bytes:
        if asset_id not in self.metadata:
            raise RemoteError(404, "not found")
        return self.metadata[asset_id]


@pytest.fixture
def settings(tmp_path: Path) -> SyncSettings:
    """Settings pointing at a temp backup folder, sidecars off."""
    return SyncSettings(
        server_url="http://immich.test",
        api_key="key",
        download_folder=str(tmp_path / "backup"),
        write_sidecar=False,
    )


@pytest.fixture
def index(tmp_path: Path) -> DownloadIndex:
    """Empty download index."""
    return DownloadIndex(tmp_path / "state" / "downloaded-assets.json")


def make_pipeline(
    client: FakeClient,
    settings: SyncSettings,
    index: DownloadIndex,
    cancel_token: CancelToken | None = None,
    **kwargs: object,
) -> DownloadPipeline:
    """Create a pipeline that never really sleeps between retries."""
    token = cancel_token or CancelToken()
    token.sleep = lambda seconds: None  # type: ignore[method-assign]
    return DownloadPipeline(client, settings, index, cancel_token=token, **kwargs)  # type: ignore[arg-type]


class TestValidation:
    """Tests for download preconditions."""

    def test_missing_folder(self) -> None:
        """Should ask for a backup folder first."""
        with pytest.raises(ConfigurationError, match="Pick a backup folder first."):
            validate_download_settings(SyncSettings(server_url="x"), "key")

    def test_missing_key(self, settings: SyncSettings) -> None:
        """Should require an API key."""
        with pytest.raises(ConfigurationError, match="API key"):
            validate_download_settings(settings, " ")

    def test_no_types(self, settings: SyncSettings) -> None:
        """Should require at least one asset type."""
        settings.include_photos = False
        settings.include_videos = False
        with pytest.raises(ConfigurationError, match="at least one"):
            validate_download_settings(settings, "key")


class TestFilters:
    """Tests for type and trash filtering."""

    def test_requested_type(self, settings: SyncSettings) -> None:
        """Should only request a type when exactly one is enabled."""
        assert requested_type(settings) is None
        settings.include_videos = False
        assert requested_type(settings) is AssetType.IMAGE

    def test_trashed(self, settings: SyncSettings) -> None:
        """Should reject trashed assets when skip_trashed is on."""
        assert not passes_filter(make_asset("a", is_trashed=True), settings)
        settings.skip_trashed = False
        assert passes_filter(make_asset("a", is_trashed=True), settings)

    def test_unknown_type_passes(self, settings: SyncSettings) -> None:
        """Should let assets without a type through."""
        settings.include_videos = False
        assert passes_filter(make_asset("a", type=None), settings)
        assert not passes_filter(make_asset("b", type=AssetType.VIDEO), settings)


class TestChecksum:
    """Tests for checksum helpers."""

    def test_formats(self, tmp_path: Path) -> None:
        """Should accept hex and base64 SHA-1 / SHA-256."""
        path = tmp_path / "f"
        path.write_bytes(b"hello")
        sha1 = hashlib.sha1(b"hello").digest()
        sha256 = hashlib.sha256(b"hello").digest()

        assert file_matches_checksum(path, sha1.hex())
        assert file_matches_checksum(path, sha256.hex().upper())
        assert file_matches_checksum(path, base64.b64encode(sha1).decode())
        assert not file_matches_checksum(path, "deadbeef")

    def test_extract(self) -> None:
        """Should read checksum or checksumValue."""
        assert extract_checksum(b'{"checksum": "abc"}') == "abc"
        assert extract_checksum(b'{"checksumValue": "def"}') == "def"
        assert extract_checksum(b"not json") is None
        assert extract_checksum(None) is None


class TestDownloadPipeline:
    """Tests for DownloadPipeline.run."""

    def test_downloads_all(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should download each asset and record it in the index."""
        client = FakeClient([make_asset("a"), make_asset("b")])

        result = make_pipeline(client, settings, index).run()

        assert result.downloaded == 2
        assert result.skipped == 0
        assert result.message == "Done. Downloaded 2, skipped 0."
        backup = Path(settings.download_folder)
        assert (backup / "a-a.jpg").read_bytes() == b"data-a"
        assert "a" in index and "b" in index
        assert not list(backup.glob(".immichsync-*"))

    def test_second_run_idempotent(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should skip everything on an unchanged second run."""
        client = FakeClient([make_asset("a"), make_asset("b")])
        make_pipeline(client, settings, index).run()
        client.downloads.clear()

        result = make_pipeline(client, settings, index).run()

        assert result.downloaded == 0
        assert result.skipped == 2
        assert client.downloads == []

    def test_index_persisted_on_finish(
        self, settings: SyncSettings, index: DownloadIndex
    ) -> None:
        """Should save the index when the run ends."""
        client = FakeClient([make_asset("a")])

        make_pipeline(client, settings, index).run()

        assert json.loads(index.path.read_text()) == ["a"]

    def test_existing_destination_indexed(
        self, settings: SyncSettings, index: DownloadIndex
    ) -> None:
        """Should count an existing file as skipped and index it."""
        backup = Path(settings.download_folder)
        backup.mkdir(parents=True)
        (backup / "a-a.jpg").write_bytes(b"mine")
        client = FakeClient([make_asset("a")])

        result = make_pipeline(client, settings, index).run()

        assert result.skipped == 1
        assert client.downloads == []
        assert "a" in index
        assert (backup / "a-a.jpg").read_bytes() == b"mine"

    def test_destination_appears_during_download(
        self, settings: SyncSettings, index: DownloadIndex
    ) -> None:
        """Should keep a file that appeared mid-transfer and discard the temp file."""
        backup = Path(settings.download_folder)
        client = FakeClient([make_asset("a")])
        client.on_download = lambda asset_id: (backup / "a-a.jpg").write_bytes(b"other")

        result = make_pipeline(client, settings, index).run()

        assert result.downloaded == 1
        assert result.bytes == 0
        assert (backup / "a-a.jpg").read_bytes() == b"other"
        assert not list(backup.glob(".immichsync-*"))

    def test_year_month_layout(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should bucket files by creation year and month."""
        settings.folder_structure = "year-month"
        client = FakeClient([make_asset("a")])

        make_pipeline(client, settings, index).run()

        assert (Path(settings.download_folder) / "2023" / "03" / "a-a.jpg").exists()

    def test_filtered_assets_skipped(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should count filtered assets as skipped without downloading."""
        client = FakeClient([make_asset("a", is_trashed=True), make_asset("b")])

        result = make_pipeline(client, settings, index).run()

        assert result.downloaded == 1
        assert result.skipped == 1
        assert client.downloads == ["b"]

    def test_pages_until_empty(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should request pages until an empty one."""
        client = FakeClient([make_asset(str(n)) for n in range(5)], page_size=2)

        result = make_pipeline(client, settings, index).run()

        assert result.downloaded == 5
        assert [p for p, _ in client.pages] == [1, 2, 3, 4]

    def test_single_type_requested(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should pass the type to the server when only videos are enabled."""
        settings.include_photos = False
        client = FakeClient([])

        make_pipeline(client, settings, index).run()

        assert client.pages == [(1, AssetType.VIDEO)]

    def test_failure_aborts_run(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should stop at the first failed asset after retries."""
        client = FakeClient([make_asset("a"), make_asset("b"), make_asset("c")])
        client.fail_ids = {"b"}
        statuses: list[DownloadItemState] = []

        with pytest.raises(RemoteError):
            make_pipeline(
                client, settings, index, on_status=lambda item: statuses.append(item.state)
            ).run()

        assert client.downloads == ["a", "b", "b", "b"]
        assert "a" in index and "b" not in index
        assert json.loads(index.path.read_text()) == ["a"]
        assert statuses[-1] == DownloadItemState.FAILED

    def test_cancel_leaves_valid_index(
        self, settings: SyncSettings, index: DownloadIndex
    ) -> None:
        """Should stop cleanly and keep completed downloads indexed."""
        token = CancelToken()
        client = FakeClient([make_asset("a"), make_asset("b"), make_asset("c")])

        def cancel_after_first(asset_id: str) -> None:
            if asset_id == "a":
                token.cancel()

        client.on_download = cancel_after_first

        result = make_pipeline(client, settings, index, cancel_token=token).run()

        assert result.cancelled is True
        assert result.message == "Stopped."
        assert json.loads(index.path.read_text()) == ["a"]
        assert client.downloads == ["a"]

    def test_progress_reports_final_state(
        self, settings: SyncSettings, index: DownloadIndex
    ) -> None:
        """Should always emit a final progress update."""
        updates: list[DownloadProgress] = []
        client = FakeClient([make_asset("a"), make_asset("b")])

        make_pipeline(
            client, settings, index, on_progress=updates.append, clock=lambda: 0.0
        ).run()

        assert updates[-1].downloaded == 2
        assert updates[-1].total == 2
        assert updates[-1].text == "Downloaded 2, skipped 0 of 2"

    def test_progress_rate_limited(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should suppress updates inside a 200 ms window but keep the final one."""
        now = [0.0]
        updates: list[DownloadProgress] = []
        client = FakeClient([make_asset(c) for c in "abcde"])

        def tick(asset_id: str) -> None:
            now[0] += 0.125

        client.on_download = tick

        make_pipeline(
            client, settings, index, on_progress=updates.append, clock=lambda: now[0]
        ).run()

        assert [u.downloaded for u in updates] == [0, 2, 4, 5]

    def test_cancel_during_throttle_keeps_index(
        self, settings: SyncSettings, index: DownloadIndex
    ) -> None:
        """Should index a finished file even when cancelled while throttling."""
        settings.download_bandwidth_limit = 0.001
        settings.write_sidecar = True
        token = CancelToken()
        client = FakeClient([make_asset("a"), make_asset("b")])
        client.metadata["a"] = b'{"id": "a"}'
        client.on_download = lambda asset_id: token.cancel()

        pipeline = DownloadPipeline(client, settings, index, cancel_token=token)  # type: ignore[arg-type]
        result = pipeline.run()

        assert result.cancelled is True
        assert result.downloaded == 1
        assert json.loads(index.path.read_text()) == ["a"]
        assert (Path(settings.download_folder) / "a-a.jpg.immich.json").exists()

    def test_sidecar_written(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should write the metadata JSON next to the file."""
        settings.write_sidecar = True
        client = FakeClient([make_asset("a")])
        client.metadata["a"] = b'{"id": "a"}'

        make_pipeline(client, settings, index).run()

        sidecar = Path(settings.download_folder) / "a-a.jpg.immich.json"
        assert sidecar.read_bytes() == b'{"id": "a"}'

    def test_missing_metadata_not_fatal(
        self, settings: SyncSettings, index: DownloadIndex
    ) -> None:
        """Should still count the download when metadata is unavailable."""
        settings.write_sidecar = True
        client = FakeClient([make_asset("a")])

        result = make_pipeline(client, settings, index).run()

        assert result.downloaded == 1
        assert not (Path(settings.download_folder) / "a-a.jpg.immich.json").exists()

    def test_verification_mismatch(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should delete the file and fail when the checksum differs."""
        settings.verify_integrity = True
        client = FakeClient([make_asset("a")])
        client.metadata["a"] = json.dumps({"checksum": "0" * 40}).encode()

        with pytest.raises(VerificationError):
            make_pipeline(client, settings, index).run()

        assert not (Path(settings.download_folder) / "a-a.jpg").exists()
        assert "a" not in index

    def test_verification_match(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should accept a file whose checksum matches."""
        settings.verify_integrity = True
        client = FakeClient([make_asset("a")])
        checksum = hashlib.sha1(b"data-a").hexdigest()
        client.metadata["a"] = json.dumps({"checksum": checksum}).encode()

        result = make_pipeline(client, settings, index).run()

        assert result.downloaded == 1

    def test_album_mode_deduplicates(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should download an asset shared by two albums once."""
        shared = make_asset("s")
        client = FakeClient([])
        client.albums = {"al1": [make_asset("a"), shared], "al2": [shared, make_asset("b")]}
        settings.selected_album_ids = ["al1", "al2"]

        result = make_pipeline(client, settings, index).run()

        assert result.total == 3
        assert client.downloads == ["a", "s", "b"]
        assert client.pages == []

    def test_organize_by_album(self, settings: SyncSettings, index: DownloadIndex) -> None:
        """Should place files in a folder per album."""
        client = FakeClient([])
        client.albums = {"al1": [make_asset("a")], "al2": []}
        client.album_names = {"al1": "Trips/2023", "al2": "Empty"}
        settings.selected_album_ids = ["al1", "al2"]
        settings.organize_by_album = True

        make_pipeline(client, settings, index).run()

        backup = Path(settings.download_folder)
        assert (backup / "Trips_2023" / "a-a.jpg").exists()
        assert (backup / "Empty").is_dir()

    def test_missing_folder_raises(self, index: DownloadIndex) -> None:
        """Should refuse to run without a folder."""
        with pytest.raises(ConfigurationError):
            make_pipeline(FakeClient([]), SyncSettings(), index).run()
