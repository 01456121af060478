"""HTTP client for the Immich server API.

This module provides:
- ImmichClient: HTTP client for the catalog, transfer and probe endpoints
- AssetSummary, Album: typed views over API responses
- APIError family: RemoteError (non-2xx), TransportError, RequestTimeoutError
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from immichsync.core.config import ServerConfig
from immichsync.core.errors import CancelledError
from immichsync.core.types import AssetType

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"
DEFAULT_PAGE_SIZE = 100
STREAM_CHUNK_SIZE = 1024 * 1024


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteError(APIError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message, status_code)
        self.message = message


class AuthenticationError(RemoteError):
    """API key rejected (401) or lacking permission (403)."""


class TransportError(APIError):
    """The server could not be reached."""


class RequestTimeoutError(TransportError, TimeoutError):
    """An operation exceeded its deadline."""

    def __init__(self, seconds: float) -> None:
        super().__init__(f"Operation timed out after {seconds:g}s")
        self.seconds = seconds


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 timestamp from the API, accepting a ``Z`` suffix."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class AssetSummary:
    """Remote asset identity and classification."""

    id: str
    original_file_name: str | None = None
    type: AssetType | None = None
    is_trashed: bool = False
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssetSummary | None:
        """Create from an API asset object.

        Returns:
            AssetSummary, or None when the object carries no ID.
        """
        asset_id = data.get("id") or data.get("assetId")
        if not isinstance(asset_id, str) or not asset_id:
            return None
        trashed = data.get("isTrashed")
        if trashed is None:
            trashed = data.get("isDeleted", False)
        created_at = None
        for key in ("fileCreatedAt", "assetCreatedAt", "createdAt"):
            if key in data:
                created_at = parse_timestamp(data[key])
                break
        name = data.get("originalFileName")
        return cls(
            id=asset_id,
            original_file_name=name if isinstance(name, str) else None,
            type=AssetType.parse(data.get("type")),
            is_trashed=bool(trashed),
            created_at=created_at,
        )


@dataclass(frozen=True)
class Album:
    """Album info from server."""

    id: str
    name: str
    asset_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Album | None:
        """Create from API response dictionary."""
        album_id = data.get("id")
        if not isinstance(album_id, str):
            return None
        name = data.get("albumName") or data.get("name") or "Untitled"
        count = data.get("assetCount")
        return cls(id=album_id, name=str(name), asset_count=count if isinstance(count, int) else 0)


@dataclass
class DownloadedFile:
    """Asset bytes streamed to a temporary file."""

    path: Path
    bytes_written: int
    expected_size: int | None


@dataclass
class UploadedAsset:
    """Result of an asset upload."""

    asset_id: str
    bytes: int


@dataclass
class ProbeOutcome:
    """Result of a capability probe."""

    ok: bool
    status_code: int
    message: str


@dataclass
class DuplicateCandidate:
    """A local file described for the bulk duplicate check."""

    device_asset_id: str
    device_id: str
    file_created_at: datetime
    file_modified_at: datetime
    filename: str
    size: int
    checksum: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the API request shape."""
        return {
            "deviceAssetId": self.device_asset_id,
            "deviceId": self.device_id,
            "fileCreatedAt": self.file_created_at.isoformat(),
            "fileModifiedAt": self.file_modified_at.isoformat(),
            "originalFileName": self.filename,
            "fileSize": self.size,
            "checksum": self.checksum,
        }


def _parse_asset_list(items: object) -> list[AssetSummary]:
    if not isinstance(items, list):
        return []
    parsed = (AssetSummary.from_dict(item) for item in items if isinstance(item, dict))
    return [asset for asset in parsed if asset is not None]


def parse_assets_page(data: object) -> tuple[list[AssetSummary], int | None]:
    """Parse a search response into (items, total).

    Accepts ``{"assets": {"items": [...], "total": n}}``, ``{"assets": [...]}``
    and ``{"items": [...]}``.
    """
    if not isinstance(data, dict):
        return [], None
    assets = data.get("assets")
    if isinstance(assets, dict):
        total = assets.get("total")
        return _parse_asset_list(assets.get("items")), total if isinstance(total, int) else None
    if isinstance(assets, list):
        return _parse_asset_list(assets), None
    return _parse_asset_list(data.get("items")), None


def _entry_is_duplicate(entry: object) -> bool:
    if not isinstance(entry, dict):
        return False
    flag = entry.get("isDuplicate", entry.get("duplicate", False))
    return bool(flag) or isinstance(entry.get("assetId"), str)


def parse_duplicate_check(data: object, expected: int = 1) -> list[bool]:
    """Parse a bulk duplicate check response into one flag per candidate.

    Summary shapes (``duplicates`` / ``existing`` lists) apply to every
    candidate.
    """
    entries: list[Any] | None = None
    if isinstance(data, list):
        entries = data
    elif isinstance(data, dict):
        for key in ("results", "assets"):
            if isinstance(data.get(key), list):
                entries = data[key]
                break
        else:
            for key in ("duplicates", "existing"):
                if isinstance(data.get(key), list):
                    return [bool(data[key])] * expected
    if entries is None:
        return [False] * expected
    flags = [_entry_is_duplicate(entry) for entry in entries[:expected]]
    return flags + [False] * (expected - len(flags))


def parse_server_version(response: httpx.Response) -> str:
    """Extract a version string from ``server/version``."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("version", "serverVersion"):
            if isinstance(data.get(key), str):
                return str(data[key])
        parts = [data.get(k) for k in ("major", "minor", "patch")]
        if all(isinstance(p, int) for p in parts):
            return ".".join(str(p) for p in parts)
    return response.text.strip()


def parse_duplicates(data: object) -> tuple[int, int]:
    """Count (groups, items) in a ``duplicates`` response."""
    if not isinstance(data, list):
        return 0, 0
    items = 0
    for group in data:
        if isinstance(group, dict):
            if isinstance(group.get("assets"), list):
                items += len(group["assets"])
            elif isinstance(group.get("assetIds"), list):
                items += len(group["assetIds"])
        elif isinstance(group, list):
            items += len(group)
    return len(data), items


class ImmichClient:
    """HTTP client for the Immich server API."""

    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Server connection settings (base URL already normalized).
            transport: Optional httpx transport (used by tests).
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url + "/",
            timeout=config.timeout,
            headers={API_KEY_HEADER: config.api_key},
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        """Normalized API base URL."""
        return self._config.server_url

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> ImmichClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Plumbing ===

    def _request(
        self,
        method: str,
        path: str,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, translating transport failures."""
        try:
            response = self._client.request(
                method, path, timeout=timeout or self._config.timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(timeout or self._config.timeout) from e
        except httpx.RequestError as e:
            raise TransportError(f"Cannot reach server: {e}") from e
        return self._handle_response(response)

    @staticmethod
    def _handle_response(response: httpx.Response) -> httpx.Response:
        """Raise RemoteError for non-2xx responses.

        The message is the response body when it is non-empty text,
        otherwise ``HTTP <code>``.
        """
        if 200 <= response.status_code < 300:
            return response
        try:
            body = response.read().decode("utf-8").strip()
        except (UnicodeDecodeError, httpx.HTTPError):
            body = ""
        message = body or f"HTTP {response.status_code}"
        if response.status_code in (401, 403):
            raise AuthenticationError(response.status_code, message)
        raise RemoteError(response.status_code, message)

    # === Catalog ===

    def list_assets_page(
        self,
        page: int,
        asset_type: AssetType | None = None,
        size: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[AssetSummary], int | None]:
        """Fetch one page of the library via metadata search.

        Args:
            page: 1-based page number.
            asset_type: Optional IMAGE/VIDEO restriction.
            size: Page size.

        Returns:
            Tuple of (assets, server-reported total or None).
        """
        body: dict[str, Any] = {"page": page, "size": size}
        if asset_type is not None:
            body["type"] = asset_type.value
        response = self._request("POST", "search/metadata", json=body)
        return parse_assets_page(response.json())

    def list_album_assets(self, album_id: str) -> list[AssetSummary]:
        """List the assets of one album."""
        response = self._request("GET", f"albums/{album_id}")
        data = response.json()
        if not isinstance(data, dict):
            return []
        return _parse_asset_list(data.get("assets"))

    def list_albums(self) -> list[Album]:
        """List albums, sorted case-insensitively by name."""
        response = self._request("GET", "albums")
        data = response.json()
        if not isinstance(data, list):
            return []
        albums = [Album.from_dict(item) for item in data if isinstance(item, dict)]
        return sorted((a for a in albums if a is not None), key=lambda a: a.name.lower())

    def server_version(self) -> str:
        """Get the server version string."""
        return parse_server_version(self._request("GET", "server/version"))

    def list_duplicates(self) -> tuple[int, int]:
        """Get the server-side duplicate summary as (groups, items)."""
        return parse_duplicates(self._request("GET", "duplicates").json())

    # === Transfers ===

    def download_asset(
        self,
        asset_id: str,
        directory: Path,
        cancel_check: Callable[[], bool] | None = None,
        timeout: float | None = None,
    ) -> DownloadedFile:
        """Stream an asset's original bytes into a temporary file.

        The temp file is created inside ``directory`` so it can be moved into
        place atomically. It is removed if the transfer fails or is cancelled.

        Args:
            asset_id: Asset to fetch.
            directory: Directory for the temp file (destination directory).
            cancel_check: Returns True when the transfer should stop.
            timeout: Overall deadline in seconds (default: download_timeout).

        Returns:
            DownloadedFile describing the temp file.

        Raises:
            RequestTimeoutError: If the deadline passes.
            CancelledError: If cancellation was requested mid-stream.
            RemoteError: If the server answers non-2xx.
        """
        seconds = timeout or self._config.download_timeout
        deadline = time.monotonic() + seconds
        fd, temp_name = tempfile.mkstemp(prefix=".immichsync-", suffix=".part", dir=directory)
        temp_path = Path(temp_name)
        written = 0
        try:
            with os.fdopen(fd, "wb") as out:
                try:
                    with self._client.stream(
                        "GET", f"assets/{asset_id}/original", timeout=seconds
                    ) as response:
                        self._handle_response(response)
                        length = response.headers.get("content-length")
                        expected = int(length) if length and length.isdigit() else None
                        for chunk in response.iter_bytes(STREAM_CHUNK_SIZE):
                            if cancel_check and cancel_check():
                                raise CancelledError(f"Download of {asset_id} cancelled")
                            if time.monotonic() > deadline:
                                raise RequestTimeoutError(seconds)
                            out.write(chunk)
                            written += len(chunk)
                except httpx.TimeoutException as e:
                    raise RequestTimeoutError(seconds) from e
                except httpx.RequestError as e:
                    raise TransportError(f"Download of {asset_id} failed: {e}") from e
        except BaseException:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            raise
        return DownloadedFile(path=temp_path, bytes_written=written, expected_size=expected)

    def fetch_asset_metadata(self, asset_id: str, timeout: float = 30.0) -> bytes:
        """Fetch the raw metadata document of an asset."""
        return self._request("GET", f"assets/{asset_id}/metadata", timeout=timeout).content

    def upload_asset(
        self,
        path: Path,
        device_id: str,
        created_at: datetime,
        modified_at: datetime,
        device_asset_id: str | None = None,
    ) -> UploadedAsset:
        """Upload a local file as a new asset (multipart).

        Args:
            path: Local file to upload.
            device_id: Stable identifier of this installation.
            created_at: File creation time.
            modified_at: File modification time.
            device_asset_id: Optional per-file identifier (random if omitted).

        Returns:
            UploadedAsset with the remote ID and byte count.
        """
        fields = {
            "deviceAssetId": device_asset_id or str(uuid.uuid4()),
            "deviceId": device_id,
            "fileCreatedAt": created_at.isoformat(),
            "fileModifiedAt": modified_at.isoformat(),
            "assetCreatedAt": created_at.isoformat(),
        }
        size = path.stat().st_size
        with path.open("rb") as f:
            response = self._request(
                "POST",
                "assets",
                data=fields,
                files={"assetData": (path.name, f, "application/octet-stream")},
                timeout=max(self._config.timeout, self._config.download_timeout),
            )
        try:
            data = response.json()
        except ValueError:
            data = None
        asset_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(asset_id, str):
            asset_id = str(uuid.uuid4())
            logger.warning("Upload of %s returned no asset id, recording %s", path, asset_id)
        return UploadedAsset(asset_id=asset_id, bytes=size)

    def bulk_duplicate_check(self, candidates: list[DuplicateCandidate]) -> list[bool]:
        """Ask the server which candidates it already has.

        Returns:
            One flag per candidate, True meaning "already on server".
        """
        response = self._request(
            "POST",
            "assets/bulk-duplicate-check",
            json={"assets": [c.to_dict() for c in candidates]},
        )
        return parse_duplicate_check(response.json(), expected=len(candidates))

    # === Probes ===

    def probe(
        self,
        path: str,
        method: str = "GET",
        json: dict[str, Any] | None = None,
        allowed_status: tuple[int, ...] = (),
    ) -> ProbeOutcome:
        """Issue a capability probe. Never raises.

        Args:
            path: Endpoint path relative to the API root.
            method: HTTP method.
            json: Optional JSON body.
            allowed_status: Non-2xx statuses that still count as success.

        Returns:
            ProbeOutcome; status_code is -1 when the server was unreachable.
        """
        try:
            response = self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            return ProbeOutcome(ok=False, status_code=-1, message=str(e) or type(e).__name__)
        status = response.status_code
        if 200 <= status < 300 or status in allowed_status:
            return ProbeOutcome(ok=True, status_code=status, message="ok")
        return ProbeOutcome(ok=False, status_code=status, message=f"HTTP {status}")
