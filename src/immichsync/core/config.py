"""Shared configuration classes for immichsync.

This module defines:
- normalized_base_url: server URL normalization to the API root
- ServerConfig: connection settings for the remote catalog client
- SyncSettings: engine preferences, loaded once and passed to the coordinator
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from immichsync.core.errors import ConfigurationError
from immichsync.core.types import FolderStructure

API_SUFFIX = "/api"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_DOWNLOAD_TIMEOUT = 120.0


def normalized_base_url(server: str) -> str:
    """Normalize a configured server string to the API root.

    Examples:
        ``https://x.com`` -> ``https://x.com/api``
        ``https://x.com/api/`` -> ``https://x.com/api``

    Args:
        server: Server URL as typed by the user.

    Returns:
        Base URL ending in ``/api`` without a trailing slash.

    Raises:
        ConfigurationError: If the server string is empty.
    """
    trimmed = (server or "").strip()
    if not trimmed:
        raise ConfigurationError("Server URL is required.")
    if trimmed.endswith("/"):
        trimmed = trimmed[:-1]
    if trimmed.endswith(API_SUFFIX):
        return trimmed
    return trimmed + API_SUFFIX


@dataclass
class ServerConfig:
    """Configuration for connecting to an Immich server.

    Attributes:
        server_url: Server URL as configured (normalized in __post_init__).
        api_key: API key sent in the ``x-api-key`` header.
        timeout: Default request timeout in seconds.
        download_timeout: Deadline for a single asset download in seconds.
        verify_ssl: Whether to verify SSL certificates.
    """

    server_url: str
    api_key: str
    timeout: float = DEFAULT_REQUEST_TIMEOUT
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL and validate the API key."""
        self.server_url = normalized_base_url(self.server_url)
        self.api_key = (self.api_key or "").strip()
        if not self.api_key:
            raise ConfigurationError("API key is required.")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.server_url.startswith("https://")


@dataclass
class SyncSettings:
    """User preferences for the sync engine.

    Loaded once at startup (see ``immichsync.client.cli.config``) and passed
    into the coordinator. Field names are the keys of ``config.json``.
    """

    server_url: str = ""
    api_key: str = ""
    use_keychain: bool = False
    device_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Download
    download_folder: str = ""
    include_photos: bool = True
    include_videos: bool = True
    skip_trashed: bool = True
    folder_structure: str = FolderStructure.FLAT.value
    write_sidecar: bool = True
    selected_album_ids: list[str] = field(default_factory=list)
    organize_by_album: bool = False
    verify_integrity: bool = False
    download_bandwidth_limit: float = 0.0
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT

    # Upload
    upload_enabled: bool = False
    upload_folder: str = ""
    include_upload_subfolders: bool = True
    upload_include_photos: bool = True
    upload_include_videos: bool = True
    upload_allow_list: str = ""
    upload_deny_list: str = ""
    upload_bandwidth_limit: float = 0.0
    check_server_duplicates: bool = True

    # Behaviour
    auto_pause_on_battery: bool = True
    notifications_enabled: bool = True
    schedule_enabled: bool = False
    schedule_time: str = "02:00"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        """Create settings from a config dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        settings = cls(**values)
        if not settings.device_id:
            settings.device_id = str(uuid.uuid4())
        return settings

    def to_dict(self) -> dict[str, Any]:
        """Serialize settings to a JSON-compatible dictionary."""
        return asdict(self)

    @property
    def structure(self) -> FolderStructure:
        """Parsed download folder structure."""
        return FolderStructure.parse(self.folder_structure)

    def server_config(self, api_key: str | None = None) -> ServerConfig:
        """Build a ServerConfig from these settings.

        Args:
            api_key: Optional key overriding the stored one (e.g. from keyring).

        Raises:
            ConfigurationError: If the server URL or API key is missing.
        """
        return ServerConfig(
            server_url=self.server_url,
            api_key=api_key if api_key is not None else self.api_key,
            download_timeout=self.download_timeout,
        )

    def schedule_hour_minute(self) -> tuple[int, int]:
        """Parse ``schedule_time`` (``HH:MM``).

        Raises:
            ConfigurationError: If the value is not a valid time of day.
        """
        try:
            hour_text, minute_text = self.schedule_time.split(":", 1)
            hour, minute = int(hour_text), int(minute_text)
        except ValueError as e:
            raise ConfigurationError(f"Invalid schedule time: {self.schedule_time!r}") from e
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ConfigurationError(f"Invalid schedule time: {self.schedule_time!r}")
        return hour, minute
