"""Engine-level exceptions.

HTTP-level failures live in ``immichsync.client.api`` (APIError family).
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for sync engine errors."""


class ConfigurationError(SyncError):
    """Missing or invalid configuration (server URL, API key, folders, filters)."""


class VerificationError(SyncError):
    """Downloaded file failed the size or checksum check."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class FilesystemError(SyncError):
    """Permission or path failure on the local filesystem."""


class CancelledError(SyncError):
    """Raised internally when a run is cancelled.

    Never surfaced to the user as a failure.
    """
