"""Core module - Shared configuration, types, and errors."""

from immichsync.core.config import (
    ServerConfig,
    SyncSettings,
    normalized_base_url,
)
from immichsync.core.errors import (
    CancelledError,
    ConfigurationError,
    FilesystemError,
    SyncError,
    VerificationError,
)
from immichsync.core.log import setup_logging
from immichsync.core.types import AssetType, FolderStructure

__all__ = [
    # Config
    "ServerConfig",
    "SyncSettings",
    "normalized_base_url",
    # Errors
    "CancelledError",
    "ConfigurationError",
    "FilesystemError",
    "SyncError",
    "VerificationError",
    # Logging
    "setup_logging",
    # Types
    "AssetType",
    "FolderStructure",
]
