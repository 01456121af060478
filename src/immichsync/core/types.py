"""Shared types for immichsync.

This module defines enums used by the configuration layer and the sync engine.
"""

from __future__ import annotations

from enum import Enum


class AssetType(str, Enum):
    """Type of a remote asset as reported by the server."""

    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: object) -> AssetType | None:
        """Parse an API type string.

        Returns:
            The matching AssetType, OTHER for unknown strings, None if absent.
        """
        if not isinstance(value, str) or not value:
            return None
        try:
            return cls(value.upper())
        except ValueError:
            return cls.OTHER


class FolderStructure(str, Enum):
    """Date-bucketed folder layout for downloaded assets."""

    FLAT = "flat"
    YEAR = "year"
    YEAR_MONTH = "year-month"

    @classmethod
    def parse(cls, value: str | None) -> FolderStructure:
        """Parse a configured folder structure, defaulting to flat."""
        try:
            return cls(value or cls.FLAT.value)
        except ValueError:
            return cls.FLAT
