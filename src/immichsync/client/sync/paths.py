"""Destination path resolution for downloaded assets.

Layout: ``<base>/[<album>/][<yyyy>/[<MM>/]]<id>-<name>``
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from immichsync.client.api import AssetSummary
from immichsync.core.types import FolderStructure

SIDECAR_SUFFIX = ".immich.json"

_UNSAFE_CHARS = str.maketrans({"/": "_", ":": "_", "\\": "_"})


def sanitize(name: str) -> str:
    """Make a single safe path component.

    Separators and colons become underscores; empty, ``.`` and ``..`` become ``_``.
    """
    safe = name.translate(_UNSAFE_CHARS)
    if safe in ("", ".", ".."):
        return "_"
    return safe


def asset_filename(asset: AssetSummary) -> str:
    """Local file name of an asset: ``{id}-{name}`` or the bare ID."""
    if asset.original_file_name:
        return f"{asset.id}-{sanitize(asset.original_file_name)}"
    return asset.id


def date_bucket(
    created_at: datetime | None,
    structure: FolderStructure,
    now: datetime | None = None,
) -> Path:
    """Relative date folder for the given structure.

    Dates are bucketed in UTC. A missing date falls back to ``now``.
    """
    if structure == FolderStructure.FLAT:
        return Path()
    moment = created_at or now or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    if structure == FolderStructure.YEAR:
        return Path(f"{moment.year:04d}")
    return Path(f"{moment.year:04d}") / f"{moment.month:02d}"


def destination_directory(
    base: Path,
    asset: AssetSummary,
    structure: FolderStructure,
    album_name: str | None = None,
) -> Path:
    """Directory an asset is written to."""
    directory = base
    if album_name:
        directory = directory / sanitize(album_name)
    return directory / date_bucket(asset.created_at, structure)


def destination_path(
    base: Path,
    asset: AssetSummary,
    structure: FolderStructure,
    album_name: str | None = None,
) -> Path:
    """Full destination path of an asset."""
    return destination_directory(base, asset, structure, album_name) / asset_filename(asset)


def sidecar_path(destination: Path) -> Path:
    """Metadata sidecar path next to a downloaded file."""
    return destination.with_name(destination.name + SIDECAR_SUFFIX)
