"""Maintenance commands for the immichsync CLI.

Commands:
- history: Show (or clear) the sync history
- local-duplicates: Count duplicate files in the backup folder
- clear-upload-history: Forget which files were uploaded
- clear-duplicate-cache: Forget server duplicate verdicts
- reset: Clear all indexes, caches and history
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from immichsync.client.cli.config import get_state_dir, load_settings, open_state
from immichsync.client.sync import scan_local_duplicates


@click.command()
@click.option("--clear", is_flag=True, help="Delete the history.")
@click.option("--limit", "-n", default=20, show_default=True, help="Entries to show.")
def history(clear: bool, limit: int) -> None:
    """Show recent sync runs, newest first."""
    store = open_state().history
    if clear:
        store.clear()
        click.echo("Sync history cleared.")
        return

    items = store.items()[:limit]
    if not items:
        click.echo("No sync history.")
        return
    for item in items:
        started = item.started_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        seconds = (item.ended_at - item.started_at).total_seconds()
        counts = (
            f"downloaded {item.downloaded}"
            if item.type.value == "download"
            else f"uploaded {item.uploaded}"
        )
        status = "failed" if item.errors else "ok"
        click.echo(
            f"{started}  {item.type.value:<8}  {counts}, skipped {item.skipped}  "
            f"[{status}, {seconds:.0f}s]"
        )


@click.command("local-duplicates")
@click.option(
    "--folder", type=click.Path(file_okay=False), help="Folder to scan (default: backup folder)."
)
def local_duplicates(folder: str | None) -> None:
    """Count files sharing a name and size in the backup folder."""
    settings = load_settings()
    target = folder or settings.download_folder
    if not target:
        click.echo("Error: Pick a backup folder first.", err=True)
        sys.exit(1)

    report = scan_local_duplicates(Path(target).expanduser())
    click.echo(f"Scanned {report.processed} files in {target}")
    if report.truncated:
        click.echo("Scan stopped early (file limit reached).")
    click.echo(f"Possible duplicates: {report.count}")


@click.command("clear-upload-history")
def clear_upload_history() -> None:
    """Forget which files were uploaded (they will be checked again)."""
    open_state().uploads.clear()
    click.echo("Upload history cleared.")


@click.command("clear-duplicate-cache")
def clear_duplicate_cache() -> None:
    """Forget cached server duplicate verdicts."""
    open_state().duplicates.clear()
    click.echo("Server duplicate cache cleared.")


@click.command()
@click.option("--force", is_flag=True, help="Skip confirmation prompt.")
def reset(force: bool) -> None:
    """Clear download index, upload history, duplicate cache and sync history.

    Settings and downloaded files are kept.
    """
    if not force:
        click.echo(f"This clears all sync state in {get_state_dir()}.")
        click.echo("Already downloaded files may be downloaded again.")
        if not click.confirm("Are you sure you want to reset?"):
            click.echo("Aborted.")
            return
    open_state().reset()
    click.echo("Sync state has been reset.")
