"""Sync commands for the immichsync CLI.

Commands:
- check: Probe the server and classify the API key
- albums: List albums (IDs for ``selected_album_ids``)
- server-info: Show server version and duplicate summary
- download: Mirror remote assets into the backup folder
- upload: Upload new files from the upload folder (optionally watching it)
- run: Long-running mode with watcher and scheduler
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable
from dataclasses import replace

import click

from immichsync.client.api import APIError, ImmichClient
from immichsync.client.cli.config import load_settings, open_state
from immichsync.client.credentials import resolve_api_key
from immichsync.client.notifications import notify
from immichsync.client.power import on_battery
from immichsync.client.sync import (
    CompletionState,
    ConnectionStatus,
    CoordinatorSnapshot,
    SyncCoordinator,
)
from immichsync.core.config import SyncSettings
from immichsync.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5  # seconds


def make_coordinator(settings: SyncSettings, daemon: bool = False) -> SyncCoordinator:
    """Build a coordinator over the persistent state.

    Args:
        settings: Loaded settings.
        daemon: Enable the power check and system notifications.
    """
    return SyncCoordinator(
        settings,
        open_state(),
        pause_check=on_battery if daemon else None,
        notifier=notify if daemon else None,
    )


def _wait_and_report(
    coordinator: SyncCoordinator,
    running: Callable[[CoordinatorSnapshot], bool],
    text: Callable[[CoordinatorSnapshot], str],
) -> CoordinatorSnapshot:
    """Echo progress text changes until the run ends.

    The final text is left to the caller.
    """
    last = ""
    while True:
        coordinator.wait_for_runs(timeout=POLL_INTERVAL)
        snapshot = coordinator.snapshot()
        if not running(snapshot):
            return snapshot
        current = text(snapshot)
        if current and current != last:
            click.echo(current)
            last = current


def _client_or_exit(settings: SyncSettings) -> ImmichClient:
    try:
        return ImmichClient(settings.server_config(resolve_api_key(settings)))
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.command()
def check() -> None:
    """Check the connection and what the API key may do."""
    settings = load_settings()
    coordinator = make_coordinator(settings)
    coordinator.start()
    try:
        report = coordinator.check_connection_now().result()
    finally:
        coordinator.stop()

    click.echo(f"Status: {report.status.value.upper()}")
    if report.message:
        click.echo(report.message)
    for warning in report.warnings:
        click.echo(f"  - {warning}")
    if report.status == ConnectionStatus.INVALID:
        sys.exit(1)


@click.command()
def albums() -> None:
    """List albums on the server."""
    settings = load_settings()
    with _client_or_exit(settings) as client:
        try:
            album_list = client.list_albums()
        except APIError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    if not album_list:
        click.echo("No albums.")
        return
    selected = set(settings.selected_album_ids)
    for album in album_list:
        mark = "*" if album.id in selected else " "
        click.echo(f"{mark} {album.id}  {album.name} ({album.asset_count})")


@click.command("server-info")
def server_info() -> None:
    """Show server version and duplicate summary."""
    settings = load_settings()
    with _client_or_exit(settings) as client:
        try:
            version = client.server_version()
        except APIError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo(f"Server: {client.base_url}")
        click.echo(f"Version: {version or 'unknown'}")
        try:
            groups, items = client.list_duplicates()
        except APIError as e:
            click.echo(f"Duplicates: unavailable ({e})")
        else:
            click.echo(f"Duplicates: {groups} groups, {items} assets")


@click.command()
@click.option("--folder", type=click.Path(file_okay=False), help="Backup folder (overrides config).")
@click.option("--album", "album_ids", multiple=True, help="Album ID to download (repeatable).")
def download(folder: str | None, album_ids: tuple[str, ...]) -> None:
    """Download remote assets into the backup folder."""
    settings = load_settings()
    if folder:
        settings = replace(settings, download_folder=folder)
    if album_ids:
        settings = replace(settings, selected_album_ids=list(album_ids))

    coordinator = make_coordinator(settings)
    coordinator.start()
    try:
        started = coordinator.start_download(manual=True)
        if started:
            snapshot = _wait_and_report(
                coordinator, lambda s: s.download_running, lambda s: s.download_text
            )
        else:
            snapshot = coordinator.snapshot()
    except KeyboardInterrupt:
        coordinator.stop_download()
        coordinator.wait_for_runs()
        snapshot = coordinator.snapshot()
    finally:
        coordinator.stop()

    click.echo(snapshot.download_text)
    if snapshot.download_state == CompletionState.FAILED:
        sys.exit(1)


@click.command()
@click.option("--folder", type=click.Path(file_okay=False), help="Upload folder (overrides config).")
@click.option("--watch", "-w", is_flag=True, help="Keep watching the folder and upload new files.")
def upload(folder: str | None, watch: bool) -> None:
    """Upload new files from the upload folder."""
    settings = load_settings()
    if folder:
        settings = replace(settings, upload_folder=folder)
    if watch:
        settings = replace(settings, upload_enabled=True)

    coordinator = make_coordinator(settings)
    coordinator.start(watch=watch)
    try:
        started = coordinator.start_upload(manual=True)
        if started:
            snapshot = _wait_and_report(
                coordinator, lambda s: s.upload_running, lambda s: s.upload_text
            )
        else:
            snapshot = coordinator.snapshot()
        if watch and snapshot.upload_state != CompletionState.FAILED:
            click.echo(f"Watching {settings.upload_folder} (Ctrl+C to stop)...")
            last = snapshot.upload_text
            while True:
                time.sleep(POLL_INTERVAL)
                snapshot = coordinator.snapshot()
                if snapshot.upload_text != last:
                    click.echo(snapshot.upload_text)
                    last = snapshot.upload_text
    except KeyboardInterrupt:
        coordinator.stop_upload()
        coordinator.wait_for_runs()
        snapshot = coordinator.snapshot()
    finally:
        coordinator.stop()

    click.echo(snapshot.upload_text)
    if snapshot.upload_state == CompletionState.FAILED:
        sys.exit(1)


@click.command()
def run() -> None:
    """Run continuously: watch uploads, scheduled downloads, power checks."""
    settings = load_settings()
    coordinator = make_coordinator(settings, daemon=True)
    coordinator.start(watch=True, schedule=True)
    coordinator.check_connection()
    click.echo("immichsync running (Ctrl+C to stop)...")
    last_error: str | None = None
    try:
        while True:
            time.sleep(POLL_INTERVAL)
            snapshot = coordinator.snapshot()
            if snapshot.last_error and snapshot.last_error != last_error:
                click.echo(f"Error: {snapshot.last_error}", err=True)
            last_error = snapshot.last_error
    except KeyboardInterrupt:
        click.echo("Stopping...")
    finally:
        coordinator.stop()
