"""Command-line interface for immichsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- config show|set|set-api-key: Settings
- check: Probe the server and classify the API key
- albums: List albums
- server-info: Server version and duplicate summary
- download: Download remote assets into the backup folder
- upload: Upload new files from the upload folder
- run: Watch, schedule and sync continuously
- history: Show or clear the sync history
- local-duplicates: Count local duplicates in the backup folder
- clear-upload-history: Forget uploaded files
- clear-duplicate-cache: Forget server duplicate verdicts
- reset: Clear all sync state
"""

from __future__ import annotations

import logging

import click

from immichsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_log_file,
    get_state_dir,
    load_config,
    load_settings,
    save_config,
    save_settings,
)
from immichsync.client.cli.maintenance import (
    clear_duplicate_cache,
    clear_upload_history,
    history,
    local_duplicates,
    reset,
)
from immichsync.client.cli.settings import config
from immichsync.client.cli.sync import albums, check, download, run, server_info, upload
from immichsync.core.log import setup_logging


@click.group()
@click.version_option(package_name="immichsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option("--log-file/--no-log-file", default=True, help="Also log to the config directory.")
def cli(verbose: bool, log_file: bool) -> None:
    """ImmichSync - Bidirectional sync between a local folder and Immich."""
    setup_logging(
        level=logging.DEBUG if verbose else logging.WARNING,
        log_path=get_log_file() if log_file else None,
    )


# Settings commands
cli.add_command(config)

# Server commands
cli.add_command(check)
cli.add_command(albums)
cli.add_command(server_info)

# Sync commands
cli.add_command(download)
cli.add_command(upload)
cli.add_command(run)

# Maintenance commands
cli.add_command(history)
cli.add_command(local_duplicates)
cli.add_command(clear_upload_history)
cli.add_command(clear_duplicate_cache)
cli.add_command(reset)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_log_file",
    "get_state_dir",
    "load_config",
    "load_settings",
    "save_config",
    "save_settings",
]
