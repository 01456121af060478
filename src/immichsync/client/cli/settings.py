"""Settings commands for the immichsync CLI.

Commands:
- config show: Print the current settings
- config set: Change one setting
- config set-api-key: Store the API key (config file or keyring)
"""

from __future__ import annotations

import sys
from dataclasses import replace

import click

from immichsync.client.cli.config import (
    coerce_setting,
    get_config_file,
    load_settings,
    open_state,
    save_settings,
)
from immichsync.client.credentials import delete_api_key, store_api_key
from immichsync.core.errors import FilesystemError


def _mask(value: str) -> str:
    if not value:
        return "(not set)"
    return value[:4] + "*" * max(0, len(value) - 4)


@click.group()
def config() -> None:
    """Show or change settings."""


@config.command("show")
def show() -> None:
    """Print the current settings."""
    settings = load_settings()
    click.echo(f"Config file: {get_config_file()}")
    for key, value in settings.to_dict().items():
        if key == "api_key":
            value = "(in keyring)" if settings.use_keychain else _mask(value)
        elif isinstance(value, list):
            value = ", ".join(value) or "(none)"
        click.echo(f"  {key}: {value}")


@config.command("set")
@click.argument("key")
@click.argument("value")
def set_value(key: str, value: str) -> None:
    """Change one setting.

    Lists (selected_album_ids) are comma separated. Changing the download
    folder forgets which assets were downloaded before.
    """
    if key == "api_key":
        click.echo("Error: use 'immichsync config set-api-key' for the API key.", err=True)
        sys.exit(1)
    try:
        coerced = coerce_setting(key, value)
    except KeyError:
        click.echo(f"Error: unknown setting '{key}'.", err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    settings = load_settings()
    old_folder = settings.download_folder
    settings = replace(settings, **{key: coerced})
    save_settings(settings)

    if key == "download_folder" and old_folder and old_folder != settings.download_folder:
        try:
            open_state().downloads.clear()
        except FilesystemError as e:
            click.echo(f"Warning: could not clear download index: {e}", err=True)
        else:
            click.echo("Download folder changed; download index cleared.")
    click.echo(f"{key} = {coerced}")


@config.command("set-api-key")
@click.option("--keychain/--no-keychain", default=False, help="Store the key in the OS keyring.")
@click.option("--api-key", prompt=True, hide_input=True, help="Immich API key.")
def set_api_key(keychain: bool, api_key: str) -> None:
    """Store the Immich API key."""
    settings = load_settings()
    api_key = api_key.strip()
    if keychain:
        if not store_api_key(api_key):
            click.echo("Error: could not store the API key in the keyring.", err=True)
            sys.exit(1)
        settings = replace(settings, api_key="", use_keychain=True)
        click.echo("API key stored in keyring.")
    else:
        delete_api_key()
        settings = replace(settings, api_key=api_key, use_keychain=False)
        click.echo("API key stored in config file.")
    save_settings(settings)
