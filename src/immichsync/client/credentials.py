"""API key storage through the OS keyring.

The key lives either in ``config.json`` or, when ``use_keychain`` is set,
in the keyring under service ``immichsync`` / account ``apiKey``.
"""

from __future__ import annotations

import contextlib
import logging

import keyring
from keyring.errors import KeyringError

from immichsync.core.config import SyncSettings

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "immichsync"
KEYRING_ACCOUNT = "apiKey"


def load_api_key() -> str | None:
    """Read the API key from the keyring.

    Returns:
        The stored key, or None if absent or the keyring is unavailable.
    """
    try:
        return keyring.get_password(KEYRING_SERVICE, KEYRING_ACCOUNT)
    except KeyringError as e:
        logger.warning("Keyring unavailable: %s", e)
        return None


def store_api_key(api_key: str) -> bool:
    """Store the API key in the keyring.

    Returns:
        True if the key was stored.
    """
    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_ACCOUNT, api_key)
    except KeyringError as e:
        logger.warning("Cannot store API key in keyring: %s", e)
        return False
    return True


def delete_api_key() -> None:
    """Remove the API key from the keyring (silently ignore if absent)."""
    with contextlib.suppress(KeyringError):
        keyring.delete_password(KEYRING_SERVICE, KEYRING_ACCOUNT)


def resolve_api_key(settings: SyncSettings) -> str:
    """Return the effective API key for the settings.

    With ``use_keychain`` the keyring value wins; the config value is the
    fallback when the keyring holds nothing.
    """
    if settings.use_keychain:
        stored = load_api_key()
        if stored:
            return stored
    return settings.api_key
