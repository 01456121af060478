"""Power source detection used to pause automatic runs on battery."""

from __future__ import annotations

import logging
import platform
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

POWER_SUPPLY_DIR = Path("/sys/class/power_supply")


def _on_battery_macos() -> bool:
    try:
        result = subprocess.run(["pmset", "-g", "batt"], capture_output=True, text=True, check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug(f"pmset failed: {e}")
        return False
    return "Battery Power" in result.stdout


def _on_battery_linux(root: Path = POWER_SUPPLY_DIR) -> bool:
    """True if a mains supply exists and none is online."""
    mains_seen = False
    try:
        supplies = list(root.iterdir())
    except OSError:
        return False
    for supply in supplies:
        try:
            if (supply / "type").read_text().strip() != "Mains":
                continue
            mains_seen = True
            if (supply / "online").read_text().strip() == "1":
                return False
        except OSError:
            continue
    return mains_seen


def on_battery() -> bool:
    """Check whether the machine currently runs on battery.

    Unknown platforms and detection failures count as "not on battery".
    """
    system = platform.system()
    if system == "Darwin":
        return _on_battery_macos()
    if system == "Linux":
        return _on_battery_linux()
    return False
