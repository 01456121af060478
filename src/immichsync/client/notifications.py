"""Cross-platform system notifications for immichsync.

This module provides:
- send_notification: native OS notification (notification center,
  notify-send, PowerShell toast)
- notify: (title, message) adapter used as the coordinator's notifier
"""

from __future__ import annotations

import logging
import platform
import subprocess
from dataclasses import dataclass
from enum import Enum, auto

logger = logging.getLogger(__name__)

APP_NAME = "ImmichSync"


class NotificationType(Enum):
    """Type of notification."""

    INFO = auto()
    ERROR = auto()


@dataclass
class Notification:
    """Represents a notification to display."""

    title: str
    message: str
    type: NotificationType = NotificationType.INFO


def _ps_quote(text: str) -> str:
    """Quote text as a single-quoted PowerShell string literal.

    Straight and typographic single quotes are all doubled.
    """
    for quote in "'\u2018\u2019\u201a\u201b":
        text = text.replace(quote, quote * 2)
    return f"'{text}'"


def _notify_windows(notification: Notification) -> bool:
    """Send notification on Windows using a PowerShell toast."""
    ps_script = f'''
    [Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, ContentType = WindowsRuntime] | Out-Null
    $template = [Windows.UI.Notifications.ToastNotificationManager]::GetTemplateContent([Windows.UI.Notifications.ToastTemplateType]::ToastText02)
    $text = $template.GetElementsByTagName("text")
    $text.Item(0).AppendChild($template.CreateTextNode({_ps_quote(notification.title)})) | Out-Null
    $text.Item(1).AppendChild($template.CreateTextNode({_ps_quote(notification.message)})) | Out-Null
    $toast = New-Object Windows.UI.Notifications.ToastNotification $template
    [Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier({_ps_quote(APP_NAME)}).Show($toast)
    '''
    try:
        subprocess.run(
            ["powershell", "-ExecutionPolicy", "Bypass", "-Command", ps_script],
            capture_output=True,
            check=False,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        return True
    except OSError as e:
        logger.debug(f"Windows notification failed: {e}")
        return False


def _applescript_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _notify_macos(notification: Notification) -> bool:
    """Send notification on macOS using osascript."""
    title = _applescript_escape(notification.title)
    message = _applescript_escape(notification.message)
    script = f'display notification "{message}" with title "{title}"'
    try:
        subprocess.run(["osascript", "-e", script], capture_output=True, check=True)
        return True
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug(f"macOS notification failed: {e}")
        return False


def _notify_linux(notification: Notification) -> bool:
    """Send notification on Linux using notify-send."""
    urgency = "critical" if notification.type == NotificationType.ERROR else "normal"
    try:
        subprocess.run(
            [
                "notify-send",
                "--urgency", urgency,
                "--app-name", APP_NAME,
                notification.title,
                notification.message,
            ],
            capture_output=True,
            check=True,
        )
        return True
    except FileNotFoundError:
        logger.debug("notify-send not found")
        return False
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug(f"Linux notification failed: {e}")
        return False


def send_notification(notification: Notification) -> bool:
    """Send a system notification.

    Returns:
        True if notification was sent, False if failed or unavailable.
    """
    system = platform.system()

    if system == "Windows":
        return _notify_windows(notification)
    elif system == "Darwin":
        return _notify_macos(notification)
    elif system == "Linux":
        return _notify_linux(notification)
    else:
        logger.warning(f"Notifications not supported on {system}")
        return False


def notify(title: str, message: str) -> None:
    """Coordinator notifier: failures are reported as errors."""
    kind = NotificationType.ERROR if "failed" in title.lower() else NotificationType.INFO
    send_notification(Notification(title=f"{APP_NAME} - {title}", message=message, type=kind))
