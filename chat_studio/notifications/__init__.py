"""User-facing notifications and audio cues."""

from chat_studio.notifications.audio import AudioCue, TerminalBell
from chat_studio.notifications.channels import (
    ConsoleChannel,
    LoggingChannel,
    NotificationChannel,
    NotificationKind,
)
from chat_studio.notifications.router import NotificationRouter

__all__ = [
    "AudioCue",
    "ConsoleChannel",
    "LoggingChannel",
    "NotificationChannel",
    "NotificationKind",
    "NotificationRouter",
    "TerminalBell",
]
