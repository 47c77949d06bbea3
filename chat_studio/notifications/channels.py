"""Notification channels: where user-facing status messages end up."""

from __future__ import annotations

import logging
import sys
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import TextIO

logger = logging.getLogger(__name__)


class NotificationKind(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy."""

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'console')."""
        ...

    async def send(self, message: str, kind: NotificationKind) -> bool:
        """Deliver a status message. Returns True on success."""
        ...


_LOG_LEVELS = {
    NotificationKind.SUCCESS: logging.INFO,
    NotificationKind.INFO: logging.INFO,
    NotificationKind.WARNING: logging.WARNING,
    NotificationKind.ERROR: logging.ERROR,
}


class LoggingChannel:
    """Writes notifications to the application log."""

    name = "log"

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    async def send(self, message: str, kind: NotificationKind) -> bool:
        self._log.log(_LOG_LEVELS[kind], "[%s] %s", kind, message)
        return True


_CONSOLE_PREFIXES = {
    NotificationKind.SUCCESS: "✓",
    NotificationKind.INFO: "i",
    NotificationKind.WARNING: "!",
    NotificationKind.ERROR: "✗",
}


class ConsoleChannel:
    """Prints notifications as one-line toasts in the terminal."""

    name = "console"

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    async def send(self, message: str, kind: NotificationKind) -> bool:
        stream = self._stream or sys.stderr
        stream.write(f"[{_CONSOLE_PREFIXES[kind]}] {message}\n")
        stream.flush()
        return True
