"""NotificationRouter: singleton that fans status messages out to channels."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chat_studio.notifications.channels import LoggingChannel, NotificationKind

if TYPE_CHECKING:
    from chat_studio.notifications.channels import NotificationChannel

logger = logging.getLogger(__name__)


class NotificationRouter:
    """Delivers every notification to all registered channels.

    With no channels registered, notifications go to the log. Singleton
    accessed via ``NotificationRouter.get()``.
    """

    _instance: NotificationRouter | None = None

    def __init__(self) -> None:
        self._channels: dict[str, NotificationChannel] = {}
        self._fallback = LoggingChannel()

    @classmethod
    def get(cls) -> NotificationRouter:
        """Return the singleton instance, creating it if needed."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset singleton (for tests only)."""
        cls._instance = None

    def register_channel(self, channel: NotificationChannel) -> None:
        """Register a notification channel. Raises ValueError on duplicate name."""
        if channel.name in self._channels:
            msg = f"Channel '{channel.name}' is already registered"
            raise ValueError(msg)
        self._channels[channel.name] = channel

    def unregister_channel(self, name: str) -> None:
        self._channels.pop(name, None)

    def list_channels(self) -> list[str]:
        """Return names of all registered channels."""
        return list(self._channels.keys())

    async def notify(self, message: str, kind: NotificationKind | str = NotificationKind.INFO) -> int:
        """Send *message* to every channel. Returns how many accepted it.

        A failing channel never stops delivery to the others.
        """
        kind = NotificationKind(kind)
        channels = list(self._channels.values()) or [self._fallback]
        delivered = 0
        for ch in channels:
            try:
                if await ch.send(message, kind):
                    delivered += 1
            except Exception:
                logger.exception("Notification channel '%s' failed", ch.name)
        return delivered
