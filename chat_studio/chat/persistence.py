"""Persistence of conversations and user settings.

``SqlitePersistence`` keeps each collection as one JSON document in a small
key-value table, using the same keys the browser client stored in
localStorage so exported state stays interchangeable.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Protocol

import aiosqlite

from chat_studio.chat.models import ChatSettings, Conversation
from chat_studio.config import settings

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

SESSIONS_KEY = "llm-chat-sessions-v2"
SETTINGS_KEY = "llm-chat-settings-v2"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


class Persistence(Protocol):
    async def load_conversations(self) -> list[Conversation]: ...

    async def save_conversations(self, conversations: Sequence[Conversation]) -> None: ...

    async def load_settings(self) -> ChatSettings: ...

    async def save_settings(self, chat_settings: ChatSettings) -> None: ...


class SqlitePersistence:
    """Stores chats and settings in SQLite.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def _read(self, key: str) -> Any:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = await cursor.fetchone()
        finally:
            await db.close()
        return json.loads(row[0]) if row else None

    async def _write(self, key: str, value: Any) -> None:
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, json.dumps(value)),
            )
            await db.commit()
        finally:
            await db.close()

    # -- Persistence protocol --------------------------------------------------

    async def load_conversations(self) -> list[Conversation]:
        data = await self._read(SESSIONS_KEY)
        if not isinstance(data, list):
            return []
        conversations = [Conversation.from_dict(c) for c in data if isinstance(c, dict)]
        logger.info("Loaded %d conversations from %s", len(conversations), self._db_path)
        return conversations

    async def save_conversations(self, conversations: Sequence[Conversation]) -> None:
        await self._write(SESSIONS_KEY, [c.to_dict() for c in conversations])

    async def load_settings(self) -> ChatSettings:
        data = await self._read(SETTINGS_KEY)
        if not isinstance(data, dict):
            return ChatSettings()
        return ChatSettings.model_validate(data)

    async def save_settings(self, chat_settings: ChatSettings) -> None:
        await self._write(SETTINGS_KEY, chat_settings.model_dump(by_alias=True))
