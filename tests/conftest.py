"""Shared test fixtures and fakes."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import pytest

from chat_studio.chat.models import ChatSettings
from chat_studio.llm.prompt import ApiMode
from chat_studio.notifications import NotificationRouter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from chat_studio.chat.models import Conversation


class FakeClient:
    """Stands in for OllamaClient, replaying canned response chunks.

    Args:
        chunks: Body chunks yielded one at a time.
        error: Raised when the request opens, or after ``error_after`` chunks.
        error_after: Number of chunks delivered before ``error`` is raised.
        hang: Block forever after the last chunk instead of closing.
    """

    def __init__(
        self,
        chunks: Sequence[bytes | str] = (),
        *,
        error: Exception | None = None,
        error_after: int | None = None,
        hang: bool = False,
        mode: str = "generate",
    ) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.error_after = error_after
        self.hang = hang
        self.mode = ApiMode(mode)
        self.payloads: list[dict[str, Any]] = []
        self.closed = False

    @asynccontextmanager
    async def open_stream(self, payload: dict[str, Any]) -> AsyncIterator[AsyncIterator[bytes]]:
        self.payloads.append(payload)
        if self.error is not None and self.error_after is None:
            raise self.error
        try:
            yield self._body()
        finally:
            self.closed = True

    async def _body(self) -> AsyncIterator[bytes]:
        for i, chunk in enumerate(self.chunks):
            if self.error_after == i:
                raise self.error
            yield chunk.encode() if isinstance(chunk, str) else chunk
            await asyncio.sleep(0)
        if self.error is not None and self.error_after is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def list_models(self) -> list[str]:
        return []


class MemoryPersistence:
    """In-memory Persistence implementation."""

    def __init__(
        self,
        conversations: list[Conversation] | None = None,
        chat_settings: ChatSettings | None = None,
        *,
        fail_load: bool = False,
        fail_save: bool = False,
    ) -> None:
        self.conversations = conversations or []
        self.chat_settings = chat_settings or ChatSettings()
        self.fail_load = fail_load
        self.fail_save = fail_save
        self.saves = 0

    async def load_conversations(self) -> list[Conversation]:
        if self.fail_load:
            msg = "corrupt state"
            raise ValueError(msg)
        return list(self.conversations)

    async def save_conversations(self, conversations: Sequence[Conversation]) -> None:
        if self.fail_save:
            msg = "disk full"
            raise OSError(msg)
        self.conversations = list(conversations)
        self.saves += 1

    async def load_settings(self) -> ChatSettings:
        if self.fail_load:
            msg = "corrupt settings"
            raise ValueError(msg)
        return self.chat_settings

    async def save_settings(self, chat_settings: ChatSettings) -> None:
        self.chat_settings = chat_settings


class RecordingChannel:
    """Notification channel that remembers what it was sent."""

    name = "recording"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, message: str, kind: str) -> bool:
        self.sent.append((message, str(kind)))
        return True

    def messages(self, kind: str | None = None) -> list[str]:
        return [m for m, k in self.sent if kind is None or k == kind]


class FakeBell:
    def __init__(self) -> None:
        self.rings = 0

    def play_cue(self) -> None:
        self.rings += 1


@pytest.fixture(autouse=True)
def _reset_router():
    """Reset the notification router singleton around each test."""
    NotificationRouter._reset()
    yield
    NotificationRouter._reset()


@pytest.fixture
def channel() -> RecordingChannel:
    ch = RecordingChannel()
    NotificationRouter.get().register_channel(ch)
    return ch


@pytest.fixture
def bell() -> FakeBell:
    return FakeBell()
