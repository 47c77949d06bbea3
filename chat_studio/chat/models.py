"""Conversation, message and user-settings data models."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["system", "user", "assistant"]

DEFAULT_CHAT_NAME = "New Chat"
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful, friendly assistant. Provide concise and accurate responses."
)

# memory_window sentinels
MEMORY_WINDOW_LATEST = 0
MEMORY_WINDOW_ALL = -1


def _now() -> str:
    return datetime.now(UTC).isoformat()


def make_message_id() -> str:
    """Generate a new message ID."""
    return f"msg-{uuid.uuid4().hex}"


def make_conversation_id() -> str:
    """Generate a new conversation ID."""
    return f"chat-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class GenerationState(StrEnum):
    IDLE = "idle"
    ACTIVE = "active"


class ChatSettings(BaseModel):
    """User preferences read by the core.

    ``memory_window`` counts the most recent messages sent as context:
    ``0`` sends only the newest message, ``-1`` sends the whole history.
    """

    memory_window: int = Field(default=20, ge=MEMORY_WINDOW_ALL)
    default_model: str = ""
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    enable_streaming: bool = True
    enable_markdown: bool = True
    enable_sound: bool = False

    # Stored with camelCase keys (memoryWindow, enableSound, ...)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


@dataclass
class Message:
    """A single conversation message.

    Attributes:
        id: Unique within its conversation.
        role: ``"system"``, ``"user"`` or ``"assistant"``.
        content: Message text. Only grows while it is a streaming target.
        created_at: ISO 8601 timestamp.
        is_error: Set on synthetic error replies.
    """

    role: Role
    content: str = ""
    id: str = field(default_factory=make_message_id)
    created_at: str = field(default_factory=_now)
    is_error: bool = False

    def append(self, delta: str) -> None:
        self.content += delta

    # -- Serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.created_at,
        }
        if self.is_error:
            data["isError"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=str(data.get("id") or make_message_id()),
            role=data.get("role", "user"),
            content=str(data.get("content") or ""),
            created_at=_timestamp(data.get("timestamp") or data.get("created_at")),
            is_error=bool(data.get("isError", False)),
        )


@dataclass
class Conversation:
    """A chat: an ordered list of messages plus per-chat overrides.

    ``generation_state`` and ``generation_target`` describe the in-flight
    generation, if any. They live only in memory and are never serialized.
    """

    id: str = field(default_factory=make_conversation_id)
    name: str = DEFAULT_CHAT_NAME
    messages: list[Message] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    model: str = ""
    system_prompt: str | None = None
    generation_state: GenerationState = field(default=GenerationState.IDLE, compare=False)
    generation_target: str | None = field(default=None, compare=False)

    @property
    def is_locked(self) -> bool:
        return self.generation_state is GenerationState.ACTIVE

    def touch(self) -> None:
        self.updated_at = _now()

    def add_message(self, message: Message, index: int | None = None) -> Message:
        """Insert *message* at *index* (default: the end)."""
        if index is None or index >= len(self.messages):
            self.messages.append(message)
        else:
            self.messages.insert(index, message)
        self.touch()
        return message

    def index_of(self, message_id: str) -> int:
        """Return the position of a message, or -1."""
        for i, m in enumerate(self.messages):
            if m.id == message_id:
                return i
        return -1

    def effective_system_prompt(self, settings: ChatSettings) -> str:
        return self.system_prompt or settings.system_prompt or ""

    def effective_model(self, settings: ChatSettings, fallback: str = "") -> str:
        return self.model or settings.default_model or fallback

    # -- Serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "model": self.model,
        }
        if self.system_prompt:
            data["systemPrompt"] = self.system_prompt
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conversation:
        raw_messages = data.get("messages")
        messages = (
            [Message.from_dict(m) for m in raw_messages if isinstance(m, dict)]
            if isinstance(raw_messages, list)
            else []
        )
        return cls(
            id=str(data.get("id") or make_conversation_id()),
            name=str(data.get("name") or DEFAULT_CHAT_NAME),
            messages=messages,
            created_at=_timestamp(data.get("createdAt")),
            updated_at=_timestamp(data.get("updatedAt")),
            model=str(data.get("model") or ""),
            system_prompt=data.get("systemPrompt") or None,
        )


def _timestamp(value: Any) -> str:
    """Normalize a stored timestamp (ISO string or epoch millis) to ISO 8601."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, UTC).isoformat()
    if isinstance(value, str) and value:
        return value
    return _now()
