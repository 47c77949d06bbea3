"""Outbound request payload assembly: memory window, system prompt, model."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from chat_studio.chat.models import MEMORY_WINDOW_ALL, MEMORY_WINDOW_LATEST

if TYPE_CHECKING:
    from collections.abc import Sequence

    from chat_studio.chat.models import Message

logger = logging.getLogger(__name__)


class ApiMode(StrEnum):
    GENERATE = "generate"
    CHAT = "chat"
    OPENAI = "openai"


ENDPOINTS: dict[ApiMode, str] = {
    ApiMode.GENERATE: "/api/generate",
    ApiMode.CHAT: "/api/chat",
    ApiMode.OPENAI: "/v1/chat/completions",
}


def select_window(messages: Sequence[Message], memory_window: int) -> list[Message]:
    """Return the trailing slice of *messages* sent as model context.

    ``0`` keeps only the newest message, ``-1`` keeps everything, any other
    value keeps the last N.
    """
    if memory_window == MEMORY_WINDOW_ALL:
        return list(messages)
    if memory_window == MEMORY_WINDOW_LATEST:
        return list(messages[-1:])
    return list(messages[-memory_window:])


def format_prompt(messages: Sequence[Message], system_prompt: str = "") -> str:
    """Flatten messages into a single ``ROLE:\\ncontent`` prompt string."""
    body = "\n\n".join(f"{m.role.upper()}:\n{m.content}" for m in messages)
    if system_prompt:
        return f"SYSTEM:\n{system_prompt}\n\n{body}"
    return body


def format_messages(
    messages: Sequence[Message], system_prompt: str = ""
) -> list[dict[str, str]]:
    """Role-tagged message list with the system prompt leading, if any."""
    result: list[dict[str, str]] = []
    if system_prompt:
        result.append({"role": "system", "content": system_prompt})
    result.extend({"role": m.role, "content": m.content} for m in messages)
    return result


def build_payload(
    messages: Sequence[Message],
    *,
    model: str,
    system_prompt: str = "",
    memory_window: int = 20,
    stream: bool = True,
    mode: ApiMode | str = ApiMode.GENERATE,
) -> dict[str, Any]:
    """Build the JSON body for one generation request.

    Args:
        messages: Conversation history, oldest first.
        model: Model identifier sent to the server.
        system_prompt: Effective system prompt. Omitted entirely when empty.
        memory_window: See :func:`select_window`.
        stream: Ask the server for an incremental response.
        mode: Request shape, one of :class:`ApiMode`.
    """
    mode = ApiMode(mode)
    window = select_window(messages, memory_window)
    logger.debug(
        "Payload: mode=%s model=%s window=%d/%d", mode, model, len(window), len(messages)
    )

    if mode is ApiMode.GENERATE:
        return {
            "model": model,
            "prompt": format_prompt(window, system_prompt),
            "stream": stream,
        }
    return {
        "model": model,
        "messages": format_messages(window, system_prompt),
        "stream": stream,
    }
