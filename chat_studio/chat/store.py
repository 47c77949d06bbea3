"""In-memory collection of chats and their messages.

The store is created once at startup from persisted state and handed to
whoever needs it. It never performs I/O itself; ``ChatService`` persists
after each mutation.

Invariants:
- at least one conversation exists at all times;
- ``active_id`` always names a live conversation;
- a conversation with a running generation rejects destructive operations.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chat_studio.chat.errors import (
    ConcurrentGenerationError,
    ConversationLockedError,
    ConversationNotFoundError,
    InvalidMessageError,
    LastConversationError,
    MessageNotFoundError,
    NoSourceMessageError,
)
from chat_studio.chat.models import (
    DEFAULT_CHAT_NAME,
    Conversation,
    GenerationState,
    Message,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

AUTO_NAME_LENGTH = 40


def auto_name(text: str) -> str:
    """Derive a chat name from its first user message."""
    text = text.strip()
    if len(text) > AUTO_NAME_LENGTH:
        return text[:AUTO_NAME_LENGTH] + "..."
    return text or DEFAULT_CHAT_NAME


class ConversationStore:
    """Owns every conversation and the active-conversation pointer."""

    def __init__(
        self,
        conversations: Iterable[Conversation] = (),
        *,
        default_model: str = "",
    ) -> None:
        self._conversations: list[Conversation] = list(conversations)
        self.default_model = default_model
        if not self._conversations:
            self._conversations.append(Conversation(model=default_model))
        self._active_id = self._conversations[0].id

    # -- Lookup ----------------------------------------------------------------

    def list(self) -> list[Conversation]:
        return list(self._conversations)

    def get(self, conversation_id: str) -> Conversation:
        for conv in self._conversations:
            if conv.id == conversation_id:
                return conv
        msg = f"Conversation '{conversation_id}' not found"
        raise ConversationNotFoundError(msg)

    @property
    def active_id(self) -> str:
        return self._active_id

    def active(self) -> Conversation:
        return self.get(self._active_id)

    # -- Conversation operations -----------------------------------------------

    def create(self, name: str = DEFAULT_CHAT_NAME, *, activate: bool = True) -> Conversation:
        """Create a chat inheriting the default model. New chats go first."""
        conv = Conversation(name=name, model=self.default_model)
        self._conversations.insert(0, conv)
        if activate:
            self._active_id = conv.id
        logger.info("Created conversation %s", conv.id)
        return conv

    def switch(self, conversation_id: str) -> Conversation:
        """Make a conversation active. Allowed even while one is generating."""
        conv = self.get(conversation_id)
        self._active_id = conv.id
        return conv

    def rename(self, conversation_id: str, name: str) -> Conversation:
        name = name.strip()
        if not name:
            msg = "Conversation name cannot be empty"
            raise ValueError(msg)
        conv = self.get(conversation_id)
        conv.name = name
        conv.touch()
        return conv

    def delete(self, conversation_id: str) -> Conversation:
        """Remove a chat. The last chat and locked chats cannot be deleted."""
        conv = self.get(conversation_id)
        if len(self._conversations) <= 1:
            msg = "Cannot delete the last chat"
            raise LastConversationError(msg)
        self._ensure_unlocked(conv, "delete")
        self._conversations.remove(conv)
        if self._active_id == conv.id:
            self._active_id = self._conversations[0].id
        logger.info("Deleted conversation %s", conv.id)
        return conv

    def clear(self, conversation_id: str) -> int:
        """Remove all messages. Returns the number removed."""
        conv = self.get(conversation_id)
        self._ensure_unlocked(conv, "clear")
        count = len(conv.messages)
        conv.messages.clear()
        conv.touch()
        return count

    # -- Message operations ----------------------------------------------------

    def append_message(self, conversation_id: str, message: Message) -> Message:
        conv = self.get(conversation_id)
        conv.add_message(message)
        if message.role == "user" and sum(m.role == "user" for m in conv.messages) == 1:
            conv.name = auto_name(message.content)
        return message

    def delete_message(self, conversation_id: str, message_id: str) -> Message:
        conv = self.get(conversation_id)
        if conv.is_locked and conv.generation_target == message_id:
            msg = "Cannot delete a message that is still being generated"
            raise ConversationLockedError(msg)
        index = self._message_index(conv, message_id)
        message = conv.messages.pop(index)
        conv.touch()
        return message

    def prepare_regenerate(
        self, conversation_id: str, assistant_message_id: str
    ) -> tuple[list[Message], int]:
        """Remove an assistant reply so it can be generated again.

        Scans backward from the reply for the nearest user message. Returns
        the context to resend (everything up to and including that user
        message) and the index where the new reply belongs. Nothing is
        modified if validation fails.
        """
        conv = self.get(conversation_id)
        if conv.is_locked:
            msg = f"Conversation '{conversation_id}' is already generating"
            raise ConcurrentGenerationError(msg)

        index = self._message_index(conv, assistant_message_id)
        if conv.messages[index].role != "assistant":
            msg = "Only assistant messages can be regenerated"
            raise InvalidMessageError(msg)

        source = index - 1
        while source >= 0 and conv.messages[source].role != "user":
            source -= 1
        if source < 0:
            msg = "No user message found to regenerate from"
            raise NoSourceMessageError(msg)

        del conv.messages[index]
        conv.touch()
        return conv.messages[: source + 1], index

    # -- Generation lock -------------------------------------------------------

    def begin_generation(self, conversation_id: str) -> Conversation:
        """Mark a conversation as generating. Rejects a second generation."""
        conv = self.get(conversation_id)
        if conv.is_locked:
            msg = f"Conversation '{conversation_id}' is already generating"
            raise ConcurrentGenerationError(msg)
        conv.generation_state = GenerationState.ACTIVE
        conv.generation_target = None
        return conv

    def end_generation(self, conversation_id: str) -> None:
        conv = self.get(conversation_id)
        conv.generation_state = GenerationState.IDLE
        conv.generation_target = None

    @staticmethod
    def _message_index(conv: Conversation, message_id: str) -> int:
        index = conv.index_of(message_id)
        if index == -1:
            msg = f"Message '{message_id}' not found in '{conv.id}'"
            raise MessageNotFoundError(msg)
        return index

    @staticmethod
    def _ensure_unlocked(conv: Conversation, action: str) -> None:
        if conv.is_locked:
            msg = f"Cannot {action} '{conv.name}' while a response is generating"
            raise ConversationLockedError(msg)
