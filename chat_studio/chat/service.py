"""ChatService: the boundary the UI (CLI) talks to.

Ties the conversation store, generation sessions, persistence and
notifications together. Every mutating call persists afterwards.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from chat_studio.chat.errors import (
    ConversationLockedError,
    InvalidMessageError,
    LastConversationError,
    NoSourceMessageError,
    StreamInterruptedError,
)
from chat_studio.chat.generation import GenerationSession, SessionState
from chat_studio.chat.models import ChatSettings, Message
from chat_studio.chat.store import ConversationStore
from chat_studio.config import settings as app_settings
from chat_studio.llm.client import OllamaClient
from chat_studio.llm.models import ModelCatalog
from chat_studio.llm.prompt import build_payload
from chat_studio.notifications import NotificationKind, NotificationRouter, TerminalBell

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from chat_studio.chat.generation import DeltaCallback
    from chat_studio.chat.models import Conversation
    from chat_studio.chat.persistence import Persistence
    from chat_studio.notifications import AudioCue

logger = logging.getLogger(__name__)


class ChatService:
    """Owns the store and runs at most one generation per conversation.

    Call ``await start()`` once before anything else.
    """

    def __init__(
        self,
        persistence: Persistence,
        *,
        client: OllamaClient | None = None,
        catalog: ModelCatalog | None = None,
        notifier: NotificationRouter | None = None,
        audio: AudioCue | None = None,
    ) -> None:
        self._persistence = persistence
        self._client = client or OllamaClient()
        self._catalog = catalog or ModelCatalog(self._client)
        self._notifier = notifier or NotificationRouter.get()
        self._audio = audio or TerminalBell()

        self.settings = ChatSettings()
        self.store = ConversationStore()
        self._sessions: dict[str, GenerationSession] = {}
        self._listeners: dict[str, list[DeltaCallback]] = {}

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Load persisted state and the model list.

        Unreadable state falls back to defaults; an unreachable server leaves
        the model list empty.
        """
        try:
            self.settings = await self._persistence.load_settings()
        except Exception:
            logger.exception("Failed to load settings, using defaults")
            self.settings = ChatSettings()

        try:
            conversations = await self._persistence.load_conversations()
        except Exception:
            logger.exception("Failed to load conversations, starting fresh")
            conversations = []

        await self._catalog.refresh()

        self.store = ConversationStore(conversations, default_model=self._default_model())
        logger.info(
            "Chat service started with %d conversation(s)", len(self.store.list())
        )

    def _default_model(self) -> str:
        return self.settings.default_model or app_settings.default_model

    # -- Generation ------------------------------------------------------------

    def on_delta(self, conversation_id: str, callback: DeltaCallback) -> Callable[[], None]:
        """Register a per-delta callback. Returns a function that unregisters it."""
        callbacks = self._listeners.setdefault(conversation_id, [])
        callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    async def _dispatch(self, conversation_id: str, message: Message, text: str) -> None:
        for callback in list(self._listeners.get(conversation_id, ())):
            try:
                await callback(message, text)
            except Exception:
                logger.exception("Delta listener failed for %s", conversation_id)

    def is_generating(self, conversation_id: str) -> bool:
        return conversation_id in self._sessions

    async def send_message(self, conversation_id: str, text: str) -> SessionState:
        """Append a user message and stream the reply.

        Resolves once the generation reaches a terminal state.

        Raises:
            ConcurrentGenerationError: The conversation is already generating.
            InvalidMessageError: *text* is blank.
        """
        text = text.strip()
        if not text:
            msg = "Message cannot be empty"
            raise InvalidMessageError(msg)

        conv = self.store.begin_generation(conversation_id)
        self.store.append_message(conversation_id, Message(role="user", content=text))
        return await self._generate(
            conv,
            conv.messages,
            insert_at=None,
            synthesize_error=True,
            failure_message="Failed to get response",
        )

    async def regenerate(self, conversation_id: str, assistant_message_id: str) -> SessionState:
        """Replace an assistant reply with a freshly generated one.

        Raises:
            NoSourceMessageError: No user message precedes the reply.
            ConcurrentGenerationError: The conversation is already generating.
        """
        try:
            context, insert_at = self.store.prepare_regenerate(
                conversation_id, assistant_message_id
            )
        except NoSourceMessageError as exc:
            await self._notify(str(exc), NotificationKind.ERROR)
            raise

        conv = self.store.begin_generation(conversation_id)
        return await self._generate(
            conv,
            context,
            insert_at=insert_at,
            synthesize_error=False,
            failure_message="Failed to regenerate",
        )

    async def _generate(
        self,
        conv: Conversation,
        context: Sequence[Message],
        *,
        insert_at: int | None,
        synthesize_error: bool,
        failure_message: str,
    ) -> SessionState:
        """Run one session while the conversation lock is held."""
        try:
            payload = build_payload(
                context,
                model=conv.effective_model(self.settings, self._catalog.default()),
                system_prompt=conv.effective_system_prompt(self.settings),
                memory_window=self.settings.memory_window,
                stream=self.settings.enable_streaming,
                mode=self._client.mode,
            )

            async def on_delta(message: Message, text: str) -> None:
                await self._dispatch(conv.id, message, text)

            session = GenerationSession(
                conv,
                self._client,
                payload,
                on_delta=on_delta,
                insert_at=insert_at,
                synthesize_error=synthesize_error,
            )
            self._sessions[conv.id] = session
            state = await session.run()
        finally:
            self._sessions.pop(conv.id, None)
            self.store.end_generation(conv.id)
            await self._persist()

        await self._report(session, failure_message)
        return state

    async def _report(self, session: GenerationSession, failure_message: str) -> None:
        if session.state is SessionState.COMPLETED:
            if self.settings.enable_sound and session.reply and session.reply.content:
                self._play_cue()
        elif session.state is SessionState.CANCELLED:
            await self._notify("Generation stopped", NotificationKind.WARNING)
        elif isinstance(session.error, StreamInterruptedError):
            await self._notify("Response interrupted", NotificationKind.ERROR)
        else:
            await self._notify(failure_message, NotificationKind.ERROR)

    def _play_cue(self) -> None:
        try:
            self._audio.play_cue()
        except Exception:
            logger.debug("Audio cue failed", exc_info=True)

    def cancel(self, conversation_id: str) -> bool:
        """Stop the conversation's generation. No-op if none is running."""
        session = self._sessions.get(conversation_id)
        if session is None:
            return False
        return session.cancel()

    # -- Conversation management -----------------------------------------------

    async def new_conversation(self, name: str | None = None) -> Conversation:
        conv = self.store.create(name) if name else self.store.create()
        await self._persist()
        return conv

    def switch_conversation(self, conversation_id: str) -> Conversation:
        return self.store.switch(conversation_id)

    async def rename_conversation(self, conversation_id: str, name: str) -> Conversation:
        conv = self.store.rename(conversation_id, name)
        await self._persist()
        await self._notify("Chat renamed", NotificationKind.SUCCESS)
        return conv

    async def delete_conversation(self, conversation_id: str) -> Conversation:
        try:
            conv = self.store.delete(conversation_id)
        except (LastConversationError, ConversationLockedError) as exc:
            await self._notify(str(exc), NotificationKind.WARNING)
            raise
        await self._persist()
        await self._notify(f'Deleted "{conv.name}"', NotificationKind.SUCCESS)
        return conv

    async def clear_conversation(self, conversation_id: str) -> int:
        try:
            count = self.store.clear(conversation_id)
        except ConversationLockedError as exc:
            await self._notify(str(exc), NotificationKind.WARNING)
            raise
        await self._persist()
        await self._notify("Chat cleared", NotificationKind.SUCCESS)
        return count

    async def delete_message(self, conversation_id: str, message_id: str) -> Message:
        message = self.store.delete_message(conversation_id, message_id)
        await self._persist()
        await self._notify("Message deleted", NotificationKind.SUCCESS)
        return message

    async def set_conversation_model(self, conversation_id: str, model: str) -> Conversation:
        conv = self.store.get(conversation_id)
        conv.model = self._catalog.resolve(model) or model
        conv.touch()
        await self._persist()
        return conv

    async def set_system_prompt(
        self, conversation_id: str, prompt: str | None
    ) -> Conversation:
        """Set a per-conversation system prompt. ``None`` or blank restores the default."""
        conv = self.store.get(conversation_id)
        conv.system_prompt = (prompt or "").strip() or None
        conv.touch()
        await self._persist()
        return conv

    async def update_settings(self, **changes: Any) -> ChatSettings:
        """Validate and save new user settings.

        Raises:
            pydantic.ValidationError: A value is out of range or mistyped.
        """
        merged = {**self.settings.model_dump(), **changes}
        self.settings = ChatSettings.model_validate(merged)
        self.store.default_model = self._default_model()
        try:
            await self._persistence.save_settings(self.settings)
        except Exception:
            logger.exception("Failed to save settings")
            await self._notify("Failed to save settings", NotificationKind.ERROR)
        else:
            await self._notify("Settings saved", NotificationKind.SUCCESS)
        return self.settings

    async def available_models(self) -> list[str]:
        return await self._catalog.refresh()

    # -- Internals -------------------------------------------------------------

    async def _persist(self) -> None:
        try:
            await self._persistence.save_conversations(self.store.list())
        except Exception:
            logger.exception("Failed to save chats")
            await self._notify("Failed to save chats", NotificationKind.ERROR)

    async def _notify(self, message: str, kind: NotificationKind) -> None:
        await self._notifier.notify(message, kind)
