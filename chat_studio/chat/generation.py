"""GenerationSession: one streaming reply into one conversation.

State flow::

    IDLE -> REQUESTING -> STREAMING -> COMPLETED | CANCELLED | FAILED

The network read loop runs in its own task so ``cancel()`` can abort a read
that is blocked on a silent server. Cancellation is a terminal state, not an
exception: ``run()`` returns ``CANCELLED`` and whatever text arrived so far
stays in the reply.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from chat_studio.chat.errors import NetworkError, StreamInterruptedError
from chat_studio.chat.models import Message
from chat_studio.stream import FrameDecoder, extract_delta

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chat_studio.chat.models import Conversation
    from chat_studio.llm.client import OllamaClient
    from chat_studio.stream import Frame

    DeltaCallback = Callable[[Message, str], Awaitable[None]]

logger = logging.getLogger(__name__)

ERROR_REPLY = "Sorry, there was an error processing your request. Please try again."


class SessionState(StrEnum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class GenerationSession:
    """Streams one assistant reply into *conversation*.

    The caller owns the conversation lock (``ConversationStore.begin_generation``)
    and releases it once ``run()`` returns.

    Args:
        conversation: Conversation the reply is written into.
        client: Opens the streaming request.
        payload: Request body built by ``chat_studio.llm.prompt.build_payload``.
        on_delta: Awaited after every non-empty delta with the reply message
            and the delta text. Exceptions it raises are logged and ignored.
        insert_at: Position of the reply. Defaults to the end.
        synthesize_error: Append an error reply when the request fails before
            any reply message exists.
    """

    def __init__(
        self,
        conversation: Conversation,
        client: OllamaClient,
        payload: dict[str, Any],
        *,
        on_delta: DeltaCallback | None = None,
        insert_at: int | None = None,
        synthesize_error: bool = True,
    ) -> None:
        self.conversation = conversation
        self._client = client
        self._payload = payload
        self._on_delta = on_delta
        self._insert_at = insert_at
        self._synthesize_error = synthesize_error

        self.state = SessionState.IDLE
        self.reply: Message | None = None
        self.error: Exception | None = None
        self._task: asyncio.Task[None] | None = None
        self._cancel_requested = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> bool:
        """Abort the in-flight request. No-op unless the session is running."""
        if not self.active:
            return False
        self._cancel_requested = True
        self._task.cancel()
        logger.info("Cancelling generation in %s", self.conversation.id)
        return True

    async def run(self) -> SessionState:
        """Drive the session to a terminal state and return it."""
        if self.state is not SessionState.IDLE:
            msg = f"Session already {self.state}"
            raise RuntimeError(msg)

        self.state = SessionState.REQUESTING
        self._task = asyncio.create_task(self._stream())
        try:
            await asyncio.wait({self._task})
        except asyncio.CancelledError:
            # The caller itself was cancelled: stop the stream and propagate.
            self._task.cancel()
            self.state = SessionState.CANCELLED
            raise

        if self._task.cancelled():
            self.state = SessionState.CANCELLED
        elif (exc := self._task.exception()) is not None:
            self._fail(exc)
            if not isinstance(exc, NetworkError):
                raise exc
        else:
            self.state = SessionState.COMPLETED

        self.conversation.touch()
        logger.info(
            "Generation in %s finished: %s (%d chars)",
            self.conversation.id,
            self.state,
            len(self.reply.content) if self.reply else 0,
        )
        return self.state

    # -- Internals -------------------------------------------------------------

    async def _stream(self) -> None:
        async with self._client.open_stream(self._payload) as body:
            self.reply = Message(role="assistant")
            self.conversation.add_message(self.reply, self._insert_at)
            self.conversation.generation_target = self.reply.id
            self.state = SessionState.STREAMING

            decoder = FrameDecoder()
            async for chunk in body:
                for frame in decoder.feed(chunk):
                    if await self._apply(frame):
                        return
            for frame in decoder.flush():
                if await self._apply(frame):
                    return

    async def _apply(self, frame: Frame) -> bool:
        """Append one frame's text. Returns True once the reply is final."""
        if self._cancel_requested:
            raise asyncio.CancelledError
        delta = extract_delta(frame)
        if delta.text:
            self.reply.append(delta.text)
            await self._emit(delta.text)
        return delta.is_final

    async def _emit(self, text: str) -> None:
        if self._on_delta is None:
            return
        try:
            await self._on_delta(self.reply, text)
        except Exception:
            logger.exception("Delta callback failed")

    def _fail(self, exc: BaseException) -> None:
        self.state = SessionState.FAILED
        if self.reply is not None and self.reply.content:
            self.error = StreamInterruptedError(str(exc))
            self.error.__cause__ = exc
            logger.warning(
                "Stream in %s interrupted after %d chars: %s",
                self.conversation.id,
                len(self.reply.content),
                exc,
            )
            return

        self.error = exc if isinstance(exc, Exception) else NetworkError(str(exc))
        logger.warning("Generation in %s failed: %s", self.conversation.id, exc)
        if self.reply is not None:
            self.reply.content = ERROR_REPLY
            self.reply.is_error = True
        elif self._synthesize_error:
            self.conversation.add_message(
                Message(role="assistant", content=ERROR_REPLY, is_error=True),
                self._insert_at,
            )
