"""Exceptions raised by the conversation store and generation pipeline.

Frame-level decoding problems never appear here: malformed frames degrade
to plain text and are only logged.
"""


class ChatStudioError(Exception):
    """Base class for every error surfaced to callers."""


class ConversationNotFoundError(ChatStudioError):
    pass


class MessageNotFoundError(ChatStudioError):
    pass


class InvalidMessageError(ChatStudioError):
    """The message exists but cannot be used for the requested operation."""


class ConversationLockedError(ChatStudioError):
    """A destructive operation was attempted while a generation is running."""


class ConcurrentGenerationError(ConversationLockedError):
    """A second generation was requested for a conversation that has one."""


class LastConversationError(ChatStudioError):
    """The only remaining conversation cannot be deleted."""


class NoSourceMessageError(ChatStudioError):
    """Regenerate found no user message before the assistant message."""


class NetworkError(ChatStudioError):
    """Non-2xx status or transport failure talking to the inference server."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamInterruptedError(ChatStudioError):
    """The stream failed after partial content had been appended."""
