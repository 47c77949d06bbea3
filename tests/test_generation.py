"""Tests for the GenerationSession state machine."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeClient

from chat_studio.chat.errors import NetworkError, StreamInterruptedError
from chat_studio.chat.generation import ERROR_REPLY, GenerationSession, SessionState
from chat_studio.chat.models import Conversation, Message

PAYLOAD = {"model": "llama3", "prompt": "USER:\nhi", "stream": True}


@pytest.fixture
def conversation() -> Conversation:
    return Conversation(messages=[Message(role="user", content="hi")])


async def test_concatenated_objects_complete(conversation: Conversation) -> None:
    client = FakeClient([b'{"response":"Hel"}{"response":"lo"}{"done":true}'])
    session = GenerationSession(conversation, client, PAYLOAD)

    state = await session.run()

    assert state is SessionState.COMPLETED
    assert session.reply.content == "Hello"
    assert conversation.messages[-1] is session.reply
    assert client.payloads == [PAYLOAD]


async def test_event_stream_stops_at_sentinel(conversation: Conversation) -> None:
    # hang=True: the transport never closes on its own
    client = FakeClient(
        [b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\ndata: [DONE]\n\n'],
        hang=True,
    )
    session = GenerationSession(conversation, client, PAYLOAD)

    state = await asyncio.wait_for(session.run(), timeout=2)

    assert state is SessionState.COMPLETED
    assert session.reply.content == "Hi"
    assert client.closed


async def test_done_flag_stops_without_transport_close(conversation: Conversation) -> None:
    client = FakeClient([b'{"response":"ok"}\n', b'{"done":true}\n'], hang=True)
    session = GenerationSession(conversation, client, PAYLOAD)
    assert await asyncio.wait_for(session.run(), timeout=2) is SessionState.COMPLETED
    assert session.reply.content == "ok"


async def test_stray_brace_does_not_hide_done_flag(conversation: Conversation) -> None:
    client = FakeClient(
        [b'{"response":"a"}\n', b"thinking {\n", b'{"response":"b","done":true}\n'],
        hang=True,
    )
    session = GenerationSession(conversation, client, PAYLOAD)
    assert await asyncio.wait_for(session.run(), timeout=2) is SessionState.COMPLETED
    assert session.reply.content == "athinking {b"


async def test_transport_close_completes(conversation: Conversation) -> None:
    client = FakeClient([b'{"response":"no done flag"}'])
    session = GenerationSession(conversation, client, PAYLOAD)
    assert await session.run() is SessionState.COMPLETED
    assert session.reply.content == "no done flag"


async def test_placeholder_exists_before_first_delta(conversation: Conversation) -> None:
    seen: list[int] = []

    async def on_delta(message: Message, text: str) -> None:
        seen.append(len(conversation.messages))

    client = FakeClient([b'{"response":"a"}', b'{"response":"b"}'])
    session = GenerationSession(conversation, client, PAYLOAD, on_delta=on_delta)
    await session.run()
    assert seen == [2, 2]
    assert conversation.generation_target == session.reply.id


async def test_deltas_reported_in_order(conversation: Conversation) -> None:
    deltas: list[str] = []

    async def on_delta(message: Message, text: str) -> None:
        deltas.append(text)

    client = FakeClient([b'{"response":"one "}{"response":""}', b'{"response":"two"}'])
    await GenerationSession(conversation, client, PAYLOAD, on_delta=on_delta).run()
    assert deltas == ["one ", "two"]


async def test_callback_errors_do_not_abort_stream(conversation: Conversation) -> None:
    async def on_delta(message: Message, text: str) -> None:
        msg = "render failed"
        raise RuntimeError(msg)

    client = FakeClient([b'{"response":"a"}{"response":"b"}{"done":true}'])
    session = GenerationSession(conversation, client, PAYLOAD, on_delta=on_delta)
    assert await session.run() is SessionState.COMPLETED
    assert session.reply.content == "ab"


async def test_insert_at_position() -> None:
    conv = Conversation(
        messages=[Message(role="user", content="q1"), Message(role="user", content="q2")]
    )
    session = GenerationSession(conv, FakeClient([b'{"response":"a1"}']), PAYLOAD, insert_at=1)
    await session.run()
    assert [m.content for m in conv.messages] == ["q1", "a1", "q2"]


# -- Cancellation ------------------------------------------------------------


async def test_cancel_mid_stream_keeps_partial_content(conversation: Conversation) -> None:
    chunks = [f'{{"response":"d{i} "}}'.encode() for i in range(5)]
    session: GenerationSession | None = None
    count = 0

    async def on_delta(message: Message, text: str) -> None:
        nonlocal count
        count += 1
        if count == 2:
            session.cancel()

    session = GenerationSession(conversation, FakeClient(chunks), PAYLOAD, on_delta=on_delta)
    state = await session.run()

    assert state is SessionState.CANCELLED
    assert session.reply.content == "d0 d1 "
    assert not any(m.is_error for m in conversation.messages)


async def test_cancel_while_server_silent(conversation: Conversation) -> None:
    client = FakeClient([b'{"response":"partial"}'], hang=True)
    session = GenerationSession(conversation, client, PAYLOAD)
    task = asyncio.create_task(session.run())
    while session.reply is None or not session.reply.content:
        await asyncio.sleep(0)

    assert session.cancel() is True
    assert await task is SessionState.CANCELLED
    assert session.reply.content == "partial"


async def test_cancel_before_run_is_noop(conversation: Conversation) -> None:
    session = GenerationSession(conversation, FakeClient(), PAYLOAD)
    assert session.cancel() is False
    assert session.state is SessionState.IDLE
    assert conversation.messages[-1].role == "user"


async def test_cancel_after_completion_is_noop(conversation: Conversation) -> None:
    session = GenerationSession(conversation, FakeClient([b'{"response":"x"}']), PAYLOAD)
    await session.run()
    assert session.cancel() is False
    assert session.state is SessionState.COMPLETED


async def test_run_twice_rejected(conversation: Conversation) -> None:
    session = GenerationSession(conversation, FakeClient(), PAYLOAD)
    await session.run()
    with pytest.raises(RuntimeError):
        await session.run()


# -- Failures ----------------------------------------------------------------


async def test_network_error_appends_error_message(conversation: Conversation) -> None:
    client = FakeClient(error=NetworkError("HTTP 500: Internal Server Error", status_code=500))
    session = GenerationSession(conversation, client, PAYLOAD)

    state = await session.run()

    assert state is SessionState.FAILED
    assert session.reply is None
    assert isinstance(session.error, NetworkError)
    assert session.error.status_code == 500
    last = conversation.messages[-1]
    assert last.role == "assistant"
    assert last.is_error
    assert last.content == ERROR_REPLY


async def test_network_error_without_synthetic_message(conversation: Conversation) -> None:
    client = FakeClient(error=NetworkError("refused"))
    session = GenerationSession(conversation, client, PAYLOAD, synthesize_error=False)
    assert await session.run() is SessionState.FAILED
    assert len(conversation.messages) == 1


async def test_interrupted_stream_preserves_partial_content(conversation: Conversation) -> None:
    client = FakeClient(
        [b'{"response":"par"}', b'{"response":"tial"}'],
        error=NetworkError("connection reset"),
        error_after=1,
    )
    session = GenerationSession(conversation, client, PAYLOAD)

    assert await session.run() is SessionState.FAILED
    assert isinstance(session.error, StreamInterruptedError)
    assert isinstance(session.error.__cause__, NetworkError)
    assert session.reply.content == "par"
    assert not session.reply.is_error
    assert len(conversation.messages) == 2


async def test_error_before_any_content_marks_placeholder(conversation: Conversation) -> None:
    client = FakeClient([], error=NetworkError("reset"), error_after=0)
    session = GenerationSession(conversation, client, PAYLOAD)

    assert await session.run() is SessionState.FAILED
    assert session.reply.is_error
    assert session.reply.content == ERROR_REPLY
    assert len(conversation.messages) == 2
