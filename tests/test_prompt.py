"""Tests for outbound payload construction."""

import pytest

from chat_studio.chat.models import Message
from chat_studio.llm.prompt import (
    ApiMode,
    build_payload,
    format_messages,
    format_prompt,
    select_window,
)


def _history(n: int) -> list[Message]:
    roles = ("user", "assistant")
    return [Message(role=roles[i % 2], content=f"m{i}") for i in range(n)]


class TestSelectWindow:
    @pytest.mark.parametrize("n", [1, 2, 7, 50])
    def test_zero_keeps_only_latest(self, n: int) -> None:
        history = _history(n)
        assert select_window(history, 0) == [history[-1]]

    def test_last_three_of_ten(self) -> None:
        history = _history(10)
        assert [m.content for m in select_window(history, 3)] == ["m7", "m8", "m9"]

    def test_all_sentinel(self) -> None:
        history = _history(30)
        assert select_window(history, -1) == history

    def test_window_larger_than_history(self) -> None:
        history = _history(2)
        assert select_window(history, 20) == history

    def test_empty_history(self) -> None:
        assert select_window([], 0) == []


def test_format_prompt_with_system() -> None:
    messages = [Message(role="user", content="Hi"), Message(role="assistant", content="Hello")]
    assert format_prompt(messages, "Be brief.") == (
        "SYSTEM:\nBe brief.\n\nUSER:\nHi\n\nASSISTANT:\nHello"
    )


def test_format_prompt_without_system() -> None:
    assert format_prompt([Message(role="user", content="Hi")]) == "USER:\nHi"


def test_format_messages_system_first() -> None:
    result = format_messages([Message(role="user", content="Hi")], "sys")
    assert result == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "Hi"},
    ]


def test_generate_payload_window_zero() -> None:
    payload = build_payload(_history(9), model="llama3", memory_window=0)
    assert payload == {"model": "llama3", "prompt": "USER:\nm8", "stream": True}


def test_chat_payload_last_three() -> None:
    payload = build_payload(
        _history(10), model="llama3", memory_window=3, mode=ApiMode.CHAT, system_prompt="S"
    )
    assert payload["messages"] == [
        {"role": "system", "content": "S"},
        {"role": "assistant", "content": "m7"},
        {"role": "user", "content": "m8"},
        {"role": "assistant", "content": "m9"},
    ]


def test_empty_system_prompt_omitted() -> None:
    payload = build_payload(_history(1), model="m", system_prompt="", mode="openai")
    assert payload["messages"] == [{"role": "user", "content": "m0"}]


def test_stream_flag_passed_through() -> None:
    assert build_payload(_history(1), model="m", stream=False)["stream"] is False


def test_unknown_mode_rejected() -> None:
    with pytest.raises(ValueError):
        build_payload(_history(1), model="m", mode="bogus")
