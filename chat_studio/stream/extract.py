"""Pull the text delta and completion flag out of a decoded frame."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chat_studio.stream.frames import EndFrame, Frame, JsonFrame, TextFrame


@dataclass(frozen=True)
class Delta:
    """Text to append plus whether the server said generation is finished."""

    text: str = ""
    is_final: bool = False


def _first_choice(data: dict[str, Any]) -> dict[str, Any] | None:
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return None


def _text_from_object(data: dict[str, Any]) -> str:
    """Return the first textual field found, in fixed priority order."""
    response = data.get("response")
    if isinstance(response, str) and response:
        return response

    text = data.get("text")
    if isinstance(text, str) and text:
        return text

    output = data.get("output")
    if isinstance(output, str) and output:
        return output
    if isinstance(output, dict) and isinstance(output.get("tokens"), list):
        return "".join(str(t) for t in output["tokens"])

    # OpenAI-compatible servers
    choice = _first_choice(data)
    if choice is not None:
        delta = choice.get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
        if isinstance(choice.get("text"), str):
            return choice["text"]

    # Ollama /api/chat
    message = data.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]

    return ""


def extract_delta(frame: Frame) -> Delta:
    """Map any frame to a Delta. Never raises."""
    if isinstance(frame, EndFrame):
        return Delta(is_final=True)
    if isinstance(frame, TextFrame):
        return Delta(text=frame.text)
    if isinstance(frame, JsonFrame):
        data = frame.data
        is_final = data.get("done") is True or data.get("completed") is True
        return Delta(text=_text_from_object(data), is_final=is_final)
    return Delta()
