"""Frame types produced by the stream decoder.

A frame is one logical unit carved out of the raw response body. Both wire
dialects decode into the same three variants, so downstream code never
needs to know which dialect the server spoke.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class JsonFrame:
    """A complete JSON object."""

    data: dict[str, Any]


@dataclass(frozen=True)
class TextFrame:
    """A plain-text fragment, emitted verbatim."""

    text: str


@dataclass(frozen=True)
class EndFrame:
    """The event-stream ``[DONE]`` sentinel."""


Frame = JsonFrame | TextFrame | EndFrame
