"""Incremental frame decoder for inference-server response bodies.

Local inference servers answer a streaming request in one of two shapes:

- **Concatenated objects**: JSON objects separated by newlines, jammed
  together with no separator at all, or interleaved with plain text.
  Ollama's ``/api/generate`` and ``/api/chat`` produce this.
- **Event stream**: server-sent events whose ``data:`` lines carry the
  payload, terminated by a ``data: [DONE]`` sentinel. OpenAI-compatible
  servers produce this.

The dialect is picked per stream by looking at the first line, never by a
flag. Both dialects share one object scanner, so an event payload holding
several JSON objects decodes the same way a bare body would.

Chunks may split anywhere: inside a multi-byte character, inside a JSON
object, inside ``data:``. Anything that cannot be decided yet is kept in
the buffer and retried when the next chunk arrives. ``flush()`` drains the
buffer at end of stream on a best-effort basis.
"""

from __future__ import annotations

import codecs
import json
import logging
import re
from enum import StrEnum
from typing import TYPE_CHECKING

from chat_studio.stream.frames import EndFrame, Frame, JsonFrame, TextFrame

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

# Field names that open an event-stream line; ":" opens a comment line.
_EVENT_MARKERS = ("data:", "event:", "id:", "retry:", ":")

_LINE_BREAK_RE = re.compile(r"[\r\n]")
_STOP_RE = re.compile(r"[{\r\n]")


class Dialect(StrEnum):
    EVENTS = "events"
    OBJECTS = "objects"


# ---------------------------------------------------------------------------
# Object scanning
# ---------------------------------------------------------------------------


def _match_object(text: str, start: int, stop: int | None = None) -> int | None:
    """Return the index just past the brace that closes ``text[start]``.

    Braces inside JSON strings are ignored. Returns None when the object is
    not closed before *stop* (default: end of text).
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text) if stop is None else stop):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def _parse_object(candidate: str) -> Frame:
    """Parse a carved object, degrading to text when it is not valid JSON."""
    try:
        data = json.loads(candidate)
    except ValueError:
        logger.debug("Malformed frame kept as text: %.80r", candidate)
        return TextFrame(candidate)
    if not isinstance(data, dict):
        return TextFrame(candidate)
    return JsonFrame(data)


def split_payload(payload: str) -> list[Frame]:
    """Split a complete payload into object and text frames.

    A payload without any ``{`` is returned as a single text frame, verbatim.
    Otherwise objects are carved out and whitespace-only gaps between them
    are dropped.
    """
    if "{" not in payload:
        return [TextFrame(payload)] if payload else []

    frames: list[Frame] = []
    pos = 0
    while pos < len(payload):
        start = payload.find("{", pos)
        end = _match_object(payload, start) if start != -1 else None
        if end is None:
            gap = payload[pos:]
            if gap.strip():
                frames.append(TextFrame(gap))
            break
        gap = payload[pos:start]
        if gap.strip():
            frames.append(TextFrame(gap))
        frames.append(_parse_object(payload[start:end]))
        pos = end
    return frames


def _detect(buffer: str, *, final: bool) -> Dialect | None:
    """Decide the dialect from the first non-blank line, or None to wait."""
    stripped = buffer.lstrip()
    if not stripped:
        return Dialect.OBJECTS if final else None

    first_line = _LINE_BREAK_RE.split(stripped, maxsplit=1)[0]
    if first_line.startswith(_EVENT_MARKERS):
        return Dialect.EVENTS

    line_complete = final or _LINE_BREAK_RE.search(stripped) is not None
    if not line_complete and any(m.startswith(first_line) for m in _EVENT_MARKERS):
        # Could still turn into "data:" once more bytes arrive.
        return None
    return Dialect.OBJECTS


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------


class FrameDecoder:
    """Turns arbitrarily chunked response bytes into frames.

    One decoder per response body. ``feed()`` returns the frames completed
    by the new chunk; ``flush()`` returns whatever the buffer still holds.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._dialect: Dialect | None = None
        # Objects dialect: whether the current line segment already emitted text.
        self._segment_has_text = False

    @property
    def dialect(self) -> Dialect | None:
        return self._dialect

    def feed(self, chunk: bytes | str) -> list[Frame]:
        text = chunk if isinstance(chunk, str) else self._utf8.decode(chunk)
        return self._consume(text, final=False)

    def flush(self) -> list[Frame]:
        return self._consume(self._utf8.decode(b"", final=True), final=True)

    def _consume(self, text: str, *, final: bool) -> list[Frame]:
        self._buffer += text
        if self._dialect is None:
            self._dialect = _detect(self._buffer, final=final)
            if self._dialect is None:
                return []
            logger.debug("Detected %s dialect", self._dialect)
        if self._dialect is Dialect.EVENTS:
            return self._drain_events(final=final)
        return self._drain_objects(final=final)

    # -- Event stream ----------------------------------------------------------

    def _drain_events(self, *, final: bool) -> list[Frame]:
        buf = self._buffer
        # A lone trailing \r may be the first half of \r\n.
        tail = ""
        if not final and buf.endswith("\r"):
            buf, tail = buf[:-1], "\r"
        buf = buf.replace("\r\n", "\n").replace("\r", "\n")

        frames: list[Frame] = []
        while (boundary := buf.find("\n\n")) != -1:
            frames.extend(self._event_frames(buf[:boundary]))
            buf = buf[boundary + 2 :]
        if final:
            frames.extend(self._event_frames(buf))
            buf = ""
        self._buffer = buf + tail
        return frames

    @staticmethod
    def _event_frames(raw_event: str) -> list[Frame]:
        data_lines: list[str] = []
        for line in raw_event.split("\n"):
            if not line.startswith("data:"):
                continue
            value = line[len("data:") :]
            if value.startswith(" "):
                value = value[1:]
            data_lines.append(value)
        if not data_lines:
            return []
        payload = "\n".join(data_lines)
        if payload.strip() == DONE_SENTINEL:
            return [EndFrame()]
        return split_payload(payload)

    # -- Concatenated objects --------------------------------------------------

    def _drain_objects(self, *, final: bool) -> list[Frame]:
        buf = self._buffer
        frames: list[Frame] = []
        pos = 0
        while pos < len(buf):
            ch = buf[pos]
            if ch in "\r\n":
                self._segment_has_text = False
                pos += 1
                continue

            if ch == "{":
                # Objects never span lines: an open brace is text up to the line break.
                line_break = _LINE_BREAK_RE.search(buf, pos)
                line_end = line_break.start() if line_break else len(buf)
                end = _match_object(buf, pos, line_end)
                if end is None:
                    if line_break is None and not final:
                        break
                    frames.append(_parse_object(buf[pos:line_end]))
                    self._segment_has_text = True
                    pos = line_end
                    continue
                frames.append(_parse_object(buf[pos:end]))
                self._segment_has_text = False
                pos = end
                continue

            match = _STOP_RE.search(buf, pos)
            stop = match.start() if match else len(buf)
            run = buf[pos:stop]
            if run.strip() or self._segment_has_text:
                frames.append(TextFrame(run))
                self._segment_has_text = True
            elif stop == len(buf) and not final:
                # Whitespace only so far: dropped if an object or newline follows.
                break
            pos = stop

        self._buffer = buf[pos:]
        return frames


async def decode_stream(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[Frame]:
    """Lazily decode an async byte stream into frames, flushing at the end."""
    decoder = FrameDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
    for frame in decoder.flush():
        yield frame
