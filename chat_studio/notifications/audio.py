"""Audible cue played when a reply finishes."""

from __future__ import annotations

import contextlib
import sys
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from typing import TextIO


class AudioCue(Protocol):
    def play_cue(self) -> None: ...


class TerminalBell:
    """Rings the terminal bell. Write failures are ignored."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def play_cue(self) -> None:
        stream = self._stream or sys.stdout
        with contextlib.suppress(OSError, ValueError):
            stream.write("\a")
            stream.flush()
