"""Response stream decoding: raw bytes → frames → text deltas."""

from chat_studio.stream.decoder import FrameDecoder, decode_stream
from chat_studio.stream.extract import Delta, extract_delta
from chat_studio.stream.frames import EndFrame, Frame, JsonFrame, TextFrame

__all__ = [
    "Delta",
    "EndFrame",
    "Frame",
    "FrameDecoder",
    "JsonFrame",
    "TextFrame",
    "decode_stream",
    "extract_delta",
]
