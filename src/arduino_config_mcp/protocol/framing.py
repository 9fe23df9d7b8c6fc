"""Line framing for the JSON serial protocol.

Wire layout::

    {"cmd":"PING","params":{}}\\n
    {"response":"PONG","success":true}\\n

- One UTF-8 JSON object per line, terminated by ``\\n``
- ``\\r\\n`` endings and stray whitespace are tolerated
- Blank lines carry nothing and are dropped

Reads from the serial port can end anywhere, including inside a
multi-byte character, so lines are split as bytes and decoded whole.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

LINE_TERMINATOR = b"\n"
ENCODING = "utf-8"

# Longest line the reader accepts; anything bigger is garbage or a runaway
MAX_FRAME_BYTES = 4096


class LineFramer:
    """Accumulates raw bytes and yields complete text frames.

    Usage::

        framer = LineFramer()
        for frame in framer.feed(chunk):
            handle(frame)

    The trailing partial line is kept until a later ``feed`` completes it.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of bytes held for an incomplete line."""
        return len(self._buffer)

    def reset(self) -> None:
        """Forget any partial line."""
        self._buffer.clear()

    def feed(self, data: bytes) -> Iterator[str]:
        """Add bytes and return a lazy iterator over completed frames.

        The bytes are buffered immediately, even if the iterator is
        never consumed.
        """
        self._buffer.extend(data)
        return self._drain()

    def _drain(self) -> Iterator[str]:
        while True:
            index = self._buffer.find(LINE_TERMINATOR)
            if index < 0:
                return
            line = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            text = line.decode(ENCODING, errors="replace").strip()
            if text:
                yield text


def split_frames(data: bytes) -> list[str]:
    """Frame a complete buffer in one go (trailing partial line ignored)."""
    return list(LineFramer().feed(data))


def encode_frame(message: dict[str, Any]) -> bytes:
    """Serialize one message as a newline-terminated UTF-8 JSON line.

    ``json.dumps`` escapes control characters, so the encoded object can
    never contain a raw newline.
    """
    return json.dumps(message, separators=(",", ":")).encode(ENCODING) + LINE_TERMINATOR


def decode_frame(frame: str) -> dict[str, Any] | None:
    """Decode a frame into a JSON object.

    Returns:
        The object, or ``None`` if the frame is not valid JSON or not an
        object.
    """
    try:
        message = json.loads(frame)
    except ValueError:
        return None
    if not isinstance(message, dict):
        return None
    return message
