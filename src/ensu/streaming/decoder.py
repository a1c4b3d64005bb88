"""Incremental decoding of streamed HTTP bodies into JSON frames.

This module hides the design decision of how a streaming response body is
framed on the wire. Two framings are supported:

- ``Framing.EVENT_STREAM``: server-sent events, where each payload line is
  ``data: <json>`` and the literal ``data: [DONE]`` ends the stream.
  Other lines (``event:``, ``id:``, comments, blanks) are ignored.
- ``Framing.NDJSON``: every non-blank line is a complete JSON object.

The decoder is fed raw bytes in whatever pieces the transport delivers.
A line only becomes a frame once its terminating newline has arrived; the
unterminated tail is kept and prefixed to the next feed. Malformed lines
are dropped without raising.
"""

import codecs
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

EVENT_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class Framing(str, Enum):
    """Wire framing of a streamed response body."""

    EVENT_STREAM = "event_stream"
    NDJSON = "ndjson"


@dataclass(frozen=True)
class Frame:
    """One decoded unit of the wire protocol.

    A frame is either a JSON payload or the end-of-stream sentinel, never
    both. ``Frame.done()`` is the only way to build the sentinel frame, so
    an empty JSON object (``{}``) stays an ordinary payload.
    """

    payload: dict[str, Any] | None = None
    terminal: bool = False

    @classmethod
    def done(cls) -> "Frame":
        return cls(payload=None, terminal=True)


class ChunkDecoder:
    """Stateful line decoder for streamed response bodies.

    Usage:
        decoder = ChunkDecoder(Framing.EVENT_STREAM)
        async for data in response.aiter_bytes():
            for frame in decoder.feed(data):
                ...
        for frame in decoder.flush():
            ...
    """

    def __init__(self, framing: Framing = Framing.EVENT_STREAM, encoding: str = "utf-8"):
        self._framing = Framing(framing)
        # Incremental decoding keeps multi-byte characters split across reads intact
        self._text_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._tail = ""

    @property
    def framing(self) -> Framing:
        return self._framing

    @property
    def pending(self) -> str:
        """The retained, not yet newline-terminated fragment."""
        return self._tail

    def feed(self, data: bytes | str) -> list[Frame]:
        """Consume the next piece of the stream.

        Args:
            data: Raw bytes (or already decoded text) from the transport

        Returns:
            Frames completed by this piece, in stream order
        """
        text = data if isinstance(data, str) else self._text_decoder.decode(data)
        buffer = self._tail + text
        lines = buffer.split("\n")
        self._tail = lines.pop()

        frames = []
        for line in lines:
            frame = self._parse_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> list[Frame]:
        """Parse whatever remains once the transport has closed."""
        remainder = self._tail + self._text_decoder.decode(b"", final=True)
        self._tail = ""
        frame = self._parse_line(remainder)
        return [frame] if frame is not None else []

    def _parse_line(self, line: str) -> Frame | None:
        line = line.rstrip("\r")

        if self._framing is Framing.EVENT_STREAM:
            if not line.startswith(EVENT_PREFIX):
                return None
            data = line[len(EVENT_PREFIX):].strip()
            if data == DONE_SENTINEL:
                return Frame.done()
        else:
            data = line.strip()

        if not data:
            return None

        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Dropping malformed stream line: %.120s", data)
            return None

        if not isinstance(payload, dict):
            logger.debug("Dropping non-object stream payload: %.120s", data)
            return None

        return Frame(payload=payload)
