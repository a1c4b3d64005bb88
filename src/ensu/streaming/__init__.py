"""Wire-level streaming primitives: frame decoding and cooperative cancellation."""

from .cancellation import CancellationToken
from .decoder import DONE_SENTINEL, EVENT_PREFIX, ChunkDecoder, Frame, Framing

__all__ = [
    "CancellationToken",
    "ChunkDecoder",
    "DONE_SENTINEL",
    "EVENT_PREFIX",
    "Frame",
    "Framing",
]
