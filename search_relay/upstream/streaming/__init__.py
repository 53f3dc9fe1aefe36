"""
Streaming support for upstream chat completions.

This package contains:
- Incremental SSE line decoding
- Chunk record schemas
- NDJSON re-encoding for downstream clients
"""

from .decoder import StreamDecoder, encode_event, encode_events
from .models import ChatCompletionChunk, DecoderStatus, StreamEvent

__all__ = [
    "ChatCompletionChunk",
    "DecoderStatus",
    "StreamDecoder",
    "StreamEvent",
    "encode_event",
    "encode_events",
]
