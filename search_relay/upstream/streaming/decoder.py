"""
Incremental SSE decoder for chat-completion streams.

Turns raw byte chunks into StreamEvents. Chunk boundaries may fall anywhere,
including inside a line or inside a multi-byte character; only complete
lines are ever parsed.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from ..exceptions import MalformedRecordError, StreamAbortedError, StreamingError
from .models import (
    ChatCompletionChunk,
    DecoderState,
    DecoderStats,
    DecoderStatus,
    StreamEvent,
)

logger = structlog.get_logger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "data: [DONE]"
DONE_PAYLOAD = "[DONE]"


class StreamDecoder:
    """
    Single-use decoder bound to one stream traversal.

    ``feed`` handles one chunk synchronously and returns the events it
    completed; ``decode`` drives an async byte source through ``feed`` and
    owns closing that source.
    """

    def __init__(
        self,
        *,
        prefix: str = DATA_PREFIX,
        sentinel: str = DONE_SENTINEL,
        encoding: str = "utf-8",
    ):
        self.prefix = prefix
        self.sentinel = sentinel
        self.status = DecoderStatus.OPEN
        self.state = DecoderState()
        self.stats = DecoderStats()
        self._text_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._started = False

    @property
    def is_closed(self) -> bool:
        return self.status is DecoderStatus.CLOSED

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Consume one chunk and return the events of its completed lines."""
        if self.is_closed:
            raise StreamingError("Decoder is closed; use a new decoder per stream")

        self.stats.chunks += 1
        text = self.state.remainder + self._text_decoder.decode(chunk)
        *lines, self.state.remainder = text.split("\n")

        events: list[StreamEvent] = []
        for line in lines:
            event = self._process_line(line)
            if self.is_closed:
                break
            if event is not None:
                events.append(event)
        self.stats.events += len(events)
        return events

    def close(self) -> None:
        """Move to CLOSED, discarding any partial line."""
        if self.is_closed:
            return
        tail = self.state.remainder + self._text_decoder.decode(b"", final=True)
        if tail.strip():
            self.stats.discarded_remainder = True
            logger.debug("Discarding unterminated trailing line", length=len(tail))
        self.state.clear()
        self.status = DecoderStatus.CLOSED

    async def decode(
        self,
        chunks: AsyncIterable[bytes],
        *,
        on_close: Callable[[], Awaitable[Any]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield events from ``chunks`` until the sentinel or end of input.

        ``on_close`` runs when the traversal ends for any reason, including
        the consumer closing this generator early.

        Raises:
            StreamAbortedError: the byte source failed mid-stream
        """
        if self._started:
            raise StreamingError("Decoder is not restartable; create a new one")
        self._started = True

        try:
            async for chunk in chunks:
                for event in self.feed(chunk):
                    yield event
                if self.is_closed:
                    return
        except (httpx.StreamError, httpx.RequestError, OSError) as e:
            self.stats.errors.append(str(e))
            logger.error("Upstream stream failed", error_type=type(e).__name__, error=str(e))
            raise StreamAbortedError(f"Stream aborted: {e!s}") from e
        finally:
            self.close()
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
            if on_close is not None:
                await on_close()

    def decode_response(self, response: httpx.Response) -> AsyncIterator[StreamEvent]:
        """Decode an open streaming response and close it when done."""
        return self.decode(response.aiter_bytes(), on_close=response.aclose)

    def _process_line(self, raw_line: str) -> StreamEvent | None:
        line = raw_line.strip()
        if not line:
            return None
        self.stats.lines += 1

        if line == self.sentinel:
            self.close()
            return None

        payload = line[len(self.prefix):] if line.startswith(self.prefix) else line
        if payload.strip() == DONE_PAYLOAD:
            self.close()
            return None

        try:
            record, chunk = self.parse_record(payload)
        except MalformedRecordError as e:
            self.stats.malformed += 1
            logger.warning("Dropping malformed stream line", error=e.message, line=line[:200])
            return None

        event = StreamEvent.from_chunk(chunk, record)
        if event is None:
            self.stats.dropped_empty += 1
        return event

    @staticmethod
    def parse_record(payload: str) -> tuple[dict[str, Any], ChatCompletionChunk]:
        """Parse one payload into its raw dict and validated schema."""
        try:
            record = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MalformedRecordError(f"JSON decode error: {e}", line=payload) from e
        if not isinstance(record, dict):
            raise MalformedRecordError(
                f"Expected JSON object, got {type(record).__name__}", line=payload
            )
        try:
            return record, ChatCompletionChunk.model_validate(record)
        except ValidationError as e:
            raise MalformedRecordError(
                f"Unexpected record shape: {e.error_count()} errors", line=payload
            ) from e


def encode_event(event: StreamEvent) -> bytes:
    """Serialise an event for the downstream NDJSON stream."""
    return (json.dumps(event.record, ensure_ascii=False) + "\n").encode("utf-8")


async def encode_events(events: AsyncIterable[StreamEvent]) -> AsyncIterator[bytes]:
    async for event in events:
        yield encode_event(event)
