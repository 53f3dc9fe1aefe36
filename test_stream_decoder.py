#!/usr/bin/env python3
"""
Tests for the incremental SSE stream decoder.
"""

import json

import httpx
import pytest

from conftest import sse_line
from search_relay.upstream.exceptions import StreamAbortedError, StreamingError
from search_relay.upstream.streaming import (
    DecoderStatus,
    StreamDecoder,
    encode_event,
)

STREAM_TEXT = (
    sse_line("Hel")
    + "\n"
    + sse_line(reasoning="thinking… ✓")
    + 'data: {"choices":[{"delta":{"role":"assistant"}}]}\n'
    + 'data: {"choices":[{"delta":{"content":"lo wörld ✓"}}]}\n'
    + "data: [DONE]\n"
)


def contents(events):
    return [(e.content, e.reasoning_content) for e in events]


def feed_all(chunks: list[bytes]):
    decoder = StreamDecoder()
    events = []
    for chunk in chunks:
        if decoder.is_closed:
            break
        events.extend(decoder.feed(chunk))
    return decoder, events


async def chunk_source(chunks, log: list | None = None):
    try:
        for chunk in chunks:
            if log is not None:
                log.append(chunk)
            yield chunk
    finally:
        if log is not None:
            log.append("closed")


class TestFeed:
    """Synchronous chunk feeding."""

    def test_two_chunks_then_done(self):
        chunks = [
            b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n',
            b'data: {"choices":[{"delta":{"content":"lo"}}]}\ndata: [DONE]\n',
        ]
        decoder, events = feed_all(chunks)

        assert [e.content for e in events] == ["Hel", "lo"]
        assert decoder.status is DecoderStatus.CLOSED

    def test_malformed_line_is_dropped(self):
        decoder, events = feed_all([
            b'data: {"choices": [{"delta": \n' + sse_line("ok").encode()
        ])

        assert [e.content for e in events] == ["ok"]
        assert decoder.stats.malformed == 1
        assert not decoder.is_closed

    def test_malformed_lines_between_valid_ones_keep_order(self):
        text = (
            sse_line("a")
            + "data: not json\n"
            + sse_line("b")
            + "data: [1, 2]\n"
            + 'data: {"choices": "nope"}\n'
            + sse_line("c")
        )
        decoder, events = feed_all([text.encode()])

        assert [e.content for e in events] == ["a", "b", "c"]
        assert decoder.stats.malformed == 3

    def test_chunking_does_not_change_output(self):
        data = STREAM_TEXT.encode("utf-8")
        _, expected = feed_all([data])
        assert contents(expected) == [
            ("Hel", None),
            (None, "thinking… ✓"),
            ("lo wörld ✓", None),
        ]

        for split in range(1, len(data)):
            _, events = feed_all([data[:split], data[split:]])
            assert contents(events) == contents(expected), f"split at {split}"

        _, events = feed_all([data[i:i + 1] for i in range(len(data))])
        assert contents(events) == contents(expected)

    def test_unterminated_trailing_line_is_not_emitted(self):
        decoder = StreamDecoder()
        events = decoder.feed(sse_line("done").encode() + sse_line("partial").encode()[:-1])

        assert [e.content for e in events] == ["done"]
        assert decoder.state.remainder.startswith("data: ")

        decoder.close()
        assert decoder.stats.discarded_remainder is True
        assert decoder.state.remainder == ""

    def test_partial_line_completed_by_next_chunk(self):
        line = sse_line("joined").encode()
        decoder = StreamDecoder()

        assert decoder.feed(line[:10]) == []
        events = decoder.feed(line[10:])
        assert [e.content for e in events] == ["joined"]

    def test_events_without_content_are_dropped(self):
        text = (
            'data: {"choices":[{"delta":{"role":"assistant","content":""}}]}\n'
            'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n'
            'data: {"choices":[]}\n'
            'data: {"id":"x"}\n'
        )
        decoder, events = feed_all([text.encode()])

        assert events == []
        assert decoder.stats.dropped_empty == 4
        assert decoder.stats.malformed == 0

    def test_reasoning_content_is_emitted(self):
        _, events = feed_all([sse_line(reasoning="step 1").encode()])

        assert events[0].content is None
        assert events[0].reasoning_content == "step 1"

    def test_lines_without_prefix_and_crlf(self):
        text = '{"choices":[{"delta":{"content":"bare"}}]}\r\n' + sse_line("x")
        _, events = feed_all([text.encode()])

        assert [e.content for e in events] == ["bare", "x"]

    def test_lines_after_done_are_ignored(self):
        text = sse_line("before") + "data: [DONE]\n" + sse_line("after")
        decoder, events = feed_all([text.encode()])

        assert [e.content for e in events] == ["before"]
        assert decoder.is_closed

    def test_feed_after_close_raises(self):
        decoder = StreamDecoder()
        decoder.close()

        with pytest.raises(StreamingError):
            decoder.feed(b"data: {}\n")

    def test_event_keeps_full_record(self):
        line = 'data: {"id":"c1","model":"m","choices":[{"index":0,"delta":{"content":"hi"}}]}\n'
        _, events = feed_all([line.encode()])

        assert events[0].record == {
            "id": "c1",
            "model": "m",
            "choices": [{"index": 0, "delta": {"content": "hi"}}],
        }
        assert json.loads(encode_event(events[0])) == events[0].record
        assert encode_event(events[0]).endswith(b"\n")


class TestDecode:
    """Async traversal, closing and error propagation."""

    @pytest.mark.asyncio
    async def test_stops_reading_source_at_done(self):
        log: list = []
        chunks = [sse_line("a").encode(), b"data: [DONE]\n", sse_line("b").encode()]
        decoder = StreamDecoder()

        events = [e async for e in decoder.decode(chunk_source(chunks, log))]

        assert [e.content for e in events] == ["a"]
        assert sse_line("b").encode() not in log
        assert log[-1] == "closed"

    @pytest.mark.asyncio
    async def test_end_of_input_discards_remainder(self):
        chunks = [sse_line("a").encode(), b'data: {"choices":[{"delta":{"content":"z"}}]}']
        decoder = StreamDecoder()

        events = [e async for e in decoder.decode(chunk_source(chunks))]

        assert [e.content for e in events] == ["a"]
        assert decoder.is_closed
        assert decoder.stats.discarded_remainder is True

    @pytest.mark.asyncio
    async def test_consumer_cancellation_closes_upstream(self):
        closed = []

        async def on_close():
            closed.append(True)

        log: list = []
        chunks = [sse_line("a").encode(), sse_line("b").encode(), sse_line("c").encode()]
        decoder = StreamDecoder()
        stream = decoder.decode(chunk_source(chunks, log), on_close=on_close)

        first = await stream.__anext__()
        await stream.aclose()

        assert first.content == "a"
        assert closed == [True]
        assert log[-1] == "closed"
        assert decoder.is_closed

    @pytest.mark.asyncio
    async def test_upstream_error_is_raised_after_prior_events(self):
        async def failing_source():
            yield sse_line("a").encode()
            raise httpx.ReadError("connection reset")

        decoder = StreamDecoder()
        received = []

        with pytest.raises(StreamAbortedError, match="connection reset"):
            async for event in decoder.decode(failing_source()):
                received.append(event.content)

        assert received == ["a"]
        assert decoder.is_closed

    @pytest.mark.asyncio
    async def test_decoder_is_not_restartable(self):
        decoder = StreamDecoder()
        _ = [e async for e in decoder.decode(chunk_source([sse_line("a").encode()]))]

        with pytest.raises(StreamingError):
            async for _event in decoder.decode(chunk_source([])):
                pass

    @pytest.mark.asyncio
    async def test_decode_response_closes_response(self):
        response = httpx.Response(
            200, content=(sse_line("x") + "data: [DONE]\n").encode()
        )
        decoder = StreamDecoder()

        events = [e async for e in decoder.decode_response(response)]

        assert [e.content for e in events] == ["x"]
        assert response.is_closed
