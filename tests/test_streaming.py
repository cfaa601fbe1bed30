# tests/test_streaming.py
"""
Tests for StreamAggregator: fragment repair, accumulation and termination.
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from convocore.exceptions import ConvoCoreError, TransportFailure
from convocore.models import StreamUpdate, TokenUsage
from convocore.streaming import StreamAggregator, StreamState


def fragment(text: str, finish: str = None, usage: dict = None, leading_comma: bool = True, **extra) -> bytes:
    candidate = {"content": {"parts": [{"text": text}], "role": "model"}, "index": 0}
    if finish:
        candidate["finishReason"] = finish
    body = {"candidates": [candidate], **extra}
    if usage is not None:
        body["usageMetadata"] = usage
    prefix = ",\r\n" if leading_comma else "["
    return (prefix + json.dumps(body)).encode("utf-8")


HELLO_WORLD = [
    fragment("Hel", usage={"promptTokenCount": 4}, leading_comma=False),
    fragment("lo ", usage={"promptTokenCount": 4, "candidatesTokenCount": 2}),
    fragment(
        "world",
        finish="STOP",
        usage={"promptTokenCount": 4, "candidatesTokenCount": 3, "totalTokenCount": 7},
        modelVersion="gemini-2.0-flash",
    ),
    b"]",
]


async def byte_stream(chunks):
    for chunk in chunks:
        yield chunk


class TestFeed:
    """Driving the aggregator chunk by chunk."""

    def test_cumulative_updates(self):
        """Each update carries the text accumulated so far."""
        aggregator = StreamAggregator()
        texts = []
        for chunk in HELLO_WORLD:
            for update in aggregator.feed(chunk):
                texts.append(update.contents[0].parts[0].text)
        assert texts == ["Hel", "Hello ", "Hello world"]

    def test_update_usage_is_fragment_local(self):
        """Token usage of an update comes from its own fragment."""
        aggregator = StreamAggregator()
        (update,) = aggregator.feed(HELLO_WORLD[0])
        assert update.token_usage == TokenUsage(prompt=4)
        assert update.done is False
        assert update.contents[0].role == "model"

    def test_finish_builds_full_result(self):
        """The final result has the complete text and the last usage."""
        aggregator = StreamAggregator()
        for chunk in HELLO_WORLD:
            aggregator.feed(chunk)
        done, result = aggregator.finish()

        assert done == StreamUpdate(done=True)
        assert result.contents[0].text == "Hello world"
        assert result.contents[0].finish_reason == "STOP"
        assert result.token_usage == TokenUsage(candidates=3, prompt=4, total=7)
        assert result.model_version == "gemini-2.0-flash"
        assert aggregator.state is StreamState.DONE
        assert aggregator.snapshots == {}

    def test_trivial_fragments_skipped(self):
        """Lone brackets, commas and whitespace produce nothing."""
        aggregator = StreamAggregator()
        for chunk in (b"[", b" , ", b"]", b"\r\n"):
            assert aggregator.feed(chunk) == []
        assert aggregator.failures == []

    def test_str_chunks(self):
        """Already-decoded text chunks are accepted."""
        aggregator = StreamAggregator()
        (update,) = aggregator.feed(HELLO_WORLD[0].decode("utf-8"))
        assert update.contents[0].parts[0].text == "Hel"

    def test_truncated_fragment_is_repaired(self):
        """A fragment cut mid-object is closed and parsed."""
        aggregator = StreamAggregator()
        (update,) = aggregator.feed(b'[{"candidates": [{"content": {"parts": [{"text": "Hi"}], "role": "model"}')
        assert update.contents[0].parts[0].text == "Hi"

    def test_several_results_in_one_chunk(self):
        """A chunk holding two result objects yields two updates."""
        aggregator = StreamAggregator()
        chunk = HELLO_WORLD[0] + HELLO_WORLD[1]
        updates = aggregator.feed(chunk)
        assert [u.contents[0].parts[0].text for u in updates] == ["Hel", "Hello "]

    @pytest.mark.parametrize("bad_chunk", [b"garbage!!", b'lo "}], "role": "model"}}]}'])
    def test_undecodable_fragment_skipped(self, bad_chunk, caplog):
        """A fragment with no result object is logged, recorded and skipped."""
        chunks = [HELLO_WORLD[0], bad_chunk, HELLO_WORLD[2], HELLO_WORLD[3]]
        aggregator = StreamAggregator()
        with caplog.at_level(logging.WARNING, logger="convocore.streaming"):
            updates = [u for chunk in chunks for u in aggregator.feed(chunk)]
            _, result = aggregator.finish()

        assert [u.contents[0].parts[0].text for u in updates] == ["Hel", "Helworld"]
        assert len(aggregator.failures) == 1
        failure = aggregator.failures[0]
        assert failure.index == 1
        assert failure.raw_chunk == bad_chunk.decode("utf-8")
        assert result.contents[0].text == "Helworld"
        assert any("undecodable stream fragment #1" in r.getMessage() for r in caplog.records)

    def test_repair_error_recorded(self):
        """An exception from the repair step is recorded like any other bad fragment."""
        aggregator = StreamAggregator()
        with patch("convocore.streaming.repair_json", side_effect=ValueError("boom")):
            assert aggregator.feed(HELLO_WORLD[1]) == []
        assert len(aggregator.failures) == 1
        assert aggregator.failures[0].repaired == ""

    def test_empty_array_is_not_a_failure(self):
        """A literal empty array is a valid, empty fragment."""
        aggregator = StreamAggregator()
        assert aggregator.feed(b"[]") == []
        assert aggregator.failures == []

    def test_empty_object_does_not_replace_last_result(self):
        """A fragment repaired to an empty object leaves the last result alone."""
        aggregator = StreamAggregator()
        aggregator.feed(HELLO_WORLD[0])
        aggregator.feed(b",{}")
        _, result = aggregator.finish()
        assert result.contents[0].text == "Hel"

    def test_finish_without_fragments(self):
        """An empty stream finishes with an empty result."""
        _, result = StreamAggregator().finish()
        assert result.contents == []
        assert result.token_usage == TokenUsage()

    def test_feed_after_finish_ignored(self):
        """Chunks fed after termination are dropped."""
        aggregator = StreamAggregator()
        aggregator.finish()
        assert aggregator.feed(HELLO_WORLD[0]) == []

    def test_finish_twice_raises(self):
        """finish can only be called once."""
        aggregator = StreamAggregator()
        aggregator.finish()
        with pytest.raises(ConvoCoreError):
            aggregator.finish()


class TestConsume:
    """Reading a whole byte source."""

    @pytest.mark.asyncio
    async def test_async_source_async_callback(self):
        """Async sources and coroutine callbacks are supported."""
        callback = AsyncMock()
        result = await StreamAggregator().consume(byte_stream(HELLO_WORLD), callback)

        assert result.contents[0].text == "Hello world"
        updates = [call.args[0] for call in callback.await_args_list]
        assert [u.done for u in updates] == [False, False, False, True]
        assert updates[2].contents[0].parts[0].text == "Hello world"

    @pytest.mark.asyncio
    async def test_sync_source_sync_callback(self):
        """Plain iterables and plain callbacks work too."""
        callback = MagicMock(return_value=None)
        result = await StreamAggregator().consume(list(HELLO_WORLD), callback)
        assert result.contents[0].text == "Hello world"
        assert callback.call_count == 4
        assert callback.call_args_list[-1].args[0].done is True

    @pytest.mark.asyncio
    async def test_without_callback(self):
        """The callback is optional."""
        result = await StreamAggregator().consume(byte_stream(HELLO_WORLD))
        assert result.contents[0].text == "Hello world"

    @pytest.mark.asyncio
    async def test_cancellation(self):
        """A set cancel event aborts the stream with no partial result."""
        cancel = asyncio.Event()
        callback = MagicMock(side_effect=lambda update: cancel.set())
        aggregator = StreamAggregator()

        with pytest.raises(TransportFailure) as exc_info:
            await aggregator.consume(byte_stream(HELLO_WORLD), callback, cancel)

        assert "Request cancelled" in str(exc_info.value)
        assert callback.call_count == 1
        assert aggregator.state is StreamState.DONE

    @pytest.mark.asyncio
    async def test_broken_stream(self):
        """A read error becomes a TransportFailure and discards the snapshots."""

        async def broken():
            yield HELLO_WORLD[0]
            raise aiohttp.ClientPayloadError("connection reset")

        aggregator = StreamAggregator(provider_name="gemini")
        with pytest.raises(TransportFailure) as exc_info:
            await aggregator.consume(broken())

        assert exc_info.value.provider_name == "gemini"
        assert aggregator.snapshots == {}
        assert aggregator.state is StreamState.DONE
