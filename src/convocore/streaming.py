# src/convocore/streaming.py
"""
StreamAggregator: rebuilds a generation result from a streamed response.

A streamed generation response arrives as a JSON array written piece by
piece (``[{...}``, ``,{...}``, ..., ``]``). Network chunks rarely line up
with JSON boundaries, so every chunk is treated as a possibly truncated
fragment:

1. decode the bytes incrementally as UTF-8, trim, strip a leading ``,``;
2. skip anything of one character or less (a lone bracket or comma);
3. repair and parse the fragment with ``json_repair``; a fragment that
   yields no result object at all counts as undecodable;
4. for every result object in the array, accumulate the text of each
   (content index, part index) pair and emit a ``StreamUpdate`` whose texts
   are the cumulative values.

An undecodable fragment is logged, recorded in ``failures`` and skipped;
it never ends the stream. When the byte source is exhausted the aggregator
emits a final ``StreamUpdate(done=True)`` and builds the final
``GenerationResult`` from the last result object seen, with every text part
replaced by its complete accumulated text.

States: ``OPEN`` while chunks are accepted, ``TERMINATING`` while the final
result is assembled, ``DONE`` afterwards.
"""

import asyncio
import codecs
import inspect
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

import aiohttp
from json_repair import repair_json

from .content import ContentBuilder
from .exceptions import ConvoCoreError, StreamDecodeFailure, TransportFailure
from .models import GenerationResult, StreamUpdate, TokenUsage
from .results import build_contents, build_result, build_usage

logger = logging.getLogger(__name__)

StreamCallback = Callable[[StreamUpdate], Union[None, Awaitable[None]]]
ByteSource = Union[AsyncIterable[bytes], Iterable[bytes]]


class StreamState(Enum):
    OPEN = "open"
    TERMINATING = "terminating"
    DONE = "done"


@dataclass
class StreamSnapshot:
    """Running text of one streamed part."""
    text: str = ""
    role: Optional[str] = None


class StreamAggregator:
    """
    Incremental decoder for one streamed generation response.

    Use ``feed``/``finish`` when driving the stream yourself, or ``consume``
    to read a whole byte source and deliver updates to a callback.
    """

    def __init__(
        self,
        content_builder: Optional[ContentBuilder] = None,
        provider_name: str = "stream",
        log_raw_payloads: bool = False,
        decode_errors: str = "replace",
    ):
        self.content_builder = content_builder or ContentBuilder()
        self.provider_name = provider_name
        self.log_raw_payloads = log_raw_payloads
        self.state = StreamState.OPEN
        self.snapshots: Dict[Tuple[int, int], StreamSnapshot] = {}
        self.last_result: Dict[str, Any] = {}
        self.chunk_count = 0
        self.failures: List[StreamDecodeFailure] = []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors=decode_errors)

    def _decode_fragment(self, text: str) -> Optional[List[Any]]:
        """Repair and parse one fragment. Returns None when it cannot be decoded."""
        cleaned = text.strip()
        if cleaned.startswith(","):
            cleaned = cleaned[1:]
        if len(cleaned) <= 1:
            return None

        repaired = ""
        try:
            parsed = repair_json(cleaned, return_objects=True)
            repaired = json.dumps(parsed, ensure_ascii=False)
        except Exception as e:
            return self._record_failure(text, repaired, str(e))

        results = parsed if isinstance(parsed, list) else [parsed]
        # repair falls back to "" or [] for input it cannot make sense of
        if not any(isinstance(item, dict) for item in results) and cleaned != "[]":
            return self._record_failure(text, repaired, "no result object in fragment")

        if self.log_raw_payloads:
            logger.debug("[%d] raw=%r repaired=%r", self.chunk_count, text, repaired)
        return results

    def _record_failure(self, text: str, repaired: str, reason: str) -> None:
        self.failures.append(StreamDecodeFailure(raw_chunk=text, repaired=repaired, index=self.chunk_count))
        logger.warning(
            "Skipping undecodable stream fragment #%d: %s | raw=%r | repaired=%r",
            self.chunk_count, reason, text, repaired,
        )
        return None

    def _apply(self, result: Dict[str, Any]) -> StreamUpdate:
        contents = build_contents(result, self.content_builder)
        for content_index, message in enumerate(contents):
            for part_index, part in enumerate(message.parts):
                if not isinstance(part.text, str):
                    continue
                snapshot = self.snapshots.setdefault((content_index, part_index), StreamSnapshot())
                snapshot.text += part.text
                part.text = snapshot.text
                if isinstance(message.role, str):
                    snapshot.role = message.role
        self.last_result = result
        return StreamUpdate(contents=contents, token_usage=build_usage(result) or TokenUsage(), done=False)

    def _feed_text(self, text: str) -> List[StreamUpdate]:
        updates: List[StreamUpdate] = []
        parsed = self._decode_fragment(text)
        if parsed is not None:
            for result in parsed:
                if isinstance(result, dict) and result:
                    updates.append(self._apply(result))
        self.chunk_count += 1
        return updates

    def feed(self, chunk: Union[bytes, str]) -> List[StreamUpdate]:
        """
        Process one chunk of the response body.

        Returns:
            The incremental updates produced by this chunk (possibly none).
        """
        if self.state is not StreamState.OPEN:
            logger.debug("Ignoring chunk fed to a %s stream.", self.state.value)
            return []
        text = self._decoder.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        return self._feed_text(text)

    def finish(self) -> Tuple[StreamUpdate, GenerationResult]:
        """
        Close the stream.

        Returns:
            The terminal ``StreamUpdate(done=True)`` and the final result.
        """
        if self.state is StreamState.DONE:
            raise ConvoCoreError("Stream aggregator already finished.")
        tail = self._decoder.decode(b"", final=True)
        if tail.strip():
            self._feed_text(tail)

        self.state = StreamState.TERMINATING
        final = build_result(self.last_result, self.content_builder)
        for content_index, message in enumerate(final.contents):
            for part_index, part in enumerate(message.parts):
                if not isinstance(part.text, str):
                    continue
                snapshot = self.snapshots.get((content_index, part_index))
                if snapshot is not None:
                    part.text = snapshot.text
        self.discard()
        logger.debug("Stream finished after %d chunk(s), %d skipped.", self.chunk_count, len(self.failures))
        return StreamUpdate(done=True), final

    def discard(self) -> None:
        """Drop accumulated state and mark the stream as done."""
        self.snapshots.clear()
        self.state = StreamState.DONE

    async def consume(
        self,
        byte_source: ByteSource,
        callback: Optional[StreamCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationResult:
        """
        Read ``byte_source`` to the end, delivering every update to ``callback``.

        Args:
            byte_source: Async or sync iterable of response body chunks.
            callback: Called with each ``StreamUpdate``; may be a coroutine function.
            cancel_event: When set between reads, the stream is abandoned.

        Returns:
            The final ``GenerationResult``.

        Raises:
            TransportFailure: If reading fails or the stream is cancelled. No
                partial result is produced.
        """

        async def deliver(update: StreamUpdate) -> None:
            if callback is None:
                return
            outcome = callback(update)
            if inspect.isawaitable(outcome):
                await outcome

        try:
            if hasattr(byte_source, "__aiter__"):
                async for chunk in byte_source:
                    self._check_cancelled(cancel_event)
                    for update in self.feed(chunk):
                        await deliver(update)
            else:
                for chunk in byte_source:
                    self._check_cancelled(cancel_event)
                    for update in self.feed(chunk):
                        await deliver(update)
        except TransportFailure:
            self.discard()
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self.discard()
            logger.error("Stream from %s broke after %d chunk(s): %s", self.provider_name, self.chunk_count, e)
            raise TransportFailure(self.provider_name, f"Stream read failed: {e}") from e

        done_update, final = self.finish()
        await deliver(done_update)
        return final

    def _check_cancelled(self, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            self.discard()
            raise TransportFailure(self.provider_name, "Request cancelled")
