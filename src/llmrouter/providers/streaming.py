"""Incremental framing for streamed provider responses.

Providers deliver streams as arbitrary byte chunks.  The helpers here turn
those chunks into complete lines, then into JSON units, without ever
assuming that a chunk boundary lines up with a line boundary or even with a
UTF-8 character boundary.

Every streamed call creates its own :class:`LineBuffer`; nothing is shared
between concurrent streams.
"""

import asyncio
import codecs
import contextlib
import json
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from typing import Any, TypeVar

T = TypeVar("T")

DONE_SENTINEL = "[DONE]"
_DATA_PREFIX = "data:"


class LineBuffer:
    """Split a byte stream into text lines, keeping the trailing fragment.

    Multi-byte characters split across chunks are reassembled by an
    incremental decoder.  ``\\r\\n`` endings are normalised.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, data: bytes) -> list[str]:
        """Append *data* and return every line it completed."""
        self._pending += self._decoder.decode(data)
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return the retained fragment as a final line once the stream closed."""
        tail = (self._pending + self._decoder.decode(b"", final=True)).rstrip("\r")
        self._pending = ""
        return [tail] if tail else []


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    buffer = LineBuffer()
    async for chunk in chunks:
        for line in buffer.feed(chunk):
            yield line
    for line in buffer.flush():
        yield line


def parse_sse_data(line: str) -> str | None:
    """Return the payload of an SSE ``data:`` line, or ``None`` for any other line."""
    line = line.strip()
    if not line.startswith(_DATA_PREFIX):
        return None
    return line[len(_DATA_PREFIX) :].strip()


def _loads(payload: str) -> Any:
    try:
        return json.loads(payload)
    except ValueError:
        return None


async def iter_sse_json(chunks: AsyncIterable[bytes]) -> AsyncIterator[Any]:
    """Yield the decoded JSON payload of every SSE ``data:`` line.

    Blank lines, comments and ``event:``/``id:`` fields are ignored.  Payloads
    that are not valid JSON are skipped.  ``data: [DONE]`` ends the sequence.
    """
    async for line in iter_lines(chunks):
        payload = parse_sse_data(line)
        if not payload:
            continue
        if payload == DONE_SENTINEL:
            return
        unit = _loads(payload)
        if unit is not None:
            yield unit


async def iter_json_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[Any]:
    """Yield one JSON object per line of a newline-delimited stream.

    Array punctuation around each object (``[``, ``,``, ``]``) is tolerated so
    a streamed JSON array written one element per line decodes too.
    """
    async for line in iter_lines(chunks):
        text = line.strip().lstrip("[,").rstrip(",]").strip()
        if not text:
            continue
        unit = _loads(text)
        if unit is not None:
            yield unit


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def cancellable(
    source: AsyncIterable[T],
    cancel: asyncio.Event | None,
) -> AsyncIterator[T]:
    """Re-yield *source* until it is exhausted or *cancel* is set.

    When the event fires while a read is in flight, the read is abandoned
    and the sequence ends without an error.
    """
    if cancel is None:
        async for item in source:
            yield item
        return

    iterator = source.__aiter__()
    stop = asyncio.ensure_future(cancel.wait())
    try:
        while not cancel.is_set():
            step = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait({step, stop}, return_when=asyncio.FIRST_COMPLETED)
            if step not in done:
                step.cancel()
                with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                    await step
                return
            try:
                item = step.result()
            except StopAsyncIteration:
                return
            yield item
    finally:
        stop.cancel()
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


async def await_cancellable(awaitable: Awaitable[T], cancel: asyncio.Event | None) -> T | None:
    """Await *awaitable*, returning ``None`` if *cancel* fires first."""
    if cancel is None:
        return await awaitable
    if cancel.is_set():
        # Never started, so close the coroutine to silence "never awaited".
        close = getattr(awaitable, "close", None)
        if close is not None:
            close()
        return None

    work = asyncio.ensure_future(awaitable)
    stop = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        if work in done:
            return work.result()
        work.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await work
        return None
    finally:
        stop.cancel()
