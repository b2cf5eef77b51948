# Copyright 2026 Lambda Tracer Contributors
# SPDX-License-Identifier: Apache-2.0

"""Replay buffers: observe the head of a single-read stream without stealing it.

Capturing a request or response body for a span means reading it, but the real
consumer (the HTTP stack or the user's code) must still see every byte exactly
once and in order. Each capture function reads up to ``limit`` bytes, keeps
them, and hands back a stream that yields the consumed bytes first and then
continues with the untouched remainder of the source.

Three source shapes are supported:
    - binary file-like objects with ``read(n)``         -> capture()
    - iterables of byte chunks (httpx SyncByteStream)   -> capture_chunks()
    - async iterables of byte chunks (AsyncByteStream)  -> acapture_chunks()

If the source raises before ``limit`` bytes are available, the capture fails:
``head`` is empty, ``error`` holds the exception and ``stream`` is the original
(possibly partially consumed) source, which callers keep forwarding.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, BinaryIO, Iterable, Iterator

import httpx

logger = logging.getLogger("lambda_tracer")

_READ_CHUNK = 64 * 1024


@dataclass
class Capture:
    """Result of capturing the head of a stream.

    Attributes:
        head: The first ``min(limit, available)`` bytes, or b"" on failure.
        stream: The stream the real consumer must read from from now on.
        error: The exception raised by the source, or None.
    """

    head: bytes
    stream: Any
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── File-like sources ──────────────────────────────────────────────────


class ReplayReader(io.RawIOBase):
    """Readable stream yielding ``prefix`` and then the rest of ``source``."""

    def __init__(self, prefix: bytes, source: BinaryIO) -> None:
        super().__init__()
        self._prefix = memoryview(prefix)
        self._offset = 0
        self._source = source

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        target = memoryview(buffer).cast("B")
        if not len(target):
            return 0
        remaining = len(self._prefix) - self._offset
        if remaining > 0:
            n = min(remaining, len(target))
            target[:n] = self._prefix[self._offset : self._offset + n]
            self._offset += n
            return n
        data = self._source.read(len(target))
        if not data:
            return 0
        n = len(data)
        target[:n] = data
        return n

    def close(self) -> None:
        try:
            close = getattr(self._source, "close", None)
            if callable(close):
                close()
        finally:
            super().close()


def capture(source: BinaryIO, limit: int) -> Capture:
    """Capture up to ``limit`` bytes from a binary reader.

    Short reads are retried until ``limit`` bytes arrived or the source hit
    end-of-stream, so a partial ``head`` always means the stream is exhausted.
    """
    if limit <= 0:
        return Capture(head=b"", stream=source)
    consumed = bytearray()
    try:
        while len(consumed) < limit:
            data = source.read(limit - len(consumed))
            if not data:
                break
            consumed.extend(data)
    except Exception as exc:
        logger.debug("failed to capture stream head", exc_info=True)
        return Capture(head=b"", stream=source, error=exc)
    head = bytes(consumed)
    return Capture(head=head, stream=ReplayReader(head, source))


# ── Chunked sources ────────────────────────────────────────────────────


class ReplayByteStream(httpx.SyncByteStream):
    """Sync byte stream yielding the consumed chunks, then the rest of the source."""

    def __init__(self, consumed: list[bytes], rest: Iterator[bytes], source: Any = None) -> None:
        self._consumed = consumed
        self._rest = rest
        self._source = source

    def __iter__(self) -> Iterator[bytes]:
        consumed, self._consumed = self._consumed, []
        yield from consumed
        yield from self._rest

    def close(self) -> None:
        close = getattr(self._source, "close", None)
        if callable(close):
            close()


class AsyncReplayByteStream(httpx.AsyncByteStream):
    """Async byte stream yielding the consumed chunks, then the rest of the source."""

    def __init__(self, consumed: list[bytes], rest: AsyncIterator[bytes], source: Any = None) -> None:
        self._consumed = consumed
        self._rest = rest
        self._source = source

    async def __aiter__(self) -> AsyncIterator[bytes]:
        consumed, self._consumed = self._consumed, []
        for chunk in consumed:
            yield chunk
        async for chunk in self._rest:
            yield chunk

    async def aclose(self) -> None:
        aclose = getattr(self._source, "aclose", None)
        if callable(aclose):
            await aclose()


def _head_of(consumed: list[bytes], limit: int) -> bytes:
    return b"".join(consumed)[:limit]


def capture_chunks(source: Iterable[bytes], limit: int) -> Capture:
    """Capture up to ``limit`` bytes from an iterable of byte chunks.

    The last chunk pulled may reach past ``limit``; the surplus is replayed,
    only ``head`` is cut.
    """
    if limit <= 0:
        return Capture(head=b"", stream=source)
    iterator = iter(source)
    consumed: list[bytes] = []
    size = 0
    try:
        while size < limit:
            try:
                chunk = next(iterator)
            except StopIteration:
                break
            if chunk:
                consumed.append(chunk)
                size += len(chunk)
    except Exception as exc:
        logger.debug("failed to capture chunked stream head", exc_info=True)
        return Capture(head=b"", stream=source, error=exc)
    return Capture(
        head=_head_of(consumed, limit),
        stream=ReplayByteStream(consumed, iterator, source),
    )


async def acapture_chunks(source: AsyncIterable[bytes], limit: int) -> Capture:
    """Async counterpart of :func:`capture_chunks`."""
    if limit <= 0:
        return Capture(head=b"", stream=source)
    iterator = source.__aiter__()
    consumed: list[bytes] = []
    size = 0
    try:
        while size < limit:
            try:
                chunk = await iterator.__anext__()
            except StopAsyncIteration:
                break
            if chunk:
                consumed.append(chunk)
                size += len(chunk)
    except Exception as exc:
        logger.debug("failed to capture async chunked stream head", exc_info=True)
        return Capture(head=b"", stream=source, error=exc)
    return Capture(
        head=_head_of(consumed, limit),
        stream=AsyncReplayByteStream(consumed, iterator, source),
    )
