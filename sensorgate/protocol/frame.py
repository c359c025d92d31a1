"""Frame source: turns the raw serial byte stream into discrete link frames.

Two framing modes exist. ``length`` emits every ``rx_length`` bytes as one
frame; ``delimiter`` emits whatever precedes each delimiter occurrence. A
framer holds only its accumulation buffer, so a fresh one is built for every
connection attempt and nothing survives a reconnect.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Protocol

from ..config.settings import RuntimeConfig
from ..const import DEFAULT_READ_CHUNK

logger = logging.getLogger("sensorgate.frame")


class Framer(Protocol):
    def feed(self, data: bytes) -> list[bytes]: ...

    def reset(self) -> None: ...


class FixedLengthFramer:
    """Accumulate bytes and emit them in chunks of exactly *length*."""

    def __init__(self, length: int) -> None:
        if length <= 0:
            raise ValueError("frame length must be positive")
        self.length = length
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        frames: list[bytes] = []
        while len(self._buffer) >= self.length:
            frames.append(bytes(self._buffer[: self.length]))
            del self._buffer[: self.length]
        return frames

    def reset(self) -> None:
        self._buffer.clear()


class DelimiterFramer:
    """Emit the bytes preceding each delimiter; the delimiter is dropped.

    An accumulation growing past *max_bytes* without a delimiter is thrown
    away, and bytes keep being discarded until the next delimiter so the
    following frame starts on a clean boundary.
    """

    def __init__(self, delimiter: bytes, max_bytes: int = 0) -> None:
        if not delimiter:
            raise ValueError("delimiter must be non-empty")
        self.delimiter = delimiter
        self.max_bytes = max_bytes
        self._buffer = bytearray()
        self._discarding = False

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        frames: list[bytes] = []
        width = len(self.delimiter)
        while True:
            position = self._buffer.find(self.delimiter)
            if position < 0:
                break
            frame = bytes(self._buffer[:position])
            del self._buffer[: position + width]
            if self._discarding:
                self._discarding = False
                continue
            if frame:
                frames.append(frame)

        if self.max_bytes and len(self._buffer) > self.max_bytes:
            # Keep a possible delimiter prefix so a split delimiter is still found.
            keep = width - 1
            logger.warning("Frame exceeded %d bytes without delimiter; discarding.", self.max_bytes)
            tail = bytes(self._buffer[-keep:]) if keep else b""
            self._buffer.clear()
            self._buffer.extend(tail)
            self._discarding = True
        return frames

    def reset(self) -> None:
        self._buffer.clear()
        self._discarding = False


def build_framer(config: RuntimeConfig) -> Framer:
    if config.frame_mode == "length":
        return FixedLengthFramer(config.rx_length)
    return DelimiterFramer(config.delimiter_bytes, config.max_frame_bytes)


async def iter_frames(
    reader: asyncio.StreamReader,
    framer: Framer,
    chunk_size: int = DEFAULT_READ_CHUNK,
) -> AsyncIterator[bytes]:
    """Lazily yield frames read from *reader* until end of stream.

    Read errors propagate to the caller; the generator (and its framer) must
    then be discarded.
    """
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            return
        for frame in framer.feed(chunk):
            yield frame
