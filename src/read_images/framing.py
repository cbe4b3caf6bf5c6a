"""Newline-delimited framing for the stdio transport.

Inbound bytes are buffered until a ``\\n`` is seen; every complete line in a
chunk is emitted before more input is requested.  There is no cap on line
length, so a peer that never sends a newline can grow the buffer without
bound.  Outbound envelopes are written one JSON document per line.
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
import threading
from typing import Any, AsyncIterator, TextIO

log = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class LineFramer:
    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Append *chunk* and return every complete, non-blank line now available."""
        self._buffer.extend(chunk)
        lines: list[str] = []
        while True:
            idx = self._buffer.find(b"\n")
            if idx == -1:
                break
            raw = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            # Decode per line so a multi-byte character split across reads survives.
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                lines.append(line)
        return lines

    def close(self) -> str:
        """Drop and return whatever unterminated text is left in the buffer."""
        tail = bytes(self._buffer).decode("utf-8", errors="replace").strip()
        self._buffer.clear()
        return tail


async def iter_lines(
    reader: asyncio.StreamReader,
    chunk_size: int = _CHUNK_SIZE,
) -> AsyncIterator[str]:
    framer = LineFramer()
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            break
        for line in framer.feed(chunk):
            yield line
    tail = framer.close()
    if tail:
        log.warning("Discarding %d unterminated byte(s) at end of input", len(tail))


class LineWriter:
    """Writes one envelope per line; the lock keeps concurrent replies from interleaving.

    Writes are synchronous and assume the stream is always writable; there is
    no backpressure handling.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()

    def write(self, obj: dict[str, Any]) -> None:
        data = json.dumps(obj) + "\n"
        with self._lock:
            self._stream.write(data)
            self._stream.flush()
