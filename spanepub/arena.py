"""Append-only byte arena and the spans that borrow from it.

Chunks are immutable ``bytes`` objects, so appending never relocates data
that an existing ``Span`` refers to.
"""

from __future__ import annotations

import html
from typing import List


class Arena:
    def __init__(self) -> None:
        self._chunks: List[bytes] = []

    def append(self, data: bytes) -> "Span":
        chunk = bytes(data) if not isinstance(data, bytes) else data
        self._chunks.append(chunk)
        return Span(chunk, 0, len(chunk))

    @property
    def size(self) -> int:
        return sum(len(chunk) for chunk in self._chunks)

    def __len__(self) -> int:
        return len(self._chunks)


class Span:
    """A ``[start, end)`` window into an arena chunk."""

    __slots__ = ("buffer", "start", "end")

    def __init__(self, buffer: bytes, start: int, end: int) -> None:
        if not 0 <= start <= end <= len(buffer):
            raise ValueError(f"Span [{start}, {end}) outside buffer of {len(buffer)}")
        self.buffer = buffer
        self.start = start
        self.end = end

    def __len__(self) -> int:
        return self.end - self.start

    def __bool__(self) -> bool:
        return self.end > self.start

    def __repr__(self) -> str:
        return f"Span({self.start}, {self.end})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Span):
            return self.raw == other.raw
        if isinstance(other, (bytes, bytearray)):
            return self.raw == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    @property
    def raw(self) -> memoryview:
        return memoryview(self.buffer)[self.start : self.end]

    def sub(self, start: int, end: int) -> "Span":
        """Span over absolute offsets ``[start, end)`` of the same buffer."""
        if not self.start <= start <= end <= self.end:
            raise ValueError(f"Sub-span [{start}, {end}) outside {self!r}")
        return Span(self.buffer, start, end)

    def decode(self) -> str:
        return self.buffer[self.start : self.end].decode("utf-8")

    @property
    def text(self) -> str:
        """Decoded text with character and entity references expanded."""
        value = self.decode()
        if "&" in value:
            value = html.unescape(value)
        return value

    def startswith(self, prefix: bytes) -> bool:
        return self.buffer.startswith(prefix, self.start, self.end)
