from __future__ import annotations

import io
import mmap
import os
from pathlib import Path
from typing import IO, Optional, Union

BufferLike = Union[bytes, bytearray, memoryview, mmap.mmap]
SourceLike = Union[str, os.PathLike, BufferLike, IO[bytes]]


class ByteSource:
    """Positional reads over a seekable binary stream or an in-memory buffer.

    Paths are opened here and closed by ``close()``; caller-supplied streams
    are never closed.
    """

    def __init__(self, source: SourceLike) -> None:
        self._owned: Optional[IO[bytes]] = None
        self._buffer: Optional[memoryview] = None
        self._stream: Optional[IO[bytes]] = None

        if isinstance(source, (str, os.PathLike)):
            self._owned = open(Path(source), "rb")
            self._stream = self._owned
        elif isinstance(source, (bytes, bytearray, memoryview, mmap.mmap)):
            self._buffer = memoryview(source).cast("B")
        elif hasattr(source, "seek") and hasattr(source, "read"):
            self._stream = source
        else:
            # Other buffer exporters.
            try:
                self._buffer = memoryview(source).cast("B")
            except TypeError:
                raise TypeError(
                    f"Unsupported byte source: {type(source).__name__}"
                ) from None

        if self._buffer is not None:
            self.size = len(self._buffer)
        else:
            self.size = self._stream.seek(0, io.SEEK_END)

    def read_at(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0 or offset + length > self.size:
            raise OSError(
                f"Read of {length} bytes at offset {offset} is outside the source "
                f"({self.size} bytes)"
            )
        if self._buffer is not None:
            return self._buffer[offset : offset + length].tobytes()
        self._stream.seek(offset)
        data = self._stream.read(length)
        if len(data) != length:
            raise OSError(
                f"Short read at offset {offset}: wanted {length} bytes, got {len(data)}"
            )
        return data

    def close(self) -> None:
        if self._buffer is not None:
            # Lets an mmap passed in as the source be closed afterwards.
            self._buffer.release()
        if self._owned is not None:
            self._owned.close()
            self._owned = None
            self._stream = None
