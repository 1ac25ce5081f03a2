from __future__ import annotations

import zlib
from typing import Optional

from .arena import Arena, Span
from .config import ReaderConfig
from .container import (
    FLAG_DATA_DESCRIPTOR,
    LOCAL_SIGNATURE,
    LOCAL_STRUCT,
    CompressionMethod,
    Entry,
)
from .errors import ReadError, ReadErrorKind
from .logs import get_logger
from .source import ByteSource

logger = get_logger(__name__)


def _corrupt(entry: Entry, message: str) -> ReadError:
    return ReadError(ReadErrorKind.CORRUPT_ENTRY, f"{entry.path}: {message}", path=entry.path)


def _data_offset(source: ByteSource, entry: Entry) -> int:
    header = source.read_at(entry.offset, LOCAL_STRUCT.size)
    (
        sig,
        _needed,
        flags,
        method,
        _mtime,
        _mdate,
        crc,
        compressed_size,
        uncompressed_size,
        name_len,
        extra_len,
    ) = LOCAL_STRUCT.unpack(header)
    if sig != LOCAL_SIGNATURE:
        raise _corrupt(entry, f"bad local header signature at offset {entry.offset}")
    if method != entry.method:
        raise _corrupt(
            entry,
            f"local header method {method} differs from central directory {entry.method}",
        )
    name = source.read_at(entry.offset + LOCAL_STRUCT.size, name_len)
    if entry.raw_name and name != entry.raw_name:
        raise _corrupt(entry, f"local header names {name!r}")
    if not (flags & FLAG_DATA_DESCRIPTOR):
        # Sizes and CRC live in a trailing descriptor when bit 3 is set.
        if (crc, compressed_size, uncompressed_size) != (
            entry.crc32,
            entry.compressed_size,
            entry.uncompressed_size,
        ):
            raise _corrupt(entry, "local header sizes or CRC differ from central directory")
    start = entry.offset + LOCAL_STRUCT.size + name_len + extra_len
    if start + entry.compressed_size > source.size:
        raise _corrupt(entry, "entry data runs past the end of the archive")
    return start


def _check_limits(entry: Entry, config: ReaderConfig) -> None:
    if entry.uncompressed_size > config.max_entry_size:
        raise ReadError(
            ReadErrorKind.UNSAFE_ENTRY,
            f"{entry.path}: uncompressed size {entry.uncompressed_size} exceeds "
            f"limit {config.max_entry_size}",
            path=entry.path,
        )
    if (
        entry.compressed_size > 0
        and entry.uncompressed_size / entry.compressed_size > config.max_compression_ratio
    ):
        raise ReadError(
            ReadErrorKind.UNSAFE_ENTRY,
            f"{entry.path}: compression ratio "
            f"{entry.uncompressed_size / entry.compressed_size:.1f} exceeds limit "
            f"{config.max_compression_ratio}",
            path=entry.path,
        )


def _inflate(entry: Entry, data: bytes) -> bytes:
    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
    try:
        # One byte of headroom detects output longer than declared.
        out = decompressor.decompress(data, entry.uncompressed_size + 1)
    except zlib.error as exc:
        raise _corrupt(entry, f"inflate failed: {exc}") from exc
    if len(out) != entry.uncompressed_size or not decompressor.eof:
        raise _corrupt(
            entry,
            f"inflated to {len(out)} bytes, expected {entry.uncompressed_size}",
        )
    return out


def read_entry(
    source: ByteSource,
    entry: Entry,
    arena: Arena,
    config: Optional[ReaderConfig] = None,
) -> Span:
    """Decompress ``entry`` into ``arena`` and return the span holding it."""
    config = config or ReaderConfig()
    compression = entry.compression
    if compression is CompressionMethod.UNSUPPORTED:
        raise ReadError(
            ReadErrorKind.UNSUPPORTED_COMPRESSION,
            f"{entry.path}: unsupported compression method {entry.method}",
            path=entry.path,
            method=entry.method,
        )
    _check_limits(entry, config)
    try:
        start = _data_offset(source, entry)
        data = source.read_at(start, entry.compressed_size)
    except OSError as exc:
        raise ReadError(ReadErrorKind.IO, f"{entry.path}: {exc}", path=entry.path) from exc

    if compression is CompressionMethod.STORED:
        if entry.compressed_size != entry.uncompressed_size:
            raise _corrupt(
                entry,
                f"stored entry sizes differ ({entry.compressed_size} != "
                f"{entry.uncompressed_size})",
            )
        out = data
    else:
        out = _inflate(entry, data)

    if config.verify_crc:
        crc = zlib.crc32(out) & 0xFFFFFFFF
        if crc != entry.crc32:
            raise _corrupt(entry, f"CRC-32 {crc:08x} does not match {entry.crc32:08x}")

    span = arena.append(out)
    logger.debug(
        "entry_read",
        path=entry.path,
        method=compression.name.lower(),
        size=len(span),
    )
    return span
