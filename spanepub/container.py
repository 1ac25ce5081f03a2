"""ZIP central-directory index.

Only the end-of-central-directory record and the central directory are read
here. Local headers and entry data are left to ``spanepub.entry`` so that an
archive with one unreadable resource still opens.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional

from .config import ReaderConfig
from .errors import FormatError, FormatErrorKind
from .hrefs import normalize_path
from .logs import get_logger
from .source import ByteSource

logger = get_logger(__name__)

EOCD_SIGNATURE = b"PK\x05\x06"
ZIP64_LOCATOR_SIGNATURE = b"PK\x06\x07"
CENTRAL_SIGNATURE = b"PK\x01\x02"
LOCAL_SIGNATURE = b"PK\x03\x04"

EOCD_STRUCT = struct.Struct("<4sHHHHIIH")
CENTRAL_STRUCT = struct.Struct("<4sHHHHHHIIIHHHHHII")
LOCAL_STRUCT = struct.Struct("<4sHHHHHIIIHH")

MAX_COMMENT_LEN = 0xFFFF
FLAG_DATA_DESCRIPTOR = 0x0008
FLAG_UTF8 = 0x0800


class CompressionMethod(Enum):
    STORED = 0
    DEFLATE = 8
    UNSUPPORTED = -1

    @classmethod
    def from_id(cls, method: int) -> "CompressionMethod":
        if method == 0:
            return cls.STORED
        if method == 8:
            return cls.DEFLATE
        return cls.UNSUPPORTED


@dataclass(frozen=True)
class Entry:
    path: str
    compressed_size: int
    uncompressed_size: int
    method: int
    crc32: int
    offset: int
    flags: int = 0
    raw_name: bytes = b""

    @property
    def compression(self) -> CompressionMethod:
        return CompressionMethod.from_id(self.method)

    @property
    def is_dir(self) -> bool:
        return self.path.endswith("/") or not self.path


def _decode_name(raw: bytes, flags: int) -> str:
    if flags & FLAG_UTF8:
        return raw.decode("utf-8", errors="replace")
    return raw.decode("cp437")


def _find_eocd(source: ByteSource) -> tuple[int, tuple]:
    if source.size < EOCD_STRUCT.size:
        raise FormatError(
            FormatErrorKind.NOT_A_ZIP,
            f"Source is {source.size} bytes, too small for a ZIP archive",
        )
    tail_start = max(0, source.size - (EOCD_STRUCT.size + MAX_COMMENT_LEN))
    tail = source.read_at(tail_start, source.size - tail_start)
    pos = len(tail)
    while True:
        pos = tail.rfind(EOCD_SIGNATURE, 0, pos)
        if pos < 0:
            raise FormatError(
                FormatErrorKind.NOT_A_ZIP,
                "End of central directory record not found",
            )
        if pos + EOCD_STRUCT.size > len(tail):
            continue
        record = EOCD_STRUCT.unpack_from(tail, pos)
        comment_len = record[7]
        # The comment must end exactly where the source does.
        if pos + EOCD_STRUCT.size + comment_len == len(tail):
            if pos >= 20 and tail[pos - 20 : pos - 16] == ZIP64_LOCATOR_SIGNATURE:
                raise FormatError(
                    FormatErrorKind.UNSUPPORTED_ARCHIVE, "ZIP64 archives are not supported"
                )
            return tail_start + pos, record


class Container:
    """Immutable index from archive path to ``Entry``."""

    def __init__(self, source: ByteSource, entries: List[Entry]) -> None:
        self.source = source
        self.entries = tuple(entries)
        self._by_path: Dict[str, Entry] = {}
        for entry in self.entries:
            # First record wins for duplicated names.
            self._by_path.setdefault(entry.path, entry)

    @classmethod
    def open(cls, source: ByteSource, config: Optional[ReaderConfig] = None) -> "Container":
        config = config or ReaderConfig()
        eocd_offset, record = _find_eocd(source)
        (
            _sig,
            disk_no,
            cd_disk,
            disk_entries,
            total_entries,
            cd_size,
            cd_offset,
            _comment_len,
        ) = record

        if disk_no != 0 or cd_disk != 0 or disk_entries != total_entries:
            raise FormatError(
                FormatErrorKind.UNSUPPORTED_ARCHIVE, "Multi-disk archives are not supported"
            )
        if total_entries == 0xFFFF or cd_size == 0xFFFFFFFF or cd_offset == 0xFFFFFFFF:
            raise FormatError(
                FormatErrorKind.UNSUPPORTED_ARCHIVE, "ZIP64 archives are not supported"
            )
        if cd_offset + cd_size > eocd_offset:
            raise FormatError(
                FormatErrorKind.TRUNCATED_ARCHIVE,
                f"Central directory ({cd_size} bytes at {cd_offset}) extends past "
                f"the end record at {eocd_offset}",
            )
        if total_entries > config.max_entries:
            raise FormatError(
                FormatErrorKind.UNSAFE_ARCHIVE,
                f"Archive has {total_entries} entries (limit {config.max_entries})",
            )

        directory = source.read_at(cd_offset, cd_size)
        entries = _parse_central_directory(directory, total_entries, source.size)
        logger.debug(
            "container_indexed",
            entries=len(entries),
            central_directory_offset=cd_offset,
            size=source.size,
        )
        return cls(source, entries)

    def get(self, path: str) -> Optional[Entry]:
        return self._by_path.get(path)

    def __getitem__(self, path: str) -> Entry:
        return self._by_path[path]

    def __contains__(self, path: object) -> bool:
        return path in self._by_path

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def paths(self) -> List[str]:
        return [entry.path for entry in self.entries]


def _parse_central_directory(directory: bytes, count: int, archive_size: int) -> List[Entry]:
    entries: List[Entry] = []
    pos = 0
    for index in range(count):
        if pos + CENTRAL_STRUCT.size > len(directory):
            raise FormatError(
                FormatErrorKind.TRUNCATED_ARCHIVE,
                f"Central directory ends after {index} of {count} records",
            )
        (
            sig,
            _made_by,
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
            comment_len,
            _disk_start,
            _internal_attr,
            _external_attr,
            offset,
        ) = CENTRAL_STRUCT.unpack_from(directory, pos)
        if sig != CENTRAL_SIGNATURE:
            raise FormatError(
                FormatErrorKind.NOT_A_ZIP,
                f"Bad central directory signature for record {index} at {pos}",
            )
        name_start = pos + CENTRAL_STRUCT.size
        record_end = name_start + name_len + extra_len + comment_len
        if record_end > len(directory):
            raise FormatError(
                FormatErrorKind.TRUNCATED_ARCHIVE,
                f"Central directory record {index} runs past the directory",
            )
        raw_name = directory[name_start : name_start + name_len]
        data_end = offset + LOCAL_STRUCT.size + name_len + compressed_size
        if offset >= archive_size or data_end > archive_size:
            raise FormatError(
                FormatErrorKind.TRUNCATED_ARCHIVE,
                f"Entry {raw_name!r} declares data up to {data_end}, past the "
                f"archive end at {archive_size}",
            )
        entries.append(
            Entry(
                path=normalize_path(_decode_name(raw_name, flags)),
                compressed_size=compressed_size,
                uncompressed_size=uncompressed_size,
                method=method,
                crc32=crc,
                offset=offset,
                flags=flags,
                raw_name=raw_name,
            )
        )
        pos = record_end
    return entries
