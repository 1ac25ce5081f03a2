"""Error taxonomy for reading EPUB containers.

``FormatError`` covers the archive and its package documents, ``ReadError``
covers a single entry, and ``XmlError`` is raised by the tokenizer and
re-raised as a ``FormatError`` by the package and TOC parsers.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FormatErrorKind(str, Enum):
    NOT_A_ZIP = "not_a_zip"
    TRUNCATED_ARCHIVE = "truncated_archive"
    UNSUPPORTED_ARCHIVE = "unsupported_archive"
    UNSAFE_ARCHIVE = "unsafe_archive"
    MISSING_CONTAINER = "missing_container"
    MISSING_PACKAGE = "missing_package"
    MALFORMED_PACKAGE = "malformed_package"
    MISSING_TOC = "missing_toc"
    MALFORMED_TOC = "malformed_toc"


class ReadErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNSUPPORTED_COMPRESSION = "unsupported_compression"
    CORRUPT_ENTRY = "corrupt_entry"
    UNSAFE_ENTRY = "unsafe_entry"
    IO = "io"


class XmlErrorKind(str, Enum):
    MALFORMED_MARKUP = "malformed_markup"
    UNSUPPORTED_ENCODING = "unsupported_encoding"


class EpubError(Exception):
    """Base class for every error raised by spanepub."""

    def __init__(self, kind: Enum, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class FormatError(EpubError):
    kind: FormatErrorKind

    def __init__(self, kind: FormatErrorKind, message: str) -> None:
        super().__init__(kind, message)


class ReadError(EpubError):
    kind: ReadErrorKind

    def __init__(
        self,
        kind: ReadErrorKind,
        message: str,
        path: Optional[str] = None,
        method: Optional[int] = None,
    ) -> None:
        super().__init__(kind, message)
        self.path = path
        # Raw ZIP compression method, set for UNSUPPORTED_COMPRESSION.
        self.method = method


class XmlError(EpubError):
    kind: XmlErrorKind

    def __init__(self, kind: XmlErrorKind, message: str, offset: int = 0) -> None:
        super().__init__(kind, message)
        self.offset = offset
