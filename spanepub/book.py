"""Book facade: open an EPUB, read resources by ``Href``, parse the TOC."""

from __future__ import annotations

import mimetypes
from typing import Iterator, Optional

from bs4 import BeautifulSoup

from .arena import Arena, Span
from .config import ReaderConfig
from .container import Container
from .entry import read_entry
from .errors import FormatError, FormatErrorKind, ReadError, ReadErrorKind
from .hrefs import Href, HrefKind, normalize_path, split_fragment
from .logs import get_logger
from .package import NCX_MEDIA_TYPE, ManifestItem, PackageInfo, resolve_package
from .source import ByteSource, SourceLike
from .toc import TocFormat, TocTree, parse_toc

logger = get_logger(__name__)

DEFAULT_MEDIA_TYPE = "application/octet-stream"


class Content:
    """Bytes of one resource, owned by the arena allocated for its read."""

    def __init__(self, path: str, media_type: str, arena: Arena, span: Span) -> None:
        self.path = path
        self.media_type = media_type
        self.arena = arena
        self.span = span

    def __len__(self) -> int:
        return len(self.span)

    def __repr__(self) -> str:
        return f"Content(path={self.path!r}, media_type={self.media_type!r}, size={len(self)})"

    @property
    def data(self) -> memoryview:
        return self.span.raw

    def bytes(self) -> bytes:
        return self.span.buffer[self.span.start : self.span.end]

    def text(self, encoding: str = "utf-8") -> str:
        return self.bytes().decode(encoding)

    def toc(self) -> TocTree:
        hint = TocFormat.NCX if self.media_type == NCX_MEDIA_TYPE else TocFormat.NAV
        return parse_toc(self.span, self.path, format_hint=hint, owner=self)

    def doc(self) -> BeautifulSoup:
        """Parse an (X)HTML resource into a BeautifulSoup document."""
        data = self.bytes()
        head = data.lstrip()[:512].lower()
        parser = (
            "lxml-xml"
            if (head.startswith(b"<?xml") or b"xmlns=" in head)
            else "lxml"
        )
        return BeautifulSoup(data, parser)


class Book:
    def __init__(
        self,
        source: ByteSource,
        container: Container,
        package: PackageInfo,
        config: ReaderConfig,
    ) -> None:
        self._source = source
        self.container = container
        self.package = package
        self.config = config

    def __enter__(self) -> "Book":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release a file this Book opened itself; caller streams stay open."""
        self._source.close()

    def __len__(self) -> int:
        return len(self.package.spine)

    def _path_for(self, href: Href) -> str:
        if href.kind is HrefKind.TOC:
            item = self.package.toc_item
            if item is None:
                raise FormatError(
                    FormatErrorKind.MISSING_TOC,
                    f"{self.package.opf_path} declares no nav document or NCX",
                )
            return item.href
        if href.kind is HrefKind.SPINE:
            try:
                return self.package.spine_item(href.index).href
            except (IndexError, KeyError):
                raise ReadError(
                    ReadErrorKind.NOT_FOUND,
                    f"No manifest item at spine position {href.index}",
                ) from None
        path, _fragment = split_fragment(href.target)
        return normalize_path(path)

    def _media_type(self, path: str) -> str:
        item = self.package.item_for_href(path)
        if item is not None and item.media_type:
            return item.media_type
        guessed, _encoding = mimetypes.guess_type(path)
        return guessed or DEFAULT_MEDIA_TYPE

    def read(self, href: Href) -> Content:
        """Decompress the resource ``href`` names into a fresh arena."""
        path = self._path_for(href)
        entry = self.container.get(path)
        if entry is None or entry.is_dir:
            if href.kind is HrefKind.TOC:
                raise FormatError(
                    FormatErrorKind.MISSING_TOC,
                    f"TOC document {path} is not in the archive",
                )
            raise ReadError(ReadErrorKind.NOT_FOUND, f"{path} is not in the archive", path=path)
        arena = Arena()
        span = read_entry(self._source, entry, arena, self.config)
        return Content(path, self._media_type(path), arena, span)

    def toc(self) -> TocTree:
        return self.read(Href.TOC).toc()

    def resources(self) -> Iterator[ManifestItem]:
        return iter(self.package.manifest.values())

    def items_of_type(self, media_type: str) -> Iterator[ManifestItem]:
        for item in self.package.manifest.values():
            if item.media_type == media_type:
                yield item

    def spine_items(self) -> Iterator[ManifestItem]:
        for ref in self.package.spine:
            item = self.package.manifest.get(ref.idref)
            if item is None:
                logger.warning("spine_item_missing", idref=ref.idref)
                continue
            yield item


def open_book(source: SourceLike, config: Optional[ReaderConfig] = None) -> Book:
    """Index the archive and resolve its package document.

    Entries are not decompressed here beyond ``container.xml`` and the OPF,
    so an unreadable resource only fails its own ``read``.
    """
    config = config or ReaderConfig()
    byte_source = ByteSource(source)
    try:
        container = Container.open(byte_source, config)
        package = resolve_package(container, config)
    except OSError as exc:
        byte_source.close()
        raise FormatError(FormatErrorKind.TRUNCATED_ARCHIVE, str(exc)) from exc
    except FormatError:
        byte_source.close()
        raise
    return Book(byte_source, container, package, config)
