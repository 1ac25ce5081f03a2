"""Table-of-contents parsing for NCX and EPUB3 navigation documents.

Both schemas produce the same ``TocPoint`` tree. Labels and raw hrefs are
spans into the TOC document, so a tree keeps the document's arena alive.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

from .arena import Span
from .errors import FormatError, FormatErrorKind, XmlError
from .hrefs import Link, base_dir, resolve
from .logs import get_logger
from .markup import Element, parse

logger = get_logger(__name__)


class TocFormat(str, Enum):
    NCX = "ncx"
    NAV = "nav"


@dataclass(frozen=True)
class Label:
    spans: tuple[Span, ...] = ()

    @property
    def text(self) -> str:
        return " ".join("".join(span.text for span in self.spans).split())

    def __bool__(self) -> bool:
        return bool(self.text)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True, eq=False)
class TocPoint:
    label: Label
    raw_href: Optional[Span]
    document: str
    depth: int = 0
    play_order: Optional[int] = None
    id: Optional[str] = None
    children: tuple["TocPoint", ...] = ()

    @property
    def href(self) -> Optional[Link]:
        """Archive path and fragment this point links to, if any."""
        if self.raw_href is None:
            return None
        link = resolve(base_dir(self.document), self.raw_href.text)
        if not link.path:
            return Link(self.document, link.fragment)
        return link

    def points(self) -> Iterator["TocPoint"]:
        """This point and its descendants, depth first."""
        stack: List[TocPoint] = [self]
        while stack:
            point = stack.pop()
            yield point
            stack.extend(reversed(point.children))

    def __repr__(self) -> str:
        return (
            f"TocPoint(label={self.label.text!r}, href={str(self.href)!r}, "
            f"depth={self.depth}, children={len(self.children)})"
        )


class TocTree:
    """Top-level points of a parsed TOC document.

    ``owner`` is whatever holds the arena the spans point into (normally the
    ``Content`` the tree was parsed from).
    """

    def __init__(
        self,
        format: TocFormat,
        document: str,
        roots: tuple[TocPoint, ...],
        title: Label = Label(),
        owner: object = None,
    ) -> None:
        self.format = format
        self.document = document
        self.roots = roots
        self.title = title
        self._owner = owner

    def points(self) -> Iterator[TocPoint]:
        """Every point in document order; each call starts from the roots."""
        for root in self.roots:
            yield from root.points()

    def __iter__(self) -> Iterator[TocPoint]:
        return iter(self.roots)

    def __len__(self) -> int:
        return len(self.roots)

    def __repr__(self) -> str:
        return (
            f"TocTree(format={self.format.value}, document={self.document!r}, "
            f"roots={len(self.roots)})"
        )


def _malformed(document: str, message: str) -> FormatError:
    return FormatError(FormatErrorKind.MALFORMED_TOC, f"{document}: {message}")


def _make_point(
    document: str,
    label: Label,
    raw_href: Optional[Span],
    depth: int,
    children: List[TocPoint],
    play_order: Optional[int] = None,
    point_id: Optional[str] = None,
) -> TocPoint:
    if not label and (raw_href is None or not raw_href.text.strip()):
        raise _malformed(document, f"navigation point at depth {depth} has neither label nor href")
    return TocPoint(
        label=label,
        raw_href=raw_href,
        document=document,
        depth=depth,
        play_order=play_order,
        id=point_id,
        children=tuple(children),
    )


def _play_order(nav_point: Element, document: str) -> Optional[int]:
    value = nav_point.get("playOrder")
    if value is None:
        return None
    try:
        return int(value.text.strip())
    except ValueError:
        logger.warning("toc_play_order_invalid", document=document, value=value.text)
        return None


def _ncx_points(parent: Element, document: str, depth: int) -> List[TocPoint]:
    points: List[TocPoint] = []
    for nav_point in parent.find_all("navPoint"):
        nav_label = nav_point.find("navLabel")
        text = nav_label.find("text") if nav_label is not None else None
        label = Label(tuple(text.text_spans())) if text is not None else Label()
        content = nav_point.find("content")
        raw_href = content.get("src") if content is not None else None
        point_id = nav_point.get("id")
        children = _ncx_points(nav_point, document, depth + 1)
        points.append(
            _make_point(
                document,
                label,
                raw_href,
                depth,
                children,
                play_order=_play_order(nav_point, document),
                point_id=point_id.text if point_id is not None else None,
            )
        )
    return points


def _parse_ncx(root: Element, document: str) -> tuple[tuple[TocPoint, ...], Label]:
    nav_map = root.find("navMap")
    if nav_map is None:
        raise _malformed(document, "NCX document has no <navMap>")
    title = Label()
    doc_title = root.find("docTitle")
    if doc_title is not None and doc_title.find("text") is not None:
        title = Label(tuple(doc_title.find("text").text_spans()))
    return tuple(_ncx_points(nav_map, document, 0)), title


def _nav_type(nav: Element) -> Optional[str]:
    epub_type = nav.get("epub:type") or nav.get("type")
    return epub_type.text if epub_type is not None else None


def _find_toc_nav(root: Element, document: str) -> Optional[Element]:
    navs = list(root.iter("nav"))
    for nav in navs:
        epub_type = _nav_type(nav)
        if epub_type is not None and "toc" in epub_type.split():
            return nav
    # An untyped nav may be the table of contents; a landmarks or
    # page-list nav never is.
    for nav in navs:
        if _nav_type(nav) is None:
            return nav
    if navs:
        types = ", ".join(_nav_type(nav) or "" for nav in navs)
        raise _malformed(document, f"no <nav> is typed toc (found: {types})")
    return None


def _nav_points(ol: Element, document: str, depth: int) -> List[TocPoint]:
    points: List[TocPoint] = []
    for li in ol.find_all("li"):
        target = None
        for child in li.elements():
            if child.local_name in ("a", "span"):
                target = child
                break
        raw_href = target.get("href") if target is not None and target.local_name == "a" else None
        label = Label(tuple(target.text_spans())) if target is not None else Label()
        point_id = target.get("id") if target is not None else None
        nested = li.find("ol")
        children = _nav_points(nested, document, depth + 1) if nested is not None else []
        points.append(
            _make_point(
                document,
                label,
                raw_href,
                depth,
                children,
                point_id=point_id.text if point_id is not None else None,
            )
        )
    return points


def _parse_nav(nav: Element, document: str) -> tuple[tuple[TocPoint, ...], Label]:
    title = Label()
    for child in nav.elements():
        if child.local_name in ("h1", "h2", "h3", "h4", "h5", "h6"):
            title = Label(tuple(child.text_spans()))
            break
    ol = nav.find("ol")
    if ol is None:
        return (), title
    return tuple(_nav_points(ol, document, 0)), title


def parse_toc(
    source: Span,
    document: str,
    format_hint: Optional[TocFormat] = None,
    owner: object = None,
) -> TocTree:
    """Parse an NCX or navigation document held in ``source``.

    The format is taken from the root element; ``format_hint`` is advisory.
    """
    try:
        root = parse(source)
    except XmlError as exc:
        raise _malformed(document, str(exc)) from exc

    if root.local_name == "ncx":
        toc_format = TocFormat.NCX
        roots, title = _parse_ncx(root, document)
    else:
        nav = root if root.local_name == "nav" else _find_toc_nav(root, document)
        if nav is None:
            raise _malformed(
                document, f"root <{root.tag}> is neither an NCX nor a navigation document"
            )
        toc_format = TocFormat.NAV
        roots, title = _parse_nav(nav, document)

    if format_hint is not None and format_hint is not toc_format:
        logger.debug(
            "toc_format_hint_ignored",
            document=document,
            hint=format_hint.value,
            detected=toc_format.value,
        )
    tree = TocTree(toc_format, document, roots, title=title, owner=owner)
    logger.debug("toc_parsed", document=document, format=toc_format.value, roots=len(roots))
    return tree
