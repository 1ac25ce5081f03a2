"""Minimal non-validating XML tokenizer that yields spans instead of strings.

Namespace prefixes are kept verbatim in names; callers match on local names.
Only UTF-8 (and its ASCII subset) is accepted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Union

from .arena import Span
from .errors import XmlError, XmlErrorKind

_WS_RE = re.compile(rb"[ \t\r\n]*")
_NAME_RE = re.compile(rb"[^ \t\r\n/>=<\"']+")
_ENCODING_RE = re.compile(rb"""encoding\s*=\s*["']([A-Za-z0-9._-]+)["']""")
_UTF8_BOM = b"\xef\xbb\xbf"
_UTF16_BOMS = (b"\xff\xfe", b"\xfe\xff")
_ACCEPTED_ENCODINGS = {"utf-8", "utf8", "us-ascii", "ascii"}


class EventKind(Enum):
    START_TAG = "start"
    ATTRIBUTE = "attribute"
    TEXT = "text"
    END_TAG = "end"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    # Tag or attribute name.
    name: Optional[Span] = None
    # Attribute value or character data.
    value: Optional[Span] = None
    cdata: bool = False


def _malformed(message: str, offset: int) -> XmlError:
    return XmlError(XmlErrorKind.MALFORMED_MARKUP, f"{message} at byte {offset}", offset)


def _check_encoding(buf: bytes, start: int, end: int) -> int:
    for bom in _UTF16_BOMS:
        if buf.startswith(bom, start, end):
            raise XmlError(
                XmlErrorKind.UNSUPPORTED_ENCODING, "UTF-16 documents are not supported", start
            )
    if buf.startswith(_UTF8_BOM, start, end):
        start += len(_UTF8_BOM)
    if buf.startswith(b"<?xml", start, end):
        decl_end = buf.find(b"?>", start, end)
        if decl_end < 0:
            raise _malformed("unterminated XML declaration", start)
        match = _ENCODING_RE.search(buf, start, decl_end)
        if match:
            encoding = match.group(1).decode("ascii").lower()
            if encoding not in _ACCEPTED_ENCODINGS:
                raise XmlError(
                    XmlErrorKind.UNSUPPORTED_ENCODING,
                    f"Unsupported document encoding {encoding!r}",
                    start,
                )
    try:
        # Validation only; the decoded copy is discarded.
        str(memoryview(buf)[start:end], "utf-8")
    except UnicodeDecodeError as exc:
        raise _malformed("invalid UTF-8 byte sequence", start + exc.start) from exc
    return start


def _skip_to(buf: bytes, marker: bytes, pos: int, end: int, what: str) -> int:
    found = buf.find(marker, pos, end)
    if found < 0:
        raise _malformed(f"unterminated {what}", pos)
    return found + len(marker)


def _skip_doctype(buf: bytes, pos: int, end: int) -> int:
    close = buf.find(b">", pos, end)
    subset = buf.find(b"[", pos, end)
    if 0 <= subset < close:
        close = buf.find(b"]", subset, end)
        if close < 0:
            raise _malformed("unterminated DOCTYPE internal subset", pos)
        close = buf.find(b">", close, end)
    if close < 0:
        raise _malformed("unterminated DOCTYPE", pos)
    return close + 1


def tokenize(source: Span) -> Iterator[Event]:
    """Yield events over ``source`` in document order.

    Self-closing tags produce a START_TAG followed directly by an END_TAG.
    Unmatched end tags, unclosed elements and unterminated attributes raise
    ``XmlError``.
    """
    buf, end = source.buffer, source.end
    pos = _check_encoding(buf, source.start, end)
    stack: List[bytes] = []
    seen_root = False

    while pos < end:
        lt = buf.find(b"<", pos, end)
        text_end = end if lt < 0 else lt
        if text_end > pos and stack:
            yield Event(EventKind.TEXT, value=Span(buf, pos, text_end))
        if lt < 0:
            break

        if buf.startswith(b"<!--", lt, end):
            pos = _skip_to(buf, b"-->", lt + 4, end, "comment")
        elif buf.startswith(b"<![CDATA[", lt, end):
            close = buf.find(b"]]>", lt + 9, end)
            if close < 0:
                raise _malformed("unterminated CDATA section", lt)
            if stack:
                yield Event(EventKind.TEXT, value=Span(buf, lt + 9, close), cdata=True)
            pos = close + 3
        elif buf.startswith(b"<!", lt, end):
            pos = _skip_doctype(buf, lt + 2, end)
        elif buf.startswith(b"<?", lt, end):
            pos = _skip_to(buf, b"?>", lt + 2, end, "processing instruction")
        elif buf.startswith(b"</", lt, end):
            match = _NAME_RE.match(buf, lt + 2, end)
            if not match:
                raise _malformed("missing end tag name", lt)
            name = Span(buf, match.start(), match.end())
            close = _WS_RE.match(buf, match.end(), end).end()
            if not buf.startswith(b">", close, end):
                raise _malformed("unterminated end tag", lt)
            if not stack:
                raise _malformed(f"unmatched end tag </{name.decode()}>", lt)
            open_name = stack.pop()
            if open_name != name.raw:
                raise _malformed(
                    f"end tag </{name.decode()}> does not match <{open_name.decode('utf-8')}>",
                    lt,
                )
            yield Event(EventKind.END_TAG, name=name)
            pos = close + 1
        else:
            if seen_root and not stack:
                raise _malformed("content after the root element", lt)
            match = _NAME_RE.match(buf, lt + 1, end)
            if not match:
                raise _malformed("missing tag name", lt)
            name = Span(buf, match.start(), match.end())
            yield Event(EventKind.START_TAG, name=name)
            pos = match.end()
            while True:
                pos = _WS_RE.match(buf, pos, end).end()
                if pos >= end:
                    raise _malformed(f"unterminated tag <{name.decode()}>", lt)
                if buf.startswith(b"/>", pos, end):
                    yield Event(EventKind.END_TAG, name=name)
                    pos += 2
                    break
                if buf.startswith(b">", pos, end):
                    stack.append(bytes(name.raw))
                    pos += 1
                    break
                attr = _NAME_RE.match(buf, pos, end)
                if not attr:
                    raise _malformed(f"invalid attribute in <{name.decode()}>", pos)
                pos = _WS_RE.match(buf, attr.end(), end).end()
                if not buf.startswith(b"=", pos, end):
                    raise _malformed(f"attribute without value in <{name.decode()}>", pos)
                pos = _WS_RE.match(buf, pos + 1, end).end()
                quote = buf[pos : pos + 1]
                if quote not in (b'"', b"'"):
                    raise _malformed(f"unquoted attribute value in <{name.decode()}>", pos)
                close = buf.find(quote, pos + 1, end)
                lt_inside = buf.find(b"<", pos + 1, close if close >= 0 else end)
                if close < 0 or lt_inside >= 0:
                    raise _malformed(f"unterminated attribute value in <{name.decode()}>", pos)
                yield Event(
                    EventKind.ATTRIBUTE,
                    name=Span(buf, attr.start(), attr.end()),
                    value=Span(buf, pos + 1, close),
                )
                pos = close + 1
            seen_root = True

    if stack:
        raise _malformed(f"unclosed element <{stack[-1].decode('utf-8')}>", end)
    if not seen_root:
        raise _malformed("document has no root element", source.start)


def local_name(name: str) -> str:
    return name.rsplit(":", 1)[-1]


class Element:
    """An element whose name, attributes and text are spans into the source."""

    __slots__ = ("name", "attributes", "children", "parent")

    def __init__(self, name: Span, parent: Optional["Element"] = None) -> None:
        self.name = name
        self.attributes: List[tuple[Span, Span]] = []
        self.children: List[Union["Element", Span]] = []
        self.parent = parent

    def __repr__(self) -> str:
        return f"<Element {self.tag}>"

    @property
    def tag(self) -> str:
        return self.name.decode()

    @property
    def local_name(self) -> str:
        return local_name(self.tag)

    def get(self, name: str) -> Optional[Span]:
        """Attribute value by qualified name, falling back to local name."""
        wanted = name.encode("utf-8")
        for key, value in self.attributes:
            if key == wanted:
                return value
        if ":" in name:
            return None
        for key, value in self.attributes:
            if local_name(key.decode()) == name:
                return value
        return None

    def elements(self) -> Iterator["Element"]:
        for child in self.children:
            if isinstance(child, Element):
                yield child

    def find(self, name: str) -> Optional["Element"]:
        for child in self.elements():
            if child.local_name == name:
                return child
        return None

    def find_all(self, name: str) -> List["Element"]:
        return [child for child in self.elements() if child.local_name == name]

    def iter(self, name: Optional[str] = None) -> Iterator["Element"]:
        """Depth-first over this element and its descendants."""
        stack: List[Element] = [self]
        while stack:
            node = stack.pop()
            if name is None or node.local_name == name:
                yield node
            stack.extend(reversed(list(node.elements())))

    def text_spans(self) -> List[Span]:
        spans: List[Span] = []
        for child in self.children:
            if isinstance(child, Element):
                spans.extend(child.text_spans())
            else:
                spans.append(child)
        return spans

    @property
    def text(self) -> str:
        return " ".join("".join(span.text for span in self.text_spans()).split())


def parse(source: Span) -> Element:
    """Build an element tree over ``source`` and return its root."""
    root: Optional[Element] = None
    current: Optional[Element] = None
    for event in tokenize(source):
        if event.kind is EventKind.START_TAG:
            element = Element(event.name, parent=current)
            if current is None:
                root = element
            else:
                current.children.append(element)
            current = element
        elif event.kind is EventKind.ATTRIBUTE:
            current.attributes.append((event.name, event.value))
        elif event.kind is EventKind.TEXT:
            current.children.append(_CData(event.value) if event.cdata else event.value)
        else:
            current = current.parent
    return root


class _CData(Span):
    """Character data from a CDATA section; entity references stay literal."""

    __slots__ = ()

    def __init__(self, span: Span) -> None:
        super().__init__(span.buffer, span.start, span.end)

    @property
    def text(self) -> str:
        return self.decode()
