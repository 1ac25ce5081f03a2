"""Archive paths, links and the ``Href`` lookup key."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from posixpath import dirname as posix_dirname
from typing import ClassVar, List, Optional
from urllib.parse import unquote

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")


class HrefKind(Enum):
    TOC = "toc"
    SPINE = "spine"
    PATH = "path"


@dataclass(frozen=True)
class Href:
    kind: HrefKind
    index: Optional[int] = None
    target: Optional[str] = None

    TOC: ClassVar["Href"]

    @classmethod
    def spine(cls, index: int) -> "Href":
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise ValueError(f"Spine index must be a non-negative integer, got {index!r}")
        return cls(HrefKind.SPINE, index=index)

    @classmethod
    def path(cls, path: str) -> "Href":
        if not path:
            raise ValueError("Path href must not be empty")
        return cls(HrefKind.PATH, target=path)

    def __str__(self) -> str:
        if self.kind is HrefKind.SPINE:
            return f"spine[{self.index}]"
        if self.kind is HrefKind.PATH:
            return self.target or ""
        return "toc"


Href.TOC = Href(HrefKind.TOC)


@dataclass(frozen=True)
class Link:
    """A resolved reference: archive path plus optional fragment."""

    path: str
    fragment: Optional[str] = None

    @property
    def is_external(self) -> bool:
        return bool(_SCHEME_RE.match(self.path))

    def without_fragment(self) -> "Link":
        if self.fragment is None:
            return self
        return Link(self.path)

    def href(self) -> Href:
        return Href.path(self.path)

    def __str__(self) -> str:
        if self.fragment is None:
            return self.path
        return f"{self.path}#{self.fragment}"


def split_fragment(href: str) -> tuple[str, Optional[str]]:
    if "#" not in href:
        return href, None
    path, fragment = href.split("#", 1)
    return path, fragment


def normalize_path(path: str) -> str:
    """Collapse ``.``/``..`` and duplicate slashes; ``..`` never climbs past the root."""
    trailing = path.endswith("/")
    parts: List[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    normalized = "/".join(parts)
    if trailing and normalized:
        normalized += "/"
    return normalized


def base_dir(document_path: str) -> str:
    """Directory containing an archive document, with a trailing slash."""
    directory = posix_dirname(document_path)
    return f"{directory}/" if directory else ""


def resolve(base: str, relative: str) -> Link:
    """Resolve ``relative`` against the archive directory ``base``.

    A leading slash addresses the archive root. URLs with a scheme are kept
    verbatim. Percent-escapes are decoded; matching stays case-sensitive.
    """
    relative = (relative or "").strip()
    if _SCHEME_RE.match(relative):
        path, fragment = split_fragment(relative)
        return Link(path, fragment)
    path, fragment = split_fragment(relative)
    if fragment is not None:
        fragment = unquote(fragment)
    # Some EPUBs percent-encode filenames in TOC entries.
    path = unquote(path)
    if not path:
        # "#frag" refers to the referencing document itself.
        return Link("", fragment)
    if path.startswith("/"):
        return Link(normalize_path(path), fragment)
    base = base.rstrip("/")
    joined = f"{base}/{path}" if base else path
    return Link(normalize_path(joined), fragment)
