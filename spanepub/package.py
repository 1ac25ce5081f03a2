from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .arena import Arena
from .config import ReaderConfig
from .container import Container
from .entry import read_entry
from .errors import FormatError, FormatErrorKind, ReadError, XmlError
from .hrefs import base_dir, resolve
from .logs import get_logger
from .markup import Element, parse

logger = get_logger(__name__)

CONTAINER_PATH = "META-INF/container.xml"
OPF_MEDIA_TYPE = "application/oebps-package+xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"
XHTML_MEDIA_TYPE = "application/xhtml+xml"
CSS_MEDIA_TYPE = "text/css"


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: tuple[str, ...] = ()

    @property
    def is_xhtml(self) -> bool:
        return self.media_type == XHTML_MEDIA_TYPE

    @property
    def is_css(self) -> bool:
        return self.media_type == CSS_MEDIA_TYPE

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")

    @property
    def is_ncx(self) -> bool:
        return self.media_type == NCX_MEDIA_TYPE

    @property
    def is_nav(self) -> bool:
        return "nav" in self.properties


@dataclass(frozen=True)
class SpineItem:
    idref: str
    linear: bool = True


@dataclass(frozen=True)
class GuideReference:
    type: str
    title: str
    href: str


@dataclass(frozen=True)
class PackageInfo:
    opf_path: str
    manifest: Dict[str, ManifestItem]
    spine: tuple[SpineItem, ...]
    guide: tuple[GuideReference, ...] = ()
    toc_id: Optional[str] = None
    _by_href: Dict[str, ManifestItem] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        for item in self.manifest.values():
            self._by_href.setdefault(item.href, item)

    @property
    def opf_dir(self) -> str:
        return base_dir(self.opf_path)

    @property
    def toc_item(self) -> Optional[ManifestItem]:
        if self.toc_id is None:
            return None
        return self.manifest.get(self.toc_id)

    def item_for_href(self, path: str) -> Optional[ManifestItem]:
        return self._by_href.get(path)

    def spine_item(self, index: int) -> ManifestItem:
        """Manifest item at spine position ``index`` (IndexError/KeyError if absent)."""
        return self.manifest[self.spine[index].idref]


def _read_xml(container: Container, path: str, config: ReaderConfig) -> Element:
    entry = container.get(path)
    if entry is None:
        raise KeyError(path)
    span = read_entry(container.source, entry, Arena(), config)
    return parse(span)


def _attr(element: Element, name: str) -> str:
    value = element.get(name)
    return value.text.strip() if value is not None else ""


def find_rootfile(container: Container, config: Optional[ReaderConfig] = None) -> str:
    config = config or ReaderConfig()
    try:
        root = _read_xml(container, CONTAINER_PATH, config)
    except KeyError:
        raise FormatError(
            FormatErrorKind.MISSING_CONTAINER, f"{CONTAINER_PATH} is missing"
        ) from None
    except (ReadError, XmlError) as exc:
        raise FormatError(
            FormatErrorKind.MISSING_CONTAINER, f"{CONTAINER_PATH} is unreadable: {exc}"
        ) from exc

    rootfiles = list(root.iter("rootfile"))
    chosen = None
    for rootfile in rootfiles:
        if _attr(rootfile, "media-type") == OPF_MEDIA_TYPE:
            chosen = rootfile
            break
    if chosen is None and rootfiles:
        chosen = rootfiles[0]
    full_path = _attr(chosen, "full-path") if chosen is not None else ""
    if not full_path:
        raise FormatError(
            FormatErrorKind.MISSING_CONTAINER,
            f"{CONTAINER_PATH} names no package document",
        )
    return resolve("", full_path).path


def _parse_manifest(opf: Element, opf_dir: str) -> Dict[str, ManifestItem]:
    manifest: Dict[str, ManifestItem] = {}
    section = opf.find("manifest")
    if section is None:
        raise FormatError(FormatErrorKind.MALFORMED_PACKAGE, "Package has no <manifest>")
    for item in section.find_all("item"):
        item_id = _attr(item, "id")
        href = _attr(item, "href")
        if not item_id or not href:
            logger.warning("manifest_item_skipped", id=item_id, href=href)
            continue
        if item_id in manifest:
            logger.warning("manifest_item_duplicate", id=item_id)
            continue
        manifest[item_id] = ManifestItem(
            id=item_id,
            href=resolve(opf_dir, href).path,
            media_type=_attr(item, "media-type"),
            properties=tuple(_attr(item, "properties").split()),
        )
    return manifest


def _parse_spine(opf: Element) -> tuple[Optional[Element], List[SpineItem]]:
    section = opf.find("spine")
    refs: List[SpineItem] = []
    if section is None:
        return None, refs
    for itemref in section.find_all("itemref"):
        idref = _attr(itemref, "idref")
        if not idref:
            logger.warning("spine_itemref_skipped", reason="missing idref")
            continue
        refs.append(SpineItem(idref=idref, linear=_attr(itemref, "linear") != "no"))
    return section, refs


def _parse_guide(opf: Element, opf_dir: str) -> List[GuideReference]:
    section = opf.find("guide")
    if section is None:
        return []
    references: List[GuideReference] = []
    for reference in section.find_all("reference"):
        href = _attr(reference, "href")
        if not href:
            continue
        references.append(
            GuideReference(
                type=_attr(reference, "type"),
                title=_attr(reference, "title"),
                href=str(resolve(opf_dir, href)),
            )
        )
    return references


def _find_toc_id(
    manifest: Dict[str, ManifestItem], spine: Optional[Element]
) -> Optional[str]:
    """Prefer the EPUB3 nav document, then the spine ``toc`` NCX, then any NCX."""
    for item in manifest.values():
        if item.is_nav:
            return item.id
    if spine is not None:
        toc_id = _attr(spine, "toc")
        if toc_id and toc_id in manifest:
            return toc_id
    for item in manifest.values():
        if item.is_ncx:
            return item.id
    return None


def resolve_package(container: Container, config: Optional[ReaderConfig] = None) -> PackageInfo:
    config = config or ReaderConfig()
    opf_path = find_rootfile(container, config)
    try:
        opf = _read_xml(container, opf_path, config)
    except KeyError:
        raise FormatError(
            FormatErrorKind.MISSING_PACKAGE, f"Package document {opf_path} is missing"
        ) from None
    except ReadError as exc:
        raise FormatError(
            FormatErrorKind.MISSING_PACKAGE, f"Package document {opf_path} is unreadable: {exc}"
        ) from exc
    except XmlError as exc:
        raise FormatError(
            FormatErrorKind.MALFORMED_PACKAGE, f"Package document {opf_path}: {exc}"
        ) from exc

    if opf.local_name != "package":
        raise FormatError(
            FormatErrorKind.MALFORMED_PACKAGE,
            f"Package document root is <{opf.tag}>, expected <package>",
        )

    opf_dir = base_dir(opf_path)
    manifest = _parse_manifest(opf, opf_dir)
    spine_element, spine = _parse_spine(opf)
    info = PackageInfo(
        opf_path=opf_path,
        manifest=manifest,
        spine=tuple(spine),
        guide=tuple(_parse_guide(opf, opf_dir)),
        toc_id=_find_toc_id(manifest, spine_element),
    )
    logger.debug(
        "package_resolved",
        opf_path=opf_path,
        manifest_items=len(manifest),
        spine_items=len(spine),
        toc_id=info.toc_id,
    )
    return info
