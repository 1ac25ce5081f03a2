from pathlib import Path

from ebooklib import epub
import pytest
import structlog

from epub_fixtures import CHAPTER_XHTML, NCX_DEPTH_3, build_epub, ncx_epub, opf
from spanepub import book as book_util
from spanepub.errors import FormatError, FormatErrorKind, ReadError, ReadErrorKind
from spanepub.hrefs import Href
from spanepub.toc import TocFormat

TITLES = ("Prologue", "Chapter One", "Chapter Two", "Epilogue")


def _write_sample_epub(epub_path: Path) -> None:
    book = epub.EpubBook()
    book.set_identifier("test-book")
    book.set_title("Sample Book")
    book.set_language("en")

    chapters = []
    for idx, title in enumerate(TITLES, start=1):
        chapter = epub.EpubHtml(
            title=title,
            file_name=f"chapter-{idx}.xhtml",
            lang="en",
        )
        chapter.content = f"<h1>{title}</h1><p>Body {idx}.</p>"
        book.add_item(chapter)
        chapters.append(chapter)

    book.toc = tuple(chapters)
    book.spine = ["nav", *chapters]
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    epub.write_epub(str(epub_path), book)


@pytest.fixture
def sample_epub(tmp_path: Path) -> Path:
    epub_path = tmp_path / "sample.epub"
    _write_sample_epub(epub_path)
    return epub_path


def test_open_written_epub_and_read_nav_toc(sample_epub: Path) -> None:
    with book_util.open_book(sample_epub) as book:
        tree = book.toc()
        assert tree.format is TocFormat.NAV
        assert [point.label.text for point in tree.points()] == list(TITLES)
        first = tree.roots[0]
        assert first.href.target.endswith("chapter-1.xhtml")
        assert first.href.fragment is None
        assert first.href.target in book.container


def test_toc_links_are_readable(sample_epub: Path) -> None:
    with book_util.open_book(sample_epub) as book:
        for point, title in zip(book.toc().points(), TITLES):
            content = book.read(point.href.href())
            assert content.media_type == "application/xhtml+xml"
            assert title in content.text()


def test_spine_reads_in_order(sample_epub: Path) -> None:
    with book_util.open_book(sample_epub) as book:
        assert len(book) == 5
        assert book.read(Href.spine(0)).path == book.package.toc_item.href
        chapter = book.read(Href.spine(1))
        assert "Prologue" in chapter.text()
        with pytest.raises(ReadError) as excinfo:
            book.read(Href.spine(99))
        assert excinfo.value.kind is ReadErrorKind.NOT_FOUND


def test_read_toc_is_idempotent(sample_epub: Path) -> None:
    with book_util.open_book(sample_epub) as book:
        first = book.read(Href.TOC)
        second = book.read(Href.TOC)
        assert first.bytes() == second.bytes()
        assert first.arena is not second.arena


def test_content_doc_parses_xhtml(sample_epub: Path) -> None:
    with book_util.open_book(sample_epub) as book:
        doc = book.read(Href.spine(2)).doc()
        heading = doc.find("h1")
        assert heading is not None
        assert heading.get_text(strip=True) == "Chapter One"


def test_resource_iteration(sample_epub: Path) -> None:
    with book_util.open_book(sample_epub) as book:
        xhtml = list(book.items_of_type("application/xhtml+xml"))
        assert len(xhtml) >= len(TITLES)
        assert all(item.is_xhtml for item in xhtml)
        assert len(list(book.resources())) == len(book.package.manifest)
        spine = list(book.spine_items())
        assert [item.id for item in spine][0] == "nav"


def test_ncx_book_toc() -> None:
    book = book_util.open_book(ncx_epub())
    content = book.read(Href.TOC)
    assert isinstance(content, book_util.Content)
    assert content.media_type == "application/x-dtbncx+xml"
    tree = content.toc()
    assert tree.format is TocFormat.NCX
    assert [point.label.text for point in tree.roots] == ["Part I", "Part II"]
    assert tree.roots[0].children[0].href.target == "OEBPS/text/ch1.xhtml"


def test_unconfigured_logging_keeps_stdout_clean(capsys) -> None:
    structlog.reset_defaults()
    with book_util.open_book(ncx_epub()) as book:
        tree = book.toc()
        assert len(list(tree.points())) == 5
    assert capsys.readouterr().out == ""


def test_stored_and_deflated_resources_match() -> None:
    chapter = CHAPTER_XHTML.format(title="Same")
    package = opf(
        items=[
            '<item id="a" href="a.xhtml" media-type="application/xhtml+xml"/>',
            '<item id="b" href="b.xhtml" media-type="application/xhtml+xml"/>',
        ]
    )
    book = book_util.open_book(
        build_epub(
            package,
            extra={"OEBPS/a.xhtml": chapter, "OEBPS/b.xhtml": chapter},
            stored={"OEBPS/a.xhtml"},
        )
    )
    stored = book.read(Href.path("OEBPS/a.xhtml"))
    deflated = book.read(Href.path("OEBPS/b.xhtml"))
    assert stored.bytes() == deflated.bytes() == chapter.encode("utf-8")
    assert book.container["OEBPS/a.xhtml"].crc32 == book.container["OEBPS/b.xhtml"].crc32


def test_read_missing_path() -> None:
    book = book_util.open_book(ncx_epub())
    with pytest.raises(ReadError) as excinfo:
        book.read(Href.path("OEBPS/nope.xhtml"))
    assert excinfo.value.kind is ReadErrorKind.NOT_FOUND


def test_read_guesses_media_type_outside_manifest() -> None:
    book = book_util.open_book(ncx_epub())
    assert book.read(Href.path("mimetype")).media_type == "application/octet-stream"
    assert book.read(Href.path("META-INF/container.xml")).media_type in {
        "application/xml",
        "text/xml",
    }


def test_toc_document_missing_from_archive() -> None:
    package = opf(items=['<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>'])
    book = book_util.open_book(build_epub(package))
    with pytest.raises(FormatError) as excinfo:
        book.toc()
    assert excinfo.value.kind is FormatErrorKind.MISSING_TOC


def test_open_non_zip_bytes() -> None:
    with pytest.raises(FormatError) as excinfo:
        book_util.open_book(b"%PDF-1.7 definitely not an epub")
    assert excinfo.value.kind is FormatErrorKind.NOT_A_ZIP


def test_open_from_stream_leaves_stream_open(tmp_path: Path) -> None:
    path = tmp_path / "book.epub"
    path.write_bytes(build_epub(opf(items=[]), extra={"OEBPS/toc.ncx": NCX_DEPTH_3}))
    with path.open("rb") as handle:
        book = book_util.open_book(handle)
        book.close()
        assert not handle.closed
