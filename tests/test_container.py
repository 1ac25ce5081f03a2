import io
import zipfile

import pytest

from epub_fixtures import build_zip
from spanepub.arena import Arena
from spanepub.config import ReaderConfig
from spanepub.container import FLAG_DATA_DESCRIPTOR, CompressionMethod, Container
from spanepub.entry import read_entry
from spanepub.errors import FormatError, FormatErrorKind, ReadError, ReadErrorKind
from spanepub.source import ByteSource

TEXT = b"hello world, " * 200


def _open(data: bytes, config: ReaderConfig = None) -> Container:
    return Container.open(ByteSource(data), config)


def test_index_has_every_entry_with_offsets_in_range() -> None:
    data = build_zip(
        {"mimetype": "application/epub+zip", "OEBPS/": b"", "OEBPS/a.txt": TEXT},
        stored={"mimetype", "OEBPS/"},
    )
    container = _open(data)
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        expected = [info.filename for info in zf.infolist()]
    assert container.paths() == expected
    assert len(container) == len(expected)
    for entry in container:
        assert 0 <= entry.offset < len(data)
    assert container["OEBPS/"].is_dir
    assert container.get("missing") is None


def test_index_records_compression_method() -> None:
    data = build_zip({"s.txt": TEXT, "d.txt": TEXT}, stored={"s.txt"})
    container = _open(data)
    assert container["s.txt"].compression is CompressionMethod.STORED
    assert container["d.txt"].compression is CompressionMethod.DEFLATE
    assert container["d.txt"].uncompressed_size == len(TEXT)


def test_archive_comment_is_skipped() -> None:
    data = build_zip({"a.txt": TEXT}, comment=b"x" * 4000)
    assert _open(data).paths() == ["a.txt"]


def test_longest_comment_with_embedded_signatures() -> None:
    fake = b"PK\x05\x06"
    middle = b"x" * 30_000 + fake + b"\x00" * 40
    comment = fake + middle + b"y" * (0xFFFF - len(fake) * 2 - len(middle)) + fake
    assert len(comment) == 0xFFFF
    data = build_zip({"a.txt": TEXT}, comment=comment)
    container = _open(data)
    assert container.paths() == ["a.txt"]
    assert bytes(read_entry(container.source, container["a.txt"], Arena()).raw) == TEXT


class _ForwardOnly:
    """Write-only stream that refuses to seek, as a pipe or socket would."""

    def __init__(self) -> None:
        self.buffer = io.BytesIO()

    def write(self, data: bytes) -> int:
        return self.buffer.write(data)

    def tell(self) -> int:
        return self.buffer.tell()

    def seek(self, *args) -> int:
        raise OSError("stream is not seekable")

    def flush(self) -> None:
        pass


def test_entries_with_data_descriptors() -> None:
    stream = _ForwardOnly()
    with zipfile.ZipFile(stream, "w") as zf:
        zf.writestr(zipfile.ZipInfo("s.txt"), TEXT, compress_type=zipfile.ZIP_STORED)
        zf.writestr(zipfile.ZipInfo("d.txt"), TEXT, compress_type=zipfile.ZIP_DEFLATED)
    container = _open(stream.buffer.getvalue())
    for path in ("s.txt", "d.txt"):
        entry = container[path]
        assert entry.flags & FLAG_DATA_DESCRIPTOR
        assert entry.uncompressed_size == len(TEXT)
        assert bytes(read_entry(container.source, entry, Arena()).raw) == TEXT


@pytest.mark.parametrize("data", [b"", b"not a zip at all", b"PK\x03\x04" + b"\x00" * 64])
def test_non_zip_source(data: bytes) -> None:
    with pytest.raises(FormatError) as excinfo:
        _open(data)
    assert excinfo.value.kind is FormatErrorKind.NOT_A_ZIP


def test_truncated_archive() -> None:
    data = build_zip({"a.txt": TEXT, "b.txt": TEXT})
    with pytest.raises(FormatError) as excinfo:
        _open(data[40:])
    assert excinfo.value.kind is FormatErrorKind.TRUNCATED_ARCHIVE


def test_too_many_entries_is_unsafe() -> None:
    data = build_zip({"a.txt": TEXT, "b.txt": TEXT})
    with pytest.raises(FormatError) as excinfo:
        _open(data, ReaderConfig(max_entries=1))
    assert excinfo.value.kind is FormatErrorKind.UNSAFE_ARCHIVE


def test_stored_and_deflate_decompress_identically() -> None:
    data = build_zip({"s.txt": TEXT, "d.txt": TEXT}, stored={"s.txt"})
    container = _open(data)
    arena = Arena()
    stored = read_entry(container.source, container["s.txt"], arena)
    deflated = read_entry(container.source, container["d.txt"], arena)
    assert stored == deflated
    assert bytes(stored.raw) == TEXT


def test_arena_is_append_only() -> None:
    data = build_zip({"a.txt": b"first", "b.txt": b"second"})
    container = _open(data)
    arena = Arena()
    first = read_entry(container.source, container["a.txt"], arena)
    view = first.raw
    second = read_entry(container.source, container["b.txt"], arena)
    assert len(arena) == 2
    assert bytes(view) == b"first"
    assert bytes(second.raw) == b"second"
    assert first.raw.obj is first.buffer


def test_unsupported_method_fails_only_on_read() -> None:
    data = build_zip({"a.txt": TEXT, "b.txt": TEXT}, stored={"a.txt"}, compression=zipfile.ZIP_BZIP2)
    container = _open(data)
    assert container["b.txt"].compression is CompressionMethod.UNSUPPORTED
    assert bytes(read_entry(container.source, container["a.txt"], Arena()).raw) == TEXT
    with pytest.raises(ReadError) as excinfo:
        read_entry(container.source, container["b.txt"], Arena())
    assert excinfo.value.kind is ReadErrorKind.UNSUPPORTED_COMPRESSION
    assert excinfo.value.method == zipfile.ZIP_BZIP2


def test_crc_mismatch_is_corrupt() -> None:
    data = build_zip({"a.txt": b"hello world"}, stored={"a.txt"})
    data = data.replace(b"hello world", b"jello world")
    container = _open(data)
    with pytest.raises(ReadError) as excinfo:
        read_entry(container.source, container["a.txt"], Arena())
    assert excinfo.value.kind is ReadErrorKind.CORRUPT_ENTRY
    assert excinfo.value.path == "a.txt"


def test_crc_check_can_be_disabled() -> None:
    data = build_zip({"a.txt": b"hello world"}, stored={"a.txt"})
    data = data.replace(b"hello world", b"jello world")
    container = _open(data)
    span = read_entry(container.source, container["a.txt"], Arena(), ReaderConfig(verify_crc=False))
    assert bytes(span.raw) == b"jello world"


def test_local_header_mismatch_is_corrupt() -> None:
    data = bytearray(build_zip({"a.txt": b"hello world"}, stored={"a.txt"}))
    # Compression method lives at offset 8 of the local header.
    data[8:10] = (8).to_bytes(2, "little")
    container = _open(bytes(data))
    with pytest.raises(ReadError) as excinfo:
        read_entry(container.source, container["a.txt"], Arena())
    assert excinfo.value.kind is ReadErrorKind.CORRUPT_ENTRY


def test_entry_size_limit() -> None:
    data = build_zip({"a.txt": TEXT})
    container = _open(data)
    with pytest.raises(ReadError) as excinfo:
        read_entry(container.source, container["a.txt"], Arena(), ReaderConfig(max_entry_size=16))
    assert excinfo.value.kind is ReadErrorKind.UNSAFE_ENTRY


def test_compression_ratio_limit() -> None:
    data = build_zip({"zeros.bin": b"\x00" * 100_000})
    container = _open(data)
    with pytest.raises(ReadError) as excinfo:
        read_entry(
            container.source,
            container["zeros.bin"],
            Arena(),
            ReaderConfig(max_compression_ratio=10),
        )
    assert excinfo.value.kind is ReadErrorKind.UNSAFE_ENTRY


def test_file_source(tmp_path) -> None:
    path = tmp_path / "a.zip"
    path.write_bytes(build_zip({"a.txt": TEXT}))
    source = ByteSource(path)
    try:
        container = Container.open(source)
        assert bytes(read_entry(source, container["a.txt"], Arena()).raw) == TEXT
    finally:
        source.close()
