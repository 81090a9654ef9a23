"""Tests for container and compression detection."""

import gzip
import io

import zstandard

from dbcsv.detect import (
    OLE2_MAGIC,
    ZIP_MAGIC,
    Compression,
    Container,
    FileType,
    decompress_stream,
    detect_reader_type,
    sniff,
)


class _Pipe(io.RawIOBase):
    """Non-seekable stream handing out a few bytes per read, like a pipe."""

    def __init__(self, data: bytes, chunk: int = 7) -> None:
        self._data = data
        self._chunk = chunk

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        n = min(len(b), self._chunk, len(self._data))
        b[:n] = self._data[:n]
        self._data = self._data[n:]
        return n


class TestSniff:
    """Test suite for classifying stream heads."""

    def test_plain_text_is_csv(self) -> None:
        """Test that anything without a magic number is CSV."""
        assert sniff(b"id;name\n1;x\n") == FileType(Container.CSV)
        assert sniff(b"") == FileType(Container.CSV)

    def test_spreadsheet_magics(self) -> None:
        """Test OLE2 and ZIP signatures."""
        assert sniff(OLE2_MAGIC + b"\x00" * 20) == FileType(Container.XLS)
        assert sniff(ZIP_MAGIC + b"\x00" * 20) == FileType(Container.XLSX)

    def test_gzip_csv(self) -> None:
        """Test that a gzipped head is classified by its content."""
        assert sniff(gzip.compress(b"a,b\n1,2\n")) == FileType(Container.CSV, Compression.GZIP)

    def test_gzip_xlsx(self) -> None:
        """Test that a gzipped workbook keeps its container type."""
        head = gzip.compress(ZIP_MAGIC + b"\x00" * 100)
        assert sniff(head) == FileType(Container.XLSX, Compression.GZIP)

    def test_zstd_csv(self) -> None:
        """Test zstandard detection."""
        head = zstandard.ZstdCompressor().compress(b"a,b\n1,2\n")
        assert sniff(head) == FileType(Container.CSV, Compression.ZSTD)

    def test_corrupt_gzip_is_csv(self) -> None:
        """Test that a gzip magic which does not inflate falls back to CSV."""
        assert sniff(b"\x1f\x8bgarbage that is not deflate") == FileType(Container.CSV)

    def test_str(self) -> None:
        """Test the display form of file types."""
        assert str(FileType(Container.CSV)) == "csv"
        assert str(FileType(Container.XLSX, Compression.ZSTD)) == "xlsx+zstd"
        assert FileType(Container.XLS).is_spreadsheet
        assert not FileType(Container.CSV, Compression.GZIP).is_spreadsheet


class TestDetectReaderType:
    """Test suite for detection without seeking."""

    def test_replays_sniffed_bytes(self) -> None:
        """Test that the returned stream starts at the very first byte."""
        data = b"x;y\n" * 5000
        file_type, stream = detect_reader_type(io.BufferedReader(_Pipe(data)))
        assert file_type == FileType(Container.CSV)
        assert stream.read() == data

    def test_short_stream(self) -> None:
        """Test a stream shorter than the sniffing window."""
        file_type, stream = detect_reader_type(io.BytesIO(b"a\n"))
        assert file_type.container is Container.CSV
        assert stream.read() == b"a\n"


class TestDecompressStream:
    """Test suite for stripping compression layers."""

    def test_plain(self) -> None:
        """Test that uncompressed input passes through."""
        file_type, stream = decompress_stream(io.BytesIO(b"a,b\n"))
        assert file_type == FileType(Container.CSV)
        assert stream.read() == b"a,b\n"

    def test_gzip(self) -> None:
        """Test a gzipped stream."""
        data = b"id,name\n" + b"1,alpha\n" * 2000
        file_type, stream = decompress_stream(io.BytesIO(gzip.compress(data)))
        assert file_type == FileType(Container.CSV, Compression.GZIP)
        assert stream.read() == data

    def test_zstd_from_pipe(self) -> None:
        """Test a zstandard stream read from a non-seekable source."""
        data = b"id;name\n" + b"2;beta\n" * 2000
        packed = zstandard.ZstdCompressor().compress(data)
        file_type, stream = decompress_stream(io.BufferedReader(_Pipe(packed, chunk=100)))
        assert file_type.compression is Compression.ZSTD
        assert stream.read() == data

    def test_nested_layers(self) -> None:
        """Test that every compression layer is removed."""
        data = b"a;b\n1;2\n"
        packed = gzip.compress(zstandard.ZstdCompressor().compress(data))
        file_type, stream = decompress_stream(io.BytesIO(packed))
        assert file_type == FileType(Container.CSV, Compression.GZIP)
        assert stream.read() == data
