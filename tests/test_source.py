"""Tests for opening row sources."""

import gzip
import io
import sys
import tempfile
from pathlib import Path

import openpyxl
import pytest

from dbcsv.concurrency import Context
from dbcsv.detect import Compression, Container
from dbcsv.errors import Cancelled, FormatError
from dbcsv.source import Source, SourceOptions, python_encoding


def values_of(src: Source) -> list[list[str]]:
    return [row.values for _, row in src.iter_rows(Context())]


class TestPythonEncoding:
    """Test suite for charset names."""

    def test_utf8_strips_bom(self) -> None:
        """Test that UTF-8 input may start with a byte order mark."""
        assert python_encoding("UTF-8") == "utf-8-sig"
        assert python_encoding("") == "utf-8-sig"

    def test_other_charset(self) -> None:
        """Test a single byte charset."""
        assert python_encoding("latin1") == "iso8859-1"

    def test_unknown_charset(self) -> None:
        """Test that an unknown charset is a format error."""
        with pytest.raises(FormatError):
            python_encoding("no-such-charset")


class TestSourceOpen:
    """Test suite for Source.open."""

    def test_regular_file_is_read_in_place(self, tmp_path: Path) -> None:
        """Test that a plain file needs no temporary copy."""
        path = tmp_path / "data.csv"
        path.write_text("a;b\n1;2\n", encoding="utf-8")
        with Source.open(str(path)) as src:
            assert src.path == str(path)
            assert src.file_type.container is Container.CSV
            assert values_of(src) == [["a", "b"], ["1", "2"]]
        assert path.exists()

    def test_truncated_gzip_is_a_format_error(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a cut off compressed file is reported and leaves no temporary file."""
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path / "spool"))
        (tmp_path / "spool").mkdir()
        body = gzip.compress(b"a,b\n" + b"1,2\n" * 5000)
        path = tmp_path / "data.csv.gz"
        path.write_bytes(body[: len(body) // 2])
        with pytest.raises(FormatError, match="corrupt gzip"):
            Source.open(str(path))
        assert list((tmp_path / "spool").iterdir()) == []

    def test_gzip_file_is_spooled(self, tmp_path: Path) -> None:
        """Test that a compressed file is decompressed into a temporary file."""
        path = tmp_path / "data.csv.gz"
        path.write_bytes(gzip.compress(b"a,b\n1,2\n"))
        with Source.open(str(path)) as src:
            assert src.file_type.compression is Compression.GZIP
            temp = Path(src.path)
            assert temp.exists() and temp != path
            assert values_of(src) == [["a", "b"], ["1", "2"]]
        assert not temp.exists()

    def test_bom_and_charset(self, tmp_path: Path) -> None:
        """Test the byte order mark is dropped and charsets are honoured."""
        bom = tmp_path / "bom.csv"
        bom.write_bytes(b"\xef\xbb\xbfname\nx\n")
        with Source.open(str(bom)) as src:
            assert values_of(src)[0] == ["name"]
        latin = tmp_path / "latin.csv"
        latin.write_bytes("név\nÁrvíz\n".encode("latin-1"))
        with Source.open(str(latin), SourceOptions(charset="latin-1")) as src:
            assert values_of(src) == [["név"], ["Árvíz"]]

    def test_one_based_columns(self, tmp_path: Path) -> None:
        """Test that the column projection is given 1-based."""
        path = tmp_path / "data.csv"
        path.write_text("a,b,c\n1,2,3\n", encoding="utf-8")
        with Source.open(str(path), SourceOptions(columns=[3, 1])) as src:
            assert values_of(src) == [["c", "a"], ["3", "1"]]

    def test_stdin(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test reading standard input through a temporary file."""
        monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(io.BytesIO(b"x;y\n1;2\n")))
        with Source.open("-") as src:
            assert src.name == "-"
            assert values_of(src) == [["x", "y"], ["1", "2"]]

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test that a missing file is reported as such."""
        with pytest.raises(FileNotFoundError):
            Source.open(str(tmp_path / "missing.csv"))

    def test_workbook(self, tmp_path: Path) -> None:
        """Test sheets and rows of a gzipped workbook."""
        path = tmp_path / "book.xlsx"
        wb = openpyxl.Workbook()
        wb.active.title = "people"
        wb.active.append(["name", "age"])
        wb.active.append(["Ann", 33])
        wb.create_sheet("empty")
        wb.save(path)
        packed = tmp_path / "book.xlsx.gz"
        packed.write_bytes(gzip.compress(path.read_bytes()))
        with Source.open(str(packed)) as src:
            assert src.file_type.container is Container.XLSX
            assert src.read_sheets() == {0: "people", 1: "empty"}
            assert values_of(src) == [["name", "age"], ["Ann", "33"]]

    def test_read_rows(self, tmp_path: Path) -> None:
        """Test the callback interface and its cancellation."""
        path = tmp_path / "data.csv"
        path.write_text("a\n1\n2\n", encoding="utf-8")
        seen = []
        with Source.open(str(path)) as src:
            n = src.read_rows(Context(), lambda _ctx, sheet, row: seen.append((sheet, row.values)))
        assert n == 3
        assert seen[1] == (str(path), ["1"])

        def stop(ctx: Context, _sheet: str, row) -> None:
            if row.line == 1:
                ctx.cancel()

        ctx = Context()
        with Source.open(str(path)) as src, pytest.raises(Cancelled):
            src.read_rows(ctx, stop)
