"""Tests for the CSV and spreadsheet row readers."""

import io
from datetime import datetime
from pathlib import Path

import openpyxl
import pytest
import xlrd

from dbcsv.concurrency import Context
from dbcsv.errors import Cancelled, UnknownSheetError
from dbcsv.readers import (
    Row,
    _xls_cell,
    cell_string,
    detect_delimiter,
    is_date_format,
    iter_csv,
    iter_xlsx,
    project,
    read_csv,
    resolve_sheet,
    sheet_names_xlsx,
)


def read_all(text: str, **kwargs) -> list[Row]:
    return list(iter_csv(Context(), io.StringIO(text, newline=""), **kwargs))


class TestDetectDelimiter:
    """Test suite for delimiter detection."""

    def test_semicolon(self) -> None:
        """Test that the candidate giving most fields wins."""
        assert detect_delimiter("a;b;c\n1;2;3\n") == ";"

    def test_tab(self) -> None:
        """Test tab separated input."""
        assert detect_delimiter("a\tb\tc\n") == "\t"

    def test_single_column_defaults_to_comma(self) -> None:
        """Test that a tie keeps the first candidate."""
        assert detect_delimiter("HEADER_NO_DELIM\n123\n") == ","

    def test_quoted_delimiter_is_not_counted(self) -> None:
        """Test that a comma inside quotes does not split the field."""
        assert detect_delimiter('"COL1,";COL2\na;b\n') == ";"


class TestIterCsv:
    """Test suite for reading CSV text."""

    def test_header_and_lines(self) -> None:
        """Test that every row carries the header and its record number."""
        rows = read_all("id;name\n1;alpha\n2;beta\n")
        assert [r.values for r in rows] == [["id", "name"], ["1", "alpha"], ["2", "beta"]]
        assert all(r.columns == ["id", "name"] for r in rows)
        assert [r.line for r in rows] == [0, 1, 2]

    def test_single_column(self) -> None:
        """Test input without any delimiter."""
        rows = read_all("HEADER_NO_DELIM\n123\n")
        assert [r.values for r in rows] == [["HEADER_NO_DELIM"], ["123"]]

    def test_quoted_field_with_delimiter(self) -> None:
        """Test a quoted header containing the other candidate delimiter."""
        rows = read_all('"COL1,";COL2\na;b\n')
        assert rows[0].values == ["COL1,", "COL2"]
        assert rows[1].values == ["a", "b"]

    def test_explicit_delimiter(self) -> None:
        """Test that a given delimiter is not second-guessed."""
        rows = read_all("a;b,c\n", delim=",")
        assert rows[0].values == ["a;b", "c"]

    def test_ragged_rows(self) -> None:
        """Test rows with fewer fields than the header."""
        rows = read_all("a,b,c\n1\n1,2,3,4\n")
        assert rows[1].values == ["1"]
        assert rows[2].values == ["1", "2", "3", "4"]

    def test_blank_lines_are_skipped(self) -> None:
        """Test that empty records produce no row but keep line numbering."""
        rows = read_all("a,b\n\n1,2\n")
        assert [r.values for r in rows] == [["a", "b"], ["1", "2"]]
        assert rows[1].line == 2

    def test_skip(self) -> None:
        """Test that skipped records do not become the header."""
        rows = read_all("title line\na,b\n1,2\n", delim=",", skip=1)
        assert rows[0].values == ["a", "b"]
        assert rows[1].columns == ["a", "b"]

    def test_projection(self) -> None:
        """Test remapping of columns, missing ones yielding empty strings."""
        rows = read_all("a,b,c\n1,2,3\n", columns=[2, 0, 7])
        assert rows[0].values == ["c", "a", ""]
        assert rows[1].values == ["3", "1", ""]

    def test_lenient_quotes(self) -> None:
        """Test that a stray quote inside a field is kept."""
        rows = read_all('a,b\n1,x"y\n')
        assert rows[1].values == ["1", 'x"y']

    def test_non_seekable_stream(self) -> None:
        """Test delimiter detection on a stream that cannot seek back."""

        class Unseekable(io.StringIO):
            def seekable(self) -> bool:
                return False

        rows = list(iter_csv(Context(), Unseekable("a;b\n1;2\n")))
        assert rows[1].values == ["1", "2"]

    def test_cancelled(self) -> None:
        """Test that a cancelled context stops reading."""
        ctx = Context()
        ctx.cancel()
        with pytest.raises(Cancelled):
            list(iter_csv(ctx, io.StringIO("a,b\n1,2\n")))

    def test_read_csv_callback(self) -> None:
        """Test the callback flavour delivers rows in order."""
        seen: list[int] = []
        read_csv(Context(), lambda _ctx, row: seen.append(row.line), io.StringIO("a\n1\n2\n"))
        assert seen == [0, 1, 2]


class TestProject:
    """Test suite for column projection."""

    def test_no_projection(self) -> None:
        """Test that no projection returns the values unchanged."""
        values = ["a", "b"]
        assert project(values, None) is values

    def test_out_of_range(self) -> None:
        """Test that missing columns become empty strings."""
        assert project(["a"], [0, 3]) == ["a", ""]


class TestResolveSheet:
    """Test suite for sheet index resolution."""

    def test_exact(self) -> None:
        """Test an index in range."""
        assert resolve_sheet(["a", "b"], 1) == 1

    def test_one_based_fallback(self) -> None:
        """Test that an index one past the end means the last sheet."""
        assert resolve_sheet(["a", "b"], 2) == 1

    def test_sole_sheet(self) -> None:
        """Test that a single sheet is used whatever the index."""
        assert resolve_sheet(["only"], 5) == 0

    def test_unknown(self) -> None:
        """Test that an unresolvable index fails."""
        with pytest.raises(UnknownSheetError) as exc_info:
            resolve_sheet(["a", "b"], 5)
        assert "unknown sheet" in str(exc_info.value)


class TestCellString:
    """Test suite for rendering spreadsheet cells."""

    def test_scalars(self) -> None:
        """Test empty, boolean, numeric and text cells."""
        assert cell_string(None) == ""
        assert cell_string(True) == "TRUE"
        assert cell_string(3) == "3"
        assert cell_string(3.0) == "3"
        assert cell_string(2.5) == "2.5"
        assert cell_string("text") == "text"

    def test_datetimes(self) -> None:
        """Test date-only rendering at midnight, full timestamp otherwise."""
        assert cell_string(datetime(2024, 1, 15)) == "2024-01-15"
        assert cell_string(datetime(2024, 1, 15, 10, 30)) == "2024-01-15 10:30:00"

    def test_serial_with_date_format(self) -> None:
        """Test that a number with a date format is a serial date."""
        assert cell_string(45306, "yyyy-mm-dd") == "2024-01-15"
        assert cell_string(45306, "0.00") == "45306"

    def test_is_date_format(self) -> None:
        """Test built-in and custom date number formats."""
        assert is_date_format("mm-dd-yy")
        assert is_date_format("dd/mm/YYYY hh:mm")
        assert not is_date_format("General")
        assert not is_date_format(None)

    def test_xls_cells(self) -> None:
        """Test legacy spreadsheet cell types."""
        assert _xls_cell(xlrd.sheet.Cell(xlrd.XL_CELL_NUMBER, 3.0), 0) == "3"
        assert _xls_cell(xlrd.sheet.Cell(xlrd.XL_CELL_DATE, 45306.5), 0) == "2024-01-15 12:00:00"
        assert _xls_cell(xlrd.sheet.Cell(xlrd.XL_CELL_TEXT, "abc"), 0) == "abc"
        assert _xls_cell(xlrd.sheet.Cell(xlrd.XL_CELL_EMPTY, ""), 0) == ""


class TestIterXlsx:
    """Test suite for reading modern spreadsheets."""

    @pytest.fixture
    def workbook(self, tmp_path: Path) -> Path:
        path = tmp_path / "book.xlsx"
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "first"
        ws.append(["id", "when", "amount", "name"])
        ws.append([1, datetime(2024, 1, 15), 2.5, "alpha"])
        ws.append([2, datetime(2024, 2, 20, 14, 45, 30), 10.0, None])
        second = wb.create_sheet("second")
        second.append(["code"])
        second.append(["X"])
        wb.save(path)
        return path

    def test_sheet_names(self, workbook: Path) -> None:
        """Test listing the sheets."""
        assert sheet_names_xlsx(str(workbook)) == ["first", "second"]

    def test_rows(self, workbook: Path) -> None:
        """Test values, trailing empty cells and the header."""
        rows = list(iter_xlsx(Context(), str(workbook)))
        assert [name for name, _ in rows] == ["first"] * 3
        values = [row.values for _, row in rows]
        assert values[0] == ["id", "when", "amount", "name"]
        assert values[1] == ["1", "2024-01-15", "2.5", "alpha"]
        assert values[2] == ["2", "2024-02-20 14:45:30", "10"]
        assert rows[2][1].columns == values[0]

    def test_second_sheet(self, workbook: Path) -> None:
        """Test selecting a sheet by index."""
        rows = list(iter_xlsx(Context(), str(workbook), sheet=1))
        assert [(name, row.values) for name, row in rows] == [("second", ["code"]), ("second", ["X"])]

    def test_unknown_sheet(self, workbook: Path) -> None:
        """Test that an unknown sheet index fails."""
        with pytest.raises(UnknownSheetError):
            list(iter_xlsx(Context(), str(workbook), sheet=9))
