"""Row readers for CSV text, legacy (xls) and modern (xlsx) spreadsheets.

Every reader is a generator of :class:`Row` objects in strictly increasing
line order. The first surfaced row doubles as the column header of its sheet.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import TextIO

import openpyxl
import xlrd
from openpyxl.styles.numbers import BUILTIN_FORMATS
from openpyxl.utils.datetime import from_excel

from dbcsv.concurrency import Context
from dbcsv.dates import iso_string
from dbcsv.errors import UnknownSheetError
from dbcsv.render import format_float

logger = logging.getLogger(__name__)

DELIMITER_CANDIDATES = (",", ";", "\t", " ")
DELIMITER_SAMPLE_SIZE = 1024

# Built-in number formats of the date/time category.
DATE_FORMAT_IDS = frozenset([*range(14, 23), *range(27, 37), 45, 46, 47, *range(50, 59)])
DATE_FORMAT_CODES = frozenset(BUILTIN_FORMATS[i] for i in DATE_FORMAT_IDS if i in BUILTIN_FORMATS)


@dataclass
class Row:
    """One logical record: string fields plus the shared header of its sheet."""

    values: list[str]
    columns: list[str] = field(default_factory=list)
    line: int = 0


def project(values: list[str], columns: list[int] | None) -> list[str]:
    """Remap ``values`` to the zero-based ``columns``; missing indexes yield ``""``."""
    if not columns:
        return values
    return [values[j] if 0 <= j < len(values) else "" for j in columns]


def _trim(values: list[str]) -> list[str]:
    while values and values[-1] == "":
        values.pop()
    return values


def _rows(
    ctx: Context,
    records: Iterator[list[str]],
    columns: list[int] | None,
    skip: int,
) -> Iterator[Row]:
    header: list[str] | None = None
    for line, values in enumerate(records):
        if line < skip:
            continue
        ctx.check()
        if not values:
            continue
        values = project(values, columns)
        if header is None:
            header = list(values)
        yield Row(values=values, columns=header, line=line)


def detect_delimiter(sample: str) -> str:
    """Pick the candidate delimiter splitting the first record into the most fields.

    Ties are broken by candidate order, so single-field input yields ``,``.
    """
    best, best_count = DELIMITER_CANDIDATES[0], 0
    for delim in DELIMITER_CANDIDATES:
        first = next(csv.reader(io.StringIO(sample), delimiter=delim, strict=False), [])
        if len(first) > best_count:
            best, best_count = delim, len(first)
    logger.info("delimiter detected delim=%r fields=%d", best, best_count)
    return best


def iter_csv(
    ctx: Context,
    stream: TextIO,
    delim: str = "",
    columns: list[int] | None = None,
    skip: int = 0,
) -> Iterator[Row]:
    """Read rows from CSV text.

    Args:
        ctx: Cancellation context, checked before each row
        stream: Text stream opened with ``newline=""``
        delim: Field delimiter; detected from the first 1024 characters if empty
        columns: Optional zero-based projection
        skip: Number of leading records to skip

    Yields:
        Rows with ragged field counts and lenient quote handling
    """
    ctx.check()
    if not delim:
        if stream.seekable():
            start = stream.tell()
            sample = stream.read(DELIMITER_SAMPLE_SIZE)
            stream.seek(start)
        else:
            stream = io.StringIO(stream.read())
            sample = stream.read(DELIMITER_SAMPLE_SIZE)
            stream.seek(0)
        delim = detect_delimiter(sample)
    reader = csv.reader(stream, delimiter=delim[0], quotechar='"', strict=False)
    yield from _rows(ctx, reader, columns, skip)


def read_csv(
    ctx: Context,
    on_row: Callable[[Context, Row], None],
    stream: TextIO,
    delim: str = "",
    columns: list[int] | None = None,
    skip: int = 0,
) -> None:
    """Callback flavour of :func:`iter_csv`."""
    for row in iter_csv(ctx, stream, delim, columns, skip):
        on_row(ctx, row)


def resolve_sheet(names: list[str], index: int) -> int:
    """Resolve a sheet index: as given, then one less, then the only sheet.

    Raises:
        UnknownSheetError: If none of the fallbacks applies
    """
    if 0 <= index < len(names):
        return index
    if 0 <= index - 1 < len(names):
        return index - 1
    if len(names) == 1:
        return 0
    raise UnknownSheetError(index, names)


def is_date_format(number_format: str | None) -> bool:
    if not number_format:
        return False
    return number_format in DATE_FORMAT_CODES or "yy" in number_format.lower()


def cell_string(value: object, number_format: str | None = None) -> str:
    """Render a spreadsheet cell value as the string a row carries.

    Numbers with a date/time number format are reinterpreted as serial dates.
    Numbers are rendered from the stored value, never from the displayed text.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)) and is_date_format(number_format):
        value = from_excel(value)
    if isinstance(value, datetime):
        return iso_string(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, timedelta):
        return str(value)
    if isinstance(value, float):
        return format_float(value)
    return str(value)


def sheet_names_xlsx(path: str) -> list[str]:
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        return list(wb.sheetnames)
    finally:
        wb.close()


def iter_xlsx(
    ctx: Context,
    path: str,
    sheet: int = 0,
    columns: list[int] | None = None,
    skip: int = 0,
) -> Iterator[tuple[str, Row]]:
    """Read rows of one sheet of an xlsx workbook, yielding ``(sheet_name, row)``."""
    ctx.check()
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        names = list(wb.sheetnames)
        name = names[resolve_sheet(names, sheet)]
        ws = wb[name]
        records = (
            _trim([cell_string(c.value, getattr(c, "number_format", None)) for c in cells])
            for cells in ws.iter_rows()
        )
        for row in _rows(ctx, records, columns, skip):
            yield name, row
    finally:
        wb.close()


def _xls_cell(cell: xlrd.sheet.Cell, datemode: int) -> str:
    if cell.ctype == xlrd.XL_CELL_DATE:
        return cell_string(xlrd.xldate.xldate_as_datetime(cell.value, datemode))
    if cell.ctype == xlrd.XL_CELL_NUMBER:
        return cell_string(float(cell.value))
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return cell_string(bool(cell.value))
    if cell.ctype == xlrd.XL_CELL_TEXT:
        return cell.value
    return ""


def sheet_names_xls(path: str, charset: str | None = None) -> list[str]:
    book = xlrd.open_workbook(path, encoding_override=charset, on_demand=True)
    try:
        return list(book.sheet_names())
    finally:
        book.release_resources()


def iter_xls(
    ctx: Context,
    path: str,
    charset: str | None = None,
    sheet: int = 0,
    columns: list[int] | None = None,
    skip: int = 0,
) -> Iterator[tuple[str, Row]]:
    """Read rows of one sheet of a legacy xls workbook, yielding ``(sheet_name, row)``."""
    ctx.check()
    book = xlrd.open_workbook(path, encoding_override=charset, on_demand=True)
    try:
        names = list(book.sheet_names())
        ws = book.sheet_by_index(resolve_sheet(names, sheet))
        records = (
            _trim([_xls_cell(c, book.datemode) for c in ws.row(r)]) for r in range(ws.nrows)
        )
        for row in _rows(ctx, records, columns, skip):
            yield ws.name, row
    finally:
        book.release_resources()
