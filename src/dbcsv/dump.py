"""Dumping query results as CSV or as an xlsx workbook."""

from __future__ import annotations

import gzip
import io
import logging
import re
import sys
import time
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, BinaryIO, TextIO

import openpyxl
import zstandard

from dbcsv.concurrency import Context
from dbcsv.database import DatabaseConnection, Dialect
from dbcsv.errors import DbcsvError, ExecutionError
from dbcsv.render import OPEN_ENDED, FormatOptions, Renderer, ValueKind, csv_quote

logger = logging.getLogger(__name__)

DEFAULT_FETCH_SIZE = 1024

_FETCH_FIRST_RE = re.compile(r" FETCH FIRST (\d+) ROWS? ONLY")


@dataclass
class DumpOptions:
    """Settings of one dump.

    Attributes:
        format: Date layout, separator and open-ended date rendering
        header: Write the column names first
        raw: Concatenate raw values without separators or quoting
        encoding: Output character set
        compress: ``gzip`` or ``zstd`` output compression
        sort: Order ``SELECT * FROM`` queries by every non-LOB column
        timeout: Overall deadline in seconds
    """

    format: FormatOptions = field(default_factory=FormatOptions)
    header: bool = True
    raw: bool = False
    encoding: str = "utf-8"
    compress: str = ""
    sort: bool = False
    timeout: float | None = None


def get_query(table: str, where: str = "", columns: list[str] | None = None, stdin: TextIO | None = None) -> str:
    """Assemble the query to dump.

    A table name is combined with the optional WHERE clause and column
    list; a literal SELECT is used as is; with nothing given the query is
    read from ``stdin``.
    """
    if not table and not where and not columns:
        return (stdin or sys.stdin).read()
    table = table.strip()
    if len(table) > 6 and table.upper().startswith("SELECT "):
        return table
    cols = ", ".join(columns) if columns else "*"
    if not where:
        return f"SELECT {cols} FROM {table}"
    return f"SELECT {cols} FROM {table} WHERE {where}"


def call_query(function: str, args: list[str]) -> tuple[str, list[str]]:
    """Build the call of a function returning a ref cursor from ``name=value`` arguments.

    Examples:
        >>> call_query("pkg.fn", ["a=1", "b=x"])
        ('BEGIN :1 := pkg.fn(a=>:2, b=>:3); END;', ['1', 'x'])
    """
    names, params = [], []
    for i, arg in enumerate(args):
        name, _, value = arg.partition("=")
        names.append(f"{name}=>:{i + 2}")
        params.append(value)
    return f"BEGIN :1 := {function}({', '.join(names)}); END;", params


def fetch_size(query: str) -> int:
    """Fetch array size: the row limit of a ``FETCH FIRST n ROWS ONLY`` clause, if any."""
    normalized = " ".join(query.split()).upper()
    m = _FETCH_FIRST_RE.search(normalized)
    if m and int(m.group(1)) > 0:
        return int(m.group(1))
    return DEFAULT_FETCH_SIZE


def sort_query(db: DatabaseConnection, query: str, params: list[Any]) -> str:
    """Append ``ORDER BY`` over all non-LOB columns to a ``SELECT * FROM`` query."""
    if not query.upper().startswith("SELECT * FROM"):
        return query
    cur = db.execute(f"SELECT * FROM ({query}) q WHERE 1=0", params or None)
    positions = []
    for i, desc in enumerate(cur.description or []):
        native, _, _ = db.dialect.native_of(cur, desc)
        if native.upper().endswith("LOB"):
            continue
        positions.append(str(i + 1))
    cur.close()
    if not positions:
        return query
    return f"{query} ORDER BY {','.join(positions)}"


def run_query(
    db: DatabaseConnection,
    query: str,
    params: list[Any] | None = None,
    call: bool = False,
    sort: bool = False,
) -> tuple[Any, list[tuple[str, ValueKind]]]:
    """Execute ``query`` and describe its result columns.

    Returns:
        The cursor to fetch from and ``(name, kind)`` of every column

    Raises:
        ExecutionError: If the database rejects the query
    """
    params = list(params or [])
    size = DEFAULT_FETCH_SIZE
    if call:
        cur = db.cursor()
        ref = db.dialect.ref_cursor_var(cur)
        try:
            cur.execute(query, [ref, *params])
        except db.dialect.driver_errors as err:
            raise ExecutionError(query, err, params) from err
        cur = ref.getvalue()
    else:
        if sort:
            query = sort_query(db, query, params)
        size = fetch_size(query)
        cur = db.cursor()
        cur.arraysize = size
        try:
            if params:
                cur.execute(query, params)
            else:
                cur.execute(query)
        except db.dialect.driver_errors as err:
            raise ExecutionError(query, err, params) from err
    cur.arraysize = size
    return cur, db.dialect.describe(cur)


def _fetch(ctx: Context, cur: Any) -> Iterator[Any]:
    while True:
        ctx.check()
        rows = cur.fetchmany()
        if not rows:
            return
        yield from rows


def dump_csv(
    ctx: Context,
    out: TextIO,
    cur: Any,
    columns: list[tuple[str, ValueKind]],
    options: DumpOptions,
) -> int:
    """Write the rows of ``cur`` as CSV; returns the number of rows written."""
    fmt = options.format
    sep = fmt.sep
    renderers = [Renderer(kind, fmt) for _, kind in columns]
    if options.header and not options.raw:
        out.write(sep.join(csv_quote(sep, name) for name, _ in columns) + "\n")
    start = time.monotonic()
    n = 0
    for row in _fetch(ctx, cur):
        if options.raw:
            out.write("".join(r.render_raw(v) for r, v in zip(renderers, row)))
        else:
            out.write(sep.join(r.render(v) for r, v in zip(renderers, row)))
        out.write("\n")
        n += 1
    dur = time.monotonic() - start
    logger.info("dump finished rows=%d dur=%.3fs speed=%.3f/s", n, dur, n / dur if dur else 0.0)
    return n


def cell_value(value: Any, kind: ValueKind, fmt: FormatOptions) -> Any:
    """Spreadsheet cell of a database value: numbers and dates stay typed."""
    if value is None:
        return None
    if value is OPEN_ENDED:
        return fmt.sentinel
    if kind is ValueKind.BYTES or isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex() if not isinstance(value, str) else value
    if isinstance(value, (int, float, Decimal, datetime, date)):
        return value
    if kind is ValueKind.OPAQUE_NUMERIC:
        try:
            return Decimal(value)
        except ArithmeticError:
            return str(value)
    return str(value)


def dump_sheets(
    ctx: Context,
    db: DatabaseConnection,
    out: BinaryIO,
    sheets: list[str],
    options: DumpOptions,
    params: list[Any] | None = None,
) -> int:
    """Write one worksheet per ``name:SELECT ...`` query into an xlsx workbook."""
    wb = openpyxl.Workbook(write_only=True)
    total = 0
    for i, entry in enumerate(sheets):
        name, sep, query = entry.partition(":")
        if not sep:
            name, query = "", entry
        name = name.strip() or str(i + 1)
        cur, columns = run_query(db, query, params, sort=options.sort)
        ws = wb.create_sheet(title=name)
        if options.header:
            ws.append([col for col, _ in columns])
        n = 0
        for row in _fetch(ctx, cur):
            ws.append([cell_value(v, kind, options.format) for v, (_, kind) in zip(row, columns)])
            n += 1
        cur.close()
        logger.info("sheet written name=%s rows=%d", name, n)
        total += n
    buf = io.BytesIO()
    wb.save(buf)
    out.write(buf.getvalue())
    return total


def compression_of(name: str) -> str:
    """Normalize ``gz``/``gzip``/``zst``/``zstd``/``zstandard`` to ``gzip`` or ``zstd``."""
    key = name.strip().lower()[:2]
    if key == "gz":
        return "gzip"
    if key == "zs":
        return "zstd"
    if key:
        raise DbcsvError(f"{name}: unknown compression")
    return ""


@contextmanager
def open_output(path: str, compress: str = "") -> Iterator[BinaryIO]:
    """Open the binary output stream, ``-`` or empty meaning standard output."""
    with ExitStack() as stack:
        if path in ("", "-"):
            fh: Any = sys.stdout.buffer
        else:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            fh = stack.enter_context(open(path, "wb"))  # noqa: SIM115
        kind = compression_of(compress)
        if kind == "gzip":
            fh = stack.enter_context(gzip.GzipFile(fileobj=fh, mode="wb"))
        elif kind == "zstd":
            fh = stack.enter_context(zstandard.ZstdCompressor().stream_writer(fh, closefd=False))
        yield fh
        fh.flush()


def _begin_read_only(db: DatabaseConnection) -> None:
    try:
        db.begin_read_only()
    except db.dialect.driver_errors as err:
        logger.warning("read-only transaction: %s", err)
        db.rollback()


def dump(
    ctx: Context,
    url: str,
    query: str,
    output: str = "-",
    options: DumpOptions | None = None,
    params: list[Any] | None = None,
    call: bool = False,
    sheets: list[str] | None = None,
    dialect: Dialect | None = None,
) -> int:
    """Dump the result of ``query`` (or of every sheet query) to ``output``.

    Returns:
        Number of rows written
    """
    options = options or DumpOptions()
    if options.timeout:
        ctx = ctx.child(options.timeout)
    with DatabaseConnection(url, dialect) as db:
        db.prepare_dump()
        _begin_read_only(db)
        with open_output(output, options.compress) as fh:
            if sheets:
                return dump_sheets(ctx, db, fh, sheets, options, params)
            cur, columns = run_query(db, query, params, call=call, sort=options.sort)
            text = io.TextIOWrapper(fh, encoding=options.encoding, errors="replace", newline="")
            try:
                return dump_csv(ctx, text, cur, columns, options)
            finally:
                text.flush()
                text.detach()
                cur.close()
