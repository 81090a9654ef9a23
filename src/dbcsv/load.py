"""Concurrent bulk loading of a row source into a database table.

A single producer (the calling thread) reads the source and hands fixed
size batches to N workers over a bounded queue of depth N. Every worker
owns one connection and one transaction. A failed batch is rolled back to
its savepoint and replayed row by row to find the offending row.

Commits are all-or-nothing by default: a worker that has drained the
queue waits until every sibling has done the same, and any failure rolls
back all of them. ``partial_commit`` restores independent per-worker
commits.
"""

from __future__ import annotations

import logging
import queue
import re
import threading
import time
from collections.abc import Iterator
from contextlib import closing
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, TextIO

from dbcsv.columns import Column
from dbcsv.concurrency import POLL_INTERVAL, AtomicCounter, BatchPool, Context, ErrorGroup, get, put
from dbcsv.database import DatabaseConnection, Dialect, dialect_for
from dbcsv.dates import DEFAULT_LOAD_LAYOUT, XLS_EPOCH
from dbcsv.errors import Cancelled, ConversionError, DbcsvError, ExecutionError, TooManyFieldsError
from dbcsv.provision import ProvisionOptions, match_fields, provision
from dbcsv.readers import Row
from dbcsv.source import Source, SourceOptions
from dbcsv.type_detection import ColumnType

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1024
DEFAULT_CONCURRENCY = 4

_PLACEHOLDER_RE = re.compile(r":\w+|\?|%s")


@dataclass
class LoadOptions:
    """Settings of one load.

    Attributes:
        source: How to read the source
        fields: Target field names; the header row when empty
        truncate: Empty an existing table first
        tablespace: Tablespace of a created table
        copy: Create the table with the structure of this one
        force_string: Create every column as VARCHAR2
        concurrency: Number of inserting workers
        batch_size: Rows per batched insert
        layout: strftime layout of date values
        just_print: Print an INSERT script instead of loading
        partial_commit: Let healthy workers commit when a sibling fails
        timeout: Overall deadline in seconds
    """

    source: SourceOptions = field(default_factory=SourceOptions)
    fields: list[str] = field(default_factory=list)
    truncate: bool = False
    tablespace: str = ""
    copy: str = ""
    force_string: bool = False
    concurrency: int = DEFAULT_CONCURRENCY
    batch_size: int = DEFAULT_BATCH_SIZE
    layout: str = DEFAULT_LOAD_LAYOUT
    just_print: bool = False
    partial_commit: bool = False
    timeout: float | None = None


@dataclass
class LoadResult:
    table: str
    read: int = 0
    inserted: int = 0
    duration: float = 0.0


@dataclass
class Batch:
    """Rows handed to a worker; ``start`` is the data row index of the first one."""

    start: int
    rows: list[list[str]]


def effective_batch_size(columns: list[Column], batch_size: int) -> int:
    """Batch size to use: large object binds cannot be array bound."""
    if any(c.is_lob for c in columns):
        return 1
    return batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE


def is_full_insert(table: str) -> bool:
    return table.lstrip().upper().startswith("INSERT ")


def data_rows(rows: Iterator[tuple[str, Row]]) -> Iterator[Row]:
    """Skip the header row and rows without any value."""
    header_seen = False
    for _, row in rows:
        if not header_seen:
            header_seen = True
            continue
        if not any(row.values):
            continue
        yield row


class Loader:
    """Loads one source into one table."""

    def __init__(self, url: str, table: str, options: LoadOptions, dialect: Dialect | None = None) -> None:
        self.url = url
        self.table = table
        self.options = options
        self.dialect = dialect or (dialect_for(url) if url else None)
        self.query = ""
        self.fields: list[str] = []
        self.pairs: list[tuple[int, Column]] = []
        self.inserted = AtomicCounter()

    def prepare(self, ctx: Context, src: Source) -> bool:
        """Provision the table and build the insert statement.

        Returns:
            False if the source has no rows at all
        """
        with closing(src.iter_rows(ctx)) as rows:
            first = next(rows, None)
            if first is None:
                return False
            header = first[1].columns
            self.fields = self.options.fields or header
            logger.debug("fields=%s", self.fields)

            if is_full_insert(self.table):
                self.query = self.table
                values = self.table[self.table.upper().rindex("VALUES") :]
                n = len(_PLACEHOLDER_RE.findall(values))
                self.pairs = [(i, Column(str(i + 1), "")) for i in range(n)]
                return True

            opts = self.options
            with DatabaseConnection(self.url, self.dialect) as db:
                columns = provision(
                    db,
                    self.table,
                    self.fields,
                    data_rows(rows_with_first(first, rows)),
                    ProvisionOptions(opts.truncate, opts.tablespace, opts.copy, opts.force_string, opts.layout),
                )
                self.pairs = match_fields(columns, self.fields)
                if not self.pairs:
                    raise DbcsvError(f"{self.table}: none of the fields {self.fields} matches a column")
                self.query = db.insert_sql(self.table.upper(), [c.name for _, c in self.pairs])
        logger.info("synthetized qry=%s", self.query)
        return True

    @property
    def columns(self) -> list[Column]:
        return [c for _, c in self.pairs]

    def workers(self) -> int:
        n = max(1, self.options.concurrency)
        if self.dialect.max_writers:
            n = min(n, self.dialect.max_writers)
        return n

    def run(self, ctx: Context, src: Source) -> int:
        """Insert every data row of ``src``; returns the number of rows read."""
        batch_size = effective_batch_size(self.columns, self.options.batch_size)
        n_workers = self.workers()
        logger.info("loading table=%s workers=%d batch_size=%d", self.table, n_workers, batch_size)

        group = ErrorGroup(ctx, max_workers=n_workers)
        batches: queue.Queue[Batch | None] = queue.Queue(maxsize=n_workers)
        pool = BatchPool(batch_size)
        ready = AtomicCounter()
        commit = threading.Event()
        for wid in range(n_workers):
            group.go(self._worker, group.ctx, wid, batches, pool, ready, commit, n_workers)

        try:
            read = self._produce(group.ctx, src, batches, pool, batch_size, n_workers)
        except Cancelled:
            group.wait()
            raise
        except BaseException:
            group.ctx.cancel()
            try:
                group.wait()
            except Exception as werr:  # noqa: BLE001
                logger.debug("worker error after producer failure: %s", werr)
            raise
        group.wait()
        return read

    def _produce(
        self,
        ctx: Context,
        src: Source,
        batches: queue.Queue[Batch | None],
        pool: BatchPool,
        batch_size: int,
        n_workers: int,
    ) -> int:
        n = 0
        chunk = pool.acquire()
        with closing(src.iter_rows(ctx)) as rows:
            for row in data_rows(rows):
                # Readers may reuse the values list.
                chunk.append(list(row.values))
                if len(chunk) < batch_size:
                    continue
                self._send(ctx, batches, pool, Batch(n, chunk))
                n += len(chunk)
                chunk = pool.acquire()
        if chunk:
            self._send(ctx, batches, pool, Batch(n, chunk))
            n += len(chunk)
        else:
            pool.release(chunk)
        for _ in range(n_workers):
            put(ctx, batches, None)
        return n

    @staticmethod
    def _send(ctx: Context, batches: queue.Queue[Batch | None], pool: BatchPool, batch: Batch) -> None:
        try:
            put(ctx, batches, batch)
        except Cancelled:
            pool.release(batch.rows)
            raise

    def _worker(
        self,
        ctx: Context,
        wid: int,
        batches: queue.Queue[Batch | None],
        pool: BatchPool,
        ready: AtomicCounter,
        commit: threading.Event,
        n_workers: int,
    ) -> None:
        with DatabaseConnection(self.url, self.dialect) as db:
            db.begin()
            cur = db.cursor()
            self.dialect.set_input_sizes(cur, self.columns)
            while True:
                batch = get(ctx, batches)
                if batch is None:
                    break
                try:
                    self._insert(cur, batch)
                finally:
                    pool.release(batch.rows)
            if not self.options.partial_commit:
                if ready.add(1) == n_workers:
                    commit.set()
                while not commit.wait(POLL_INTERVAL):
                    ctx.check()
            db.commit()
            logger.debug("worker=%d committed", wid)

    def convert(self, batch: Batch) -> list[tuple[Any, ...]]:
        """Turn a batch of raw rows into bind parameter tuples.

        Raises:
            TooManyFieldsError: If a row has non-empty fields beyond the target fields
            ConversionError: With the absolute row index of the first bad value
        """
        n_fields = len(self.fields) if self.fields else len(self.pairs)
        for k, values in enumerate(batch.rows):
            if len(values) > n_fields and any(values[n_fields:]):
                raise TooManyFieldsError(batch.start + k, len(values), n_fields)
        converted = []
        first: ConversionError | None = None
        for src_idx, col in self.pairs:
            raw = [values[src_idx] if src_idx < len(values) else "" for values in batch.rows]
            try:
                converted.append(col.from_strings(raw, self.options.layout))
            except ConversionError as err:
                if first is None or err.row_index < first.row_index:
                    first = err
        if first is not None:
            shifted = first.shifted(batch.start)
            logger.error(
                "convert column=%s row=%d value=%r error=%s", first.column, shifted.row_index, first.value, first.reason
            )
            raise shifted from first
        return list(zip(*converted))

    def _insert(self, cur: Any, batch: Batch) -> None:
        params = self.convert(batch)
        if not params:
            return
        errors = self.dialect.driver_errors
        if len(params) == 1:
            try:
                cur.execute(self.query, params[0])
            except errors as err:
                logger.error("exec qry=%s binds=%r row=%d error=%s", self.query, params[0], batch.start, err)
                raise ExecutionError(self.query, err, params[0], batch.start) from err
            self.inserted.add(1)
            return

        self.dialect.savepoint(cur)
        try:
            cur.executemany(self.query, params)
        except errors as err:
            logger.error("exec qry=%s start=%d rows=%d error=%s", self.query, batch.start, len(params), err)
            self.dialect.rollback_to_savepoint(cur)
            for k, p in enumerate(params):
                try:
                    cur.execute(self.query, p)
                except errors as row_err:
                    logger.error("exec qry=%s binds=%r row=%d error=%s", self.query, p, batch.start + k, row_err)
                    raise ExecutionError(self.query, row_err, p, batch.start + k) from row_err
            logger.warning("batch start=%d failed as a whole but succeeded row by row", batch.start)
        self.dialect.release_savepoint(cur)
        self.inserted.add(len(params))


def rows_with_first(first: tuple[str, Row], rest: Iterator[tuple[str, Row]]) -> Iterator[tuple[str, Row]]:
    yield first
    yield from rest


def load(
    ctx: Context,
    url: str,
    table: str,
    file_name: str,
    options: LoadOptions | None = None,
    dialect: Dialect | None = None,
    out: TextIO | None = None,
) -> LoadResult:
    """Load ``file_name`` into ``table``.

    Args:
        ctx: Cancellation context
        url: Connection string of the destination database
        table: Destination table (``owner.table``), or a complete INSERT statement
        file_name: Source file, ``-`` for standard input
        options: Load settings
        dialect: Dialect to use instead of the one ``url`` selects
        out: Where ``just_print`` writes the script

    Returns:
        Rows read and inserted

    Raises:
        DbcsvError: On the first real failure; Cancelled when stopped
    """
    options = options or LoadOptions()
    if options.timeout:
        ctx = ctx.child(options.timeout)
    start = time.monotonic()
    result = LoadResult(table)
    loader = Loader(url, table, options, dialect)
    with Source.open(file_name, options.source) as src:
        if options.just_print:
            result.read = just_print(ctx, loader, src, out)
            result.duration = time.monotonic() - start
            return result
        if not loader.prepare(ctx, src):
            logger.warning("empty source src=%s", file_name)
            return result
        result.read = loader.run(ctx, src)
    result.inserted = loader.inserted.value
    result.duration = time.monotonic() - start
    logger.info(
        "timing read=%d inserted=%d src=%s tbl=%s dur=%.3fs",
        result.read,
        result.inserted,
        file_name,
        table,
        result.duration,
    )
    return result


def sql_quote(value: str) -> str:
    """Oracle string literal; ``&`` is spelled out to dodge substitution variables."""
    return "'" + value.replace("'", "''").replace("&", "'||CHR(38)||'") + "'"


def to_date_literal(value: str) -> str:
    """``TO_DATE`` call of a date in ``YYYYMMDD`` form.

    Six digit values get the century prefixed; shorter numbers are spreadsheet day offsets.
    """
    d = value.replace(".", "").replace("-", "")
    if len(d) == 6:
        d = "20" + d
    elif len(d) < 8 and d.isdigit():
        d = (XLS_EPOCH + timedelta(days=int(d))).strftime("%Y%m%d")
    return f"TO_DATE('{d}','YYYYMMDD')"


def just_print(ctx: Context, loader: Loader, src: Source, out: TextIO | None) -> int:
    """Write an ``INSERT ALL`` script of the source rows instead of loading them."""
    if out is None:
        raise ValueError("just_print needs an output stream")
    table = loader.table.upper()
    with closing(src.iter_rows(ctx)) as rows:
        first = next(rows, None)
        if first is None:
            return 0
        header = first[1].columns
        fields = loader.options.fields or header
        columns: list[Column] = []
        if loader.url:
            with DatabaseConnection(loader.url, loader.dialect) as db:
                columns = db.table_columns(table) if db.table_exists(table) else []
        pairs = match_fields(columns, fields) if columns else []
        if not pairs:
            pairs = [(i, Column(name, "")) for i, name in enumerate(fields)]
        names = ", ".join(c.name for _, c in pairs)
        out.write("INSERT ALL\n")
        n = 0
        for row in data_rows(rows_with_first(first, rows)):
            vals = []
            for src_idx, col in pairs:
                s = row.values[src_idx] if src_idx < len(row.values) else ""
                vals.append(to_date_literal(s) if col.type is ColumnType.DATE and s else sql_quote(s))
            out.write(f"  INTO {table} ({names}) VALUES ({', '.join(vals)})\n")
            n += 1
        out.write("SELECT 1 FROM DUAL;\n")
    return n
