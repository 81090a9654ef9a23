"""Copying tables between two databases, or within one."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Iterable
from contextlib import ExitStack
from dataclasses import dataclass, field

from dbcsv.concurrency import Context, ErrorGroup, get
from dbcsv.database import DatabaseConnection, Dialect, dialect_for, redact
from dbcsv.errors import DbcsvError, DeadlineExceeded, ExecutionError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 8192
DEFAULT_CONCURRENCY = 8
DEFAULT_TIMEOUT = 60.0
DEFAULT_TABLE_TIMEOUT = 10.0


@dataclass
class CopyTask:
    """One table to copy.

    Attributes:
        src: Source table
        dst: Destination table, the source's name when empty
        where: Filter of the source rows
        replace: Upper-cased column name to literal value written instead of the source value
        truncate: Empty the destination first
    """

    src: str
    dst: str = ""
    where: str = ""
    replace: dict[str, str] = field(default_factory=dict)
    truncate: bool = False

    def __post_init__(self) -> None:
        if not self.dst:
            self.dst = self.src


@dataclass
class CopyOptions:
    batch_size: int = DEFAULT_BATCH_SIZE
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: float | None = DEFAULT_TIMEOUT
    table_timeout: float | None = DEFAULT_TABLE_TIMEOUT


def parse_replace(text: str) -> dict[str, str]:
    """Parse ``FIELD=VALUE,OTHER=NEXT``; items without ``=`` are ignored.

    Examples:
        >>> parse_replace("f_ield=1,other=x")
        {'F_IELD': '1', 'OTHER': 'x'}
    """
    out = {}
    for item in text.split(","):
        name, sep, value = item.partition("=")
        if sep:
            out[name.upper()] = value
    return out


def parse_tasks(
    args: list[str],
    lines: Iterable[str] | None = None,
    replace: dict[str, str] | None = None,
    truncate: bool = False,
) -> list[CopyTask]:
    """Build the copy tasks.

    Arguments are ``SRC [WHERE [DST]]``. Without arguments (or with a single
    ``-``) every non-empty line of ``lines`` is a task, written as
    ``SRC[=DST] [WHERE...]``.
    """
    replace = replace or {}
    if args and args != ["-"]:
        where = args[1] if len(args) > 1 else ""
        dst = args[2] if len(args) > 2 else ""
        return [CopyTask(args[0], dst, where, replace, truncate)]
    tasks = []
    for line in lines or []:
        line = line.rstrip("\r\n")
        if not line.strip():
            continue
        head, _, where = line.partition(" ")
        src, _, dst = head.partition("=")
        if src:
            tasks.append(CopyTask(src, dst, where, replace, truncate))
    return tasks


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def column_names(db: DatabaseConnection, table: str) -> list[str]:
    """Upper-cased column names of ``table``, in table order."""
    cur = db.execute(f"SELECT * FROM {table} WHERE 1=0")
    names = [desc[0].upper() for desc in cur.description or []]
    cur.close()
    return names


def copy_queries(
    dialect: Dialect, task: CopyTask, src_cols: list[str], dst_cols: list[str]
) -> tuple[str, str, int]:
    """The SELECT on the source and the INSERT into the destination of ``task``.

    Only columns present in both tables are copied; replaced columns are
    inserted as literals instead of being selected. The third item is the
    number of selected columns.
    """
    present = set(dst_cols)
    selected, replaced = [], []
    for name in src_cols:
        if name not in present:
            continue
        if name in task.replace:
            replaced.append(name)
        else:
            selected.append(name)
    if not selected and not replaced:
        raise DbcsvError(f"{task.src} and {task.dst} have no common columns")
    src_qry = f"SELECT {', '.join(selected) or '1'} FROM {task.src}"
    if task.where:
        src_qry += f" WHERE {task.where}"
    values = [dialect.placeholder(i + 1) for i in range(len(selected))]
    values += [_sql_literal(task.replace[name]) for name in replaced]
    dst_qry = f"INSERT INTO {task.dst} ({', '.join(selected + replaced)}) VALUES ({', '.join(values)})"
    return src_qry, dst_qry, len(selected)


def copy_one(
    ctx: Context,
    src: DatabaseConnection,
    dst: DatabaseConnection,
    task: CopyTask,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Copy the rows of one task within the open transaction of ``dst``.

    Returns:
        Number of rows inserted

    Raises:
        ExecutionError: If a query or a batch insert fails
    """
    logger.debug("copy task=%s", task)
    src_qry, dst_qry, n_binds = copy_queries(
        dst.dialect, task, column_names(src, task.src), column_names(dst, task.dst)
    )
    logger.debug("copy src=%r dst=%r", src_qry, dst_qry)
    if batch_size < 1:
        batch_size = DEFAULT_BATCH_SIZE
    rows = src.cursor()
    rows.arraysize = batch_size
    try:
        try:
            rows.execute(src_qry)
        except src.dialect.driver_errors as err:
            raise ExecutionError(src_qry, err) from err
        ins = dst.cursor()
        n = 0
        while True:
            ctx.check()
            batch = rows.fetchmany(batch_size)
            if not batch:
                break
            params = [tuple(r) if n_binds else () for r in batch]
            try:
                ins.executemany(dst_qry, params)
            except dst.dialect.driver_errors as err:
                raise ExecutionError(dst_qry, err, params[:1], n) from err
            n += len(batch)
        return n
    finally:
        rows.close()


def _prepare(src_url: str, dst: DatabaseConnection, task: CopyTask) -> None:
    same_db = src_url == dst.connection_string
    if not dst.table_exists(task.dst):
        if not same_db:
            raise DbcsvError(f"{task.dst}: destination table does not exist")
        qry = f"CREATE TABLE {dst.quote_name(task.dst)} AS SELECT * FROM {dst.quote_name(task.src)} WHERE 1=0"
        logger.info("create table qry=%r", qry)
        dst.begin()
        dst.execute(qry)
        dst.commit()
    if task.truncate and (task.dst.upper() != task.src.upper() or not same_db):
        logger.info("truncate table=%s", task.dst)
        dst.truncate(task.dst)


def copy_tables(
    ctx: Context,
    src_url: str,
    dst_url: str,
    tasks: list[CopyTask],
    options: CopyOptions | None = None,
) -> dict[str, int]:
    """Copy every task, committing the destination only when all succeed.

    Tasks run concurrently, each on a pair of source and destination
    connections taken from a pool; the pool is at most ``concurrency``
    pairs, one when the destination allows a single writer.

    Returns:
        Rows inserted per destination table
    """
    options = options or CopyOptions()
    tasks = [t for t in tasks if t.src]
    if not tasks:
        return {}
    table_timeout = options.table_timeout
    if options.timeout and table_timeout and table_timeout > options.timeout:
        table_timeout = options.timeout
    if options.timeout:
        ctx = ctx.child(options.timeout)
    dst_dialect = dialect_for(dst_url)
    n_pairs = max(1, min(options.concurrency, len(tasks), dst_dialect.max_writers or len(tasks)))
    logger.info("copy src=%s dst=%s tables=%d workers=%d", redact(src_url), redact(dst_url), len(tasks), n_pairs)

    counts: dict[str, int] = {}
    lock = threading.Lock()
    with ExitStack() as stack:
        pairs = [
            (
                stack.enter_context(DatabaseConnection(src_url)),
                stack.enter_context(DatabaseConnection(dst_url, dst_dialect)),
            )
            for _ in range(n_pairs)
        ]
        for task in tasks:
            _prepare(src_url, pairs[0][1], task)
        free: queue.Queue[tuple[DatabaseConnection, DatabaseConnection]] = queue.Queue()
        for src, dst in pairs:
            try:
                src.begin_read_only()
            except src.dialect.driver_errors as err:
                logger.warning("read-only transaction: %s", err)
                src.rollback()
            dst.begin()
            free.put((src, dst))

        group = ErrorGroup(ctx, max_workers=n_pairs)

        def run(task: CopyTask) -> None:
            src, dst = get(group.ctx, free)
            try:
                start = time.monotonic()
                try:
                    n = copy_one(group.ctx.child(table_timeout), src, dst, task, options.batch_size)
                except DeadlineExceeded as err:
                    if group.ctx.done():
                        raise
                    raise DbcsvError(f"{task.src}: copy did not finish in {table_timeout}s") from err
                with lock:
                    counts[task.dst] = counts.get(task.dst, 0) + n
                logger.info("copied src=%s dst=%s rows=%d dur=%.3fs", task.src, task.dst, n, time.monotonic() - start)
            finally:
                free.put((src, dst))

        for task in tasks:
            group.go(run, task)
        group.wait()
        ctx.check()
        for _, dst in pairs:
            dst.commit()
    return counts
