"""Running named queries in parallel and dumping every result as JSON."""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TextIO

from dbcsv.concurrency import Context, ErrorGroup
from dbcsv.database import DatabaseConnection, Dialect
from dbcsv.errors import Cancelled, DbcsvError, ExecutionError

logger = logging.getLogger(__name__)

DEFAULT_FETCH_ROWS = 8
_SEPARATORS = re.compile(r"[-:= \t]")


def parse_values(items: list[str]) -> dict[str, str]:
    """Parse ``name=value`` bind values; the name ends at the first of ``-:=``, space or tab.

    Examples:
        >>> parse_values(["V_alue1=1", "v2:3.14"])
        {'v_alue1': '1', 'v2': '3.14'}

    Raises:
        DbcsvError: If an item has no separator
    """
    out = {}
    for item in items:
        m = _SEPARATORS.search(item)
        if m is None:
            raise DbcsvError(f"{item!r} does not contain a separator")
        out[item[: m.start()].lower()] = item[m.end() :]
    return out


def query_binds(query: str, values: dict[str, str]) -> dict[str, str]:
    """The subset of ``values`` referenced by ``query`` as ``:name`` or ``%(name)s``."""
    lowered = query.lower()
    return {
        name: value
        for name, value in values.items()
        if re.search(rf":{re.escape(name)}\b", lowered) or f"%({name})s" in lowered
    }


def json_default(value: Any) -> Any:
    """Serialize database values the json module does not know."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


@dataclass
class Table:
    name: str
    error: str | None = None
    rows: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "error": self.error, "rows": self.rows}


def run_named(
    ctx: Context,
    db: DatabaseConnection,
    entry: str,
    values: dict[str, str],
    fetch_rows: int = DEFAULT_FETCH_ROWS,
) -> Table:
    """Run one ``name:SELECT ...`` query, collecting its rows as column-keyed dicts.

    Raises:
        DbcsvError: If the item has no name
        ExecutionError: If the query fails
    """
    name, sep, query = entry.partition(":")
    if not sep:
        raise DbcsvError(f"{entry!r}: expected name:query")
    binds = query_binds(query, values)
    logger.debug("query name=%s qry=%r binds=%s", name, query, binds)
    cur = db.cursor()
    cur.arraysize = fetch_rows if fetch_rows > 0 else DEFAULT_FETCH_ROWS
    table = Table(name)
    try:
        try:
            if binds:
                cur.execute(query, binds)
            else:
                cur.execute(query)
            columns = [desc[0] for desc in cur.description or []]
            while True:
                ctx.check()
                batch = cur.fetchmany()
                if not batch:
                    break
                table.rows.extend(dict(zip(columns, row)) for row in batch)
        except db.dialect.driver_errors as err:
            raise ExecutionError(query, err, binds) from err
    finally:
        cur.close()
    return table


def paraexp(
    ctx: Context,
    url: str,
    queries: list[str],
    out: TextIO,
    values: dict[str, str] | None = None,
    concurrency: int = 4,
    fetch_rows: int = DEFAULT_FETCH_ROWS,
    dialect: Dialect | None = None,
) -> list[Table]:
    """Run ``queries`` concurrently and write one JSON array of their results.

    Each query gets its own read-only connection. A failed query is written
    with its error message and no rows; after the array is complete the
    first failure is raised.
    """
    values = values or {}
    lock = threading.Lock()
    tables: list[Table] = []
    failures: list[BaseException] = []

    def write(table: Table) -> None:
        text = json.dumps(table.as_dict(), default=json_default, ensure_ascii=False)
        with lock:
            out.write(",\n" if tables else "")
            out.write(text)
            tables.append(table)

    def one(entry: str) -> None:
        name = entry.partition(":")[0]
        try:
            with DatabaseConnection(url, dialect) as db:
                try:
                    db.begin_read_only()
                except db.dialect.driver_errors as err:
                    logger.warning("read-only transaction: %s", err)
                    db.rollback()
                table = run_named(ctx, db, entry, values, fetch_rows)
                db.rollback()
        except Cancelled:
            raise
        except DbcsvError as err:
            logger.error("query failed name=%s error=%s", name, err)
            with lock:
                failures.append(err)
            table = Table(name, error=str(err))
        write(table)

    out.write("[\n")
    group = ErrorGroup(ctx, max_workers=max(1, concurrency))
    for entry in queries:
        group.go(one, entry)
    try:
        group.wait()
    finally:
        out.write("\n]\n")
        out.flush()
    ctx.check()
    if failures:
        raise failures[0]
    return tables
