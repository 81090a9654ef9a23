"""Destination table provisioning: existence check, truncate, create."""

from __future__ import annotations

import base64
import logging
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from dbcsv.columns import Column
from dbcsv.database import DatabaseConnection, Dialect
from dbcsv.dates import DEFAULT_LOAD_LAYOUT
from dbcsv.errors import DbcsvError
from dbcsv.readers import Row
from dbcsv.type_detection import ColumnType, InferredColumn, infer_columns

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 30
HASH_LENGTH = 7
MAX_VARCHAR2 = 4000
MAX_PRECISION = 38


def fnv1_32(data: bytes) -> int:
    """32 bit FNV-1 hash."""
    h = 2166136261
    for b in data:
        h = (h * 16777619) & 0xFFFFFFFF
        h ^= b
    return h


def mk_col_name(value: str) -> str:
    """Turn a header into a column name.

    Upper-cases, strips accents, replaces anything else than ``A-Z``,
    ``0-9`` and ``_`` with ``_`` and prefixes a leading underscore with
    ``X``. Names longer than 30 characters keep their first 23 characters
    followed by a 7 character digest of the whole name.

    Examples:
        >>> mk_col_name("Árvíztűrő_Tükörfúrógép")
        'ARVIZTURO_TUKORFUROGEP'
        >>> mk_col_name("_id")
        'X_ID'
    """
    decomposed = unicodedata.normalize("NFKD", value.upper())
    chars = []
    for ch in decomposed:
        if unicodedata.combining(ch):
            continue
        chars.append(ch if "A" <= ch <= "Z" or "0" <= ch <= "9" or ch == "_" else "_")
    name = "".join(chars) or "X"
    if name[0] == "_":
        name = "X" + name
    if len(name) <= MAX_NAME_LENGTH:
        return name
    digest = base64.b32encode(fnv1_32(name.encode("ascii")).to_bytes(4, "big")).decode().rstrip("=")
    return name[: MAX_NAME_LENGTH - HASH_LENGTH] + digest


def _unique_names(names: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for i, name in enumerate(names):
        if name in seen:
            suffix = f"_{i + 1}"
            name = name[: MAX_NAME_LENGTH - len(suffix)] + suffix
        seen.add(name)
        out.append(name)
    return out


def column_ddl(dialect: Dialect, col: InferredColumn) -> str:
    """Type of a created column; widths are doubled to allow for multi-byte text."""
    if col.type is ColumnType.DATE:
        return dialect.type_name("DATE")
    length = col.width * 2 or 1
    if col.type is ColumnType.INT:
        return dialect.type_name("NUMBER", min(length, MAX_PRECISION))
    if col.type is ColumnType.FLOAT:
        return dialect.type_name("NUMBER")
    if length > MAX_VARCHAR2:
        return dialect.type_name("CLOB")
    return dialect.type_name("VARCHAR2", length)


def create_table_sql(
    dialect: Dialect, table: str, columns: list[InferredColumn], tablespace: str = "", conn: Any = None
) -> str:
    names = [dialect.quote_name(conn, n) for n in _unique_names([mk_col_name(c.name) for c in columns])]
    defs = ",\n".join(f"  {name} {column_ddl(dialect, c)}" for name, c in zip(names, columns))
    return f"CREATE TABLE {dialect.quote_name(conn, table)} (\n{defs}\n){dialect.tablespace_clause(tablespace)}"


@dataclass
class ProvisionOptions:
    truncate: bool = False
    tablespace: str = ""
    copy: str = ""
    force_string: bool = False
    layout: str = DEFAULT_LOAD_LAYOUT


def provision(
    db: DatabaseConnection,
    table: str,
    header: list[str],
    rows: Iterable[Row],
    options: ProvisionOptions | None = None,
) -> list[Column]:
    """Make sure ``table`` exists and return its catalog columns.

    ``rows`` (the data rows after the header) are only consumed when the
    table has to be created from inferred column types.
    """
    options = options or ProvisionOptions()
    table = table.upper()
    exists = db.table_exists(table)
    if exists and options.truncate:
        db.truncate(table)
    if not exists:
        tablespace = db.dialect.tablespace_clause(options.tablespace)
        if options.copy:
            src = db.quote_name(options.copy)
            qry = f"CREATE TABLE {db.quote_name(table)}{tablespace} AS SELECT * FROM {src} WHERE 1=0"
        else:
            if not header:
                raise DbcsvError(f"{table}: no header row to create the table from")
            inferred = infer_columns(header, rows, options.force_string, options.layout)
            qry = create_table_sql(db.dialect, table, inferred, options.tablespace, db.conn)
        logger.debug("exec qry=%s", qry)
        db.begin()
        db.execute(qry)
        db.commit()
        logger.info("created table=%s", table)
    columns = db.table_columns(table)
    if not columns:
        raise DbcsvError(f"{table}: table has no columns")
    return columns


def match_fields(columns: list[Column], fields: list[str]) -> list[tuple[int, Column]]:
    """Pair source field positions with the table columns they fill.

    A field matches a column by its upper-cased name, its sanitized name,
    or the column's name without an ``F_`` prefix. Fields without a match
    are left out.
    """
    by_name: dict[str, Column] = {c.name.upper(): c for c in columns}
    for c in columns:
        if c.name.upper().startswith("F_"):
            by_name.setdefault(c.name.upper()[2:], c)
    pairs: list[tuple[int, Column]] = []
    used: set[str] = set()
    for i, field in enumerate(fields):
        col = by_name.get(field.upper()) or by_name.get(mk_col_name(field))
        if col is None or col.name in used:
            logger.info("filter out field=%r col=%s", field, mk_col_name(field))
            continue
        used.add(col.name)
        pairs.append((i, col))
    return pairs
