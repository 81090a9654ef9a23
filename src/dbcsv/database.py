"""Database connections and per-dialect SQL for dbcsv."""

from __future__ import annotations

import logging
import re
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from urllib.parse import unquote, urlparse

import oracledb
import psycopg
from psycopg import sql

from dbcsv.columns import Column
from dbcsv.errors import DbcsvError, ExecutionError
from dbcsv.render import OPEN_ENDED, ValueKind, value_kind

logger = logging.getLogger(__name__)

SAVEPOINT = "dbcsv_batch"
ORACLE_DATE_FORMAT = "SYYYY-MM-DD HH24:MI:SS"

_TYPE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9_ ]*?)\s*(?:\(\s*(\d+)\s*(?:,\s*(-?\d+)\s*)?\))?\s*$")


def split_owner(table: str) -> tuple[str, str]:
    """Split ``owner.table`` on the first dot; the owner is empty when absent."""
    if not table:
        raise ValueError("empty table name")
    owner, dot, name = table.partition(".")
    if not dot:
        return "", table
    return owner, name


def parse_type(declared: str) -> tuple[str, int, int]:
    """Split a declared type such as ``NUMBER(12,2)`` into name, size and scale."""
    m = _TYPE_RE.match(declared or "")
    if not m:
        return (declared or "").upper(), 0, 0
    return m.group(1).upper(), int(m.group(2) or 0), int(m.group(3) or 0)


class Dialect:
    """SQL and catalog differences between the supported databases."""

    name = "generic"
    # Upper bound of concurrently writing connections, None for unlimited.
    max_writers: int | None = None
    driver_errors: tuple[type[BaseException], ...] = (Exception,)

    def __init__(self, url: str) -> None:
        self.url = url

    def connect(self) -> Any:
        raise NotImplementedError

    def placeholder(self, i: int) -> str:
        """Bind placeholder of the 1-based position ``i``."""
        return "?"

    def catalog_name(self, name: str) -> str:
        return name.upper()

    def quote_name(self, conn: Any, name: str) -> str:
        """Spelling of a possibly owner qualified name in a statement."""
        return name

    def begin(self, conn: Any) -> None:
        """Start a transaction, where the driver does not do so implicitly."""

    def begin_read_only(self, conn: Any) -> None:
        conn.cursor().execute("SET TRANSACTION READ ONLY")

    def prepare_dump(self, conn: Any) -> None:
        """Configure how values are fetched for rendering."""

    def savepoint(self, cur: Any) -> None:
        cur.execute(f"SAVEPOINT {SAVEPOINT}")

    def rollback_to_savepoint(self, cur: Any) -> None:
        cur.execute(f"ROLLBACK TO SAVEPOINT {SAVEPOINT}")

    def release_savepoint(self, cur: Any) -> None:
        cur.execute(f"RELEASE SAVEPOINT {SAVEPOINT}")

    def type_name(self, native: str, size: int | None = None) -> str:
        """DDL spelling of an Oracle family type."""
        return f"{native}({size})" if size else native

    def tablespace_clause(self, tablespace: str) -> str:
        return ""

    def insert_sql(self, conn: Any, table: str, names: list[str]) -> str:
        binds = ", ".join(self.placeholder(i + 1) for i in range(len(names)))
        return f"INSERT INTO {table} ({', '.join(names)}) VALUES ({binds})"

    def table_exists(self, conn: Any, table: str) -> bool:
        raise NotImplementedError

    def table_columns(self, conn: Any, table: str) -> list[Column]:
        """Catalog metadata of ``table``, NOT NULL columns first."""
        raise NotImplementedError

    def set_input_sizes(self, cur: Any, columns: list[Column]) -> None:
        """Declare large object binds before executing an insert."""

    def native_of(self, cur: Any, desc: Any) -> tuple[str, int, int]:
        return "", 0, 0

    def ref_cursor_var(self, cur: Any) -> Any:
        """Output variable receiving a ref cursor."""
        raise DbcsvError(f"{self.name} does not support ref cursor calls")

    def out_var(self, cur: Any, kind: str) -> Any:
        """Output variable of a procedure argument of native type ``kind``."""
        raise DbcsvError(f"{self.name} does not support procedure calls")

    def describe(self, cur: Any) -> list[tuple[str, ValueKind]]:
        """Name and value kind of every column of an executed query."""
        out = []
        for desc in cur.description or []:
            native, precision, scale = self.native_of(cur, desc)
            out.append((desc[0], value_kind(native, precision, scale)))
        return out

    def truncate(self, conn: Any, table: str) -> None:
        """Empty ``table``, falling back to DELETE when TRUNCATE is refused."""
        table = self.quote_name(conn, table)
        qry = f"TRUNCATE TABLE {table}"
        try:
            conn.cursor().execute(qry)
            conn.commit()
        except self.driver_errors as err:
            logger.info("truncate failed, deleting qry=%r error=%s", qry, err)
            conn.rollback()
            self.begin(conn)
            try:
                conn.cursor().execute(f"DELETE FROM {table}")
            except self.driver_errors as del_err:
                raise ExecutionError(qry, err) from del_err
            conn.commit()


class OracleDialect(Dialect):
    name = "oracle"
    driver_errors = (oracledb.Error,)

    def __init__(self, url: str) -> None:
        super().__init__(url)
        self.params = self._parse(url)

    @staticmethod
    def _parse(url: str) -> dict[str, Any]:
        if url.startswith("oracle://"):
            u = urlparse(url)
            dsn = f"{u.hostname}:{u.port or 1521}{u.path or ''}"
            return {"user": unquote(u.username or ""), "password": unquote(u.password or ""), "dsn": dsn}
        creds, _, dsn = url.rpartition("@")
        user, _, password = creds.partition("/")
        return {"user": user, "password": password, "dsn": dsn}

    def connect(self) -> Any:
        oracledb.defaults.fetch_lobs = False
        conn = oracledb.connect(**self.params)
        with conn.cursor() as cur:
            cur.execute("ALTER SESSION SET NLS_NUMERIC_CHARACTERS = '. '")
            cur.execute(f"ALTER SESSION SET NLS_DATE_FORMAT = '{ORACLE_DATE_FORMAT}'")
        return conn

    def prepare_dump(self, conn: Any) -> None:
        conn.outputtypehandler = _oracle_output_type_handler

    def placeholder(self, i: int) -> str:
        return f":{i}"

    def release_savepoint(self, cur: Any) -> None:
        # Oracle has no RELEASE SAVEPOINT.
        pass

    def tablespace_clause(self, tablespace: str) -> str:
        return f" TABLESPACE {tablespace}" if tablespace else ""

    def insert_sql(self, conn: Any, table: str, names: list[str]) -> str:
        binds = ", ".join(self.placeholder(i + 1) for i in range(len(names)))
        return f"INSERT /*+ APPEND */ INTO {table} ({', '.join(names)}) VALUES ({binds})"

    def table_exists(self, conn: Any, table: str) -> bool:
        owner, name = split_owner(table.upper())
        qry = (
            "SELECT COUNT(0) FROM all_tables WHERE UPPER(table_name) = :1"
            " AND owner = NVL(:2, SYS_CONTEXT('USERENV', 'CURRENT_SCHEMA'))"
        )
        with conn.cursor() as cur:
            cur.execute(qry, [name, owner or None])
            return cur.fetchone()[0] > 0

    def table_columns(self, conn: Any, table: str) -> list[Column]:
        owner, name = split_owner(table.upper())
        qry = (
            "SELECT column_name, data_type, NVL(data_length, 0), NVL(data_precision, 0),"
            " NVL(data_scale, 0), nullable FROM all_tab_cols"
            " WHERE table_name = :1 AND owner = NVL(:2, SYS_CONTEXT('USERENV', 'CURRENT_SCHEMA'))"
            " AND hidden_column = 'NO'"
            " ORDER BY nullable, column_id"
        )
        with conn.cursor() as cur:
            cur.execute(qry, [name, owner or None])
            return [
                Column.from_catalog(col, typ, length, prec, scale, nullable != "N")
                for col, typ, length, prec, scale, nullable in cur
            ]

    def set_input_sizes(self, cur: Any, columns: list[Column]) -> None:
        if not any(c.is_lob for c in columns):
            return
        sizes = []
        for c in columns:
            if c.data_type == "BLOB":
                sizes.append(oracledb.DB_TYPE_BLOB)
            elif c.is_lob:
                sizes.append(oracledb.DB_TYPE_CLOB)
            else:
                sizes.append(None)
        cur.setinputsizes(*sizes)

    def native_of(self, cur: Any, desc: Any) -> tuple[str, int, int]:
        type_code = desc[1]
        native = getattr(type_code, "name", str(type_code)).removeprefix("DB_TYPE_")
        return native, desc[4] or 0, desc[5] or 0

    def ref_cursor_var(self, cur: Any) -> Any:
        return cur.var(oracledb.DB_TYPE_CURSOR)

    def out_var(self, cur: Any, kind: str) -> Any:
        if kind == "DATE":
            return cur.var(oracledb.DB_TYPE_DATE)
        if kind == "NUMBER":
            return cur.var(oracledb.DB_TYPE_NUMBER)
        return cur.var(str, 32767)


def _oracle_date(value: str) -> Any:
    value = value.strip()
    if value.startswith("-"):
        return OPEN_ENDED
    return datetime.strptime(value, "%Y-%m-%d %H:%M:%S")


def _oracle_output_type_handler(cursor: Any, metadata: Any) -> Any:
    # Python datetimes cannot carry negative years: fetch DATE as text.
    if metadata.type_code is oracledb.DB_TYPE_DATE:
        return cursor.var(str, arraysize=cursor.arraysize, outconverter=_oracle_date)
    if metadata.type_code is oracledb.DB_TYPE_NUMBER and not metadata.precision:
        if metadata.scale in (0, -127):
            return cursor.var(str, arraysize=cursor.arraysize)
    return None


# information_schema data types, spelled as Oracle family types.
_PG_TYPES = {
    "numeric": ("NUMBER", None),
    "smallint": ("NUMBER", 5),
    "integer": ("NUMBER", 10),
    "bigint": ("NUMBER", 19),
    "character varying": ("VARCHAR2", None),
    "character": ("CHAR", None),
    "text": ("CLOB", None),
    "bytea": ("BLOB", None),
    "date": ("DATE", None),
    "timestamp without time zone": ("DATE", None),
    "timestamp with time zone": ("DATE", None),
    "double precision": ("BINARY_DOUBLE", None),
    "real": ("BINARY_FLOAT", None),
}

_PG_DDL = {
    "NUMBER": "NUMERIC",
    "VARCHAR2": "VARCHAR",
    "DATE": "TIMESTAMP",
    "CLOB": "TEXT",
    "BLOB": "BYTEA",
}


class PostgresDialect(Dialect):
    name = "postgresql"
    driver_errors = (psycopg.Error,)

    def connect(self) -> Any:
        return psycopg.connect(self.url)

    def placeholder(self, i: int) -> str:
        return "%s"

    def catalog_name(self, name: str) -> str:
        return name.lower()

    def _identifier(self, name: str) -> sql.Identifier:
        owner, table = split_owner(self.catalog_name(name))
        return sql.Identifier(owner, table) if owner else sql.Identifier(table)

    def quote_name(self, conn: Any, name: str) -> str:
        return self._identifier(name).as_string(conn)

    def insert_sql(self, conn: Any, table: str, names: list[str]) -> str:
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
            self._identifier(table),
            sql.SQL(", ").join(self._identifier(name) for name in names),
            sql.SQL(", ").join(sql.Placeholder() * len(names)),
        )
        return query.as_string(conn)

    def begin_read_only(self, conn: Any) -> None:
        conn.read_only = True

    def type_name(self, native: str, size: int | None = None) -> str:
        return super().type_name(_PG_DDL.get(native, native), size)

    def table_exists(self, conn: Any, table: str) -> bool:
        owner, name = split_owner(self.catalog_name(table))
        qry = (
            "SELECT COUNT(*) FROM information_schema.tables"
            " WHERE table_name = %s AND table_schema = COALESCE(%s::text, current_schema())"
        )
        with conn.cursor() as cur:
            cur.execute(qry, [name, owner or None])
            return cur.fetchone()[0] > 0

    def table_columns(self, conn: Any, table: str) -> list[Column]:
        owner, name = split_owner(self.catalog_name(table))
        qry = (
            "SELECT column_name, data_type, COALESCE(character_maximum_length, 0),"
            " COALESCE(numeric_precision, 0), COALESCE(numeric_scale, 0), is_nullable"
            " FROM information_schema.columns"
            " WHERE table_name = %s AND table_schema = COALESCE(%s::text, current_schema())"
            " ORDER BY is_nullable, ordinal_position"
        )
        columns = []
        with conn.cursor() as cur:
            cur.execute(qry, [name, owner or None])
            for col, typ, length, prec, scale, nullable in cur:
                native, fixed = _PG_TYPES.get(typ, (typ.upper(), None))
                if fixed:
                    prec, scale = fixed, 0
                columns.append(Column.from_catalog(col.upper(), native, length, prec, scale, nullable == "YES"))
        return columns

    def native_of(self, cur: Any, desc: Any) -> tuple[str, int, int]:
        info = cur.connection.adapters.types.get(desc.type_code)
        return (info.name if info else ""), desc.precision or 0, desc.scale or 0


def _sqlite_datetime(value: bytes) -> datetime:
    return datetime.fromisoformat(value.decode())


sqlite3.register_adapter(Decimal, str)
sqlite3.register_adapter(datetime, lambda v: v.isoformat(" "))
sqlite3.register_adapter(date, lambda v: v.isoformat())
sqlite3.register_converter("DATE", _sqlite_datetime)


class SqliteDialect(Dialect):
    """SQLite, storing Oracle family type names as declared column types."""

    name = "sqlite"
    max_writers = 1
    driver_errors = (sqlite3.Error,)

    def __init__(self, url: str) -> None:
        super().__init__(url)
        self.path = url.removeprefix("sqlite:///") if url.startswith("sqlite:///") else url.removeprefix("sqlite://")

    def connect(self) -> Any:
        return sqlite3.connect(
            self.path or ":memory:",
            isolation_level=None,
            check_same_thread=False,
            detect_types=sqlite3.PARSE_DECLTYPES,
        )

    def begin(self, conn: Any) -> None:
        conn.execute("BEGIN")

    def begin_read_only(self, conn: Any) -> None:
        conn.execute("PRAGMA query_only = ON")

    def table_exists(self, conn: Any, table: str) -> bool:
        _, name = split_owner(table)
        cur = conn.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND UPPER(name) = UPPER(?)",
            (name,),
        )
        return cur.fetchone()[0] > 0

    def table_columns(self, conn: Any, table: str) -> list[Column]:
        owner, name = split_owner(table)
        pragma = f"PRAGMA {owner}.table_info({name})" if owner else f"PRAGMA table_info({name})"
        columns = []
        for _cid, col, declared, notnull, _dflt, _pk in conn.execute(pragma).fetchall():
            native, size, scale = parse_type(declared)
            if native == "INTEGER":
                native, size = "NUMBER", 19
            length, precision = (0, size) if native == "NUMBER" else (size, 0)
            columns.append(Column.from_catalog(col.upper(), native, length, precision, scale, not notnull))
        columns.sort(key=lambda c: c.nullable)
        return columns

    def describe(self, cur: Any) -> list[tuple[str, ValueKind]]:
        # SQLite reports no types for result columns.
        return [(desc[0], ValueKind.STRING) for desc in cur.description or []]


def dialect_for(url: str) -> Dialect:
    """Select the dialect of a connection string.

    Raises:
        DbcsvError: If the connection string is not recognized
    """
    if url.startswith("sqlite:"):
        return SqliteDialect(url)
    if url.startswith(("postgresql://", "postgres://")):
        return PostgresDialect(url)
    if url.startswith("oracle://") or ("/" in url and "@" in url and "://" not in url):
        return OracleDialect(url)
    raise DbcsvError(f"unrecognized connection string {redact(url)!r}")


def redact(url: str) -> str:
    """Hide the password of a connection string for logging."""
    if "://" in url:
        return re.sub(r"(://[^:/@]*:)[^@]*@", r"\1***@", url)
    return re.sub(r"^([^/@]*/)[^@]*@", r"\1***@", url)


class DatabaseConnection:
    """A connection of one of the supported databases."""

    def __init__(self, connection_string: str, dialect: Dialect | None = None) -> None:
        """Initialize database connection.

        Args:
            connection_string: Oracle, PostgreSQL or SQLite connection string
            dialect: Dialect to use instead of the one the string selects
        """
        self.connection_string = connection_string
        self.dialect = dialect or dialect_for(connection_string)
        self.conn: Any = None

    def __enter__(self) -> DatabaseConnection:
        """Enter context manager."""
        self.conn = self.dialect.connect()
        logger.debug("connected db=%s dialect=%s", redact(self.connection_string), self.dialect.name)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit context manager."""
        if self.conn:
            try:
                if exc_type is not None:
                    self.conn.rollback()
            finally:
                self.conn.close()
                self.conn = None

    def _require(self) -> Any:
        if not self.conn:
            raise RuntimeError("Database connection not established")
        return self.conn

    def cursor(self) -> Any:
        return self._require().cursor()

    def begin(self) -> None:
        self.dialect.begin(self._require())

    def begin_read_only(self) -> None:
        self.dialect.begin_read_only(self._require())

    def prepare_dump(self) -> None:
        self.dialect.prepare_dump(self._require())

    def commit(self) -> None:
        self._require().commit()

    def rollback(self) -> None:
        self._require().rollback()

    def execute(self, query: str, params: Any = None) -> Any:
        """Execute ``query`` and return the cursor.

        Raises:
            ExecutionError: If the database rejects the statement
        """
        cur = self.cursor()
        try:
            if params is None:
                cur.execute(query)
            else:
                cur.execute(query, params)
        except self.dialect.driver_errors as err:
            raise ExecutionError(query, err, params) from err
        return cur

    def table_exists(self, table: str) -> bool:
        return self.dialect.table_exists(self._require(), table)

    def table_columns(self, table: str) -> list[Column]:
        return self.dialect.table_columns(self._require(), table)

    def truncate(self, table: str) -> None:
        self.dialect.truncate(self._require(), table)

    def quote_name(self, name: str) -> str:
        return self.dialect.quote_name(self._require(), name)

    def insert_sql(self, table: str, names: list[str]) -> str:
        return self.dialect.insert_sql(self._require(), table, names)
