"""Tests for destination table provisioning."""

from pathlib import Path

import pytest

from dbcsv.columns import Column
from dbcsv.database import DatabaseConnection, OracleDialect, PostgresDialect, SqliteDialect
from dbcsv.errors import DbcsvError
from dbcsv.provision import (
    ProvisionOptions,
    _unique_names,
    column_ddl,
    create_table_sql,
    match_fields,
    mk_col_name,
    provision,
)
from dbcsv.readers import Row
from dbcsv.type_detection import ColumnType, InferredColumn
from tests.db_test_utils import execute_query, execute_script, get_table_columns, table_exists


def inferred(name: str, typ: ColumnType, width: int) -> InferredColumn:
    col = InferredColumn(name)
    col.type = typ
    col.width = width
    return col


class TestMkColName:
    """Test suite for turning headers into column names."""

    def test_accents_and_punctuation(self) -> None:
        """Test accent stripping and replacement of other characters."""
        assert mk_col_name("Árvíztűrő Tükörfúrógép") == "ARVIZTURO_TUKORFUROGEP"
        assert mk_col_name("unit price (€)") == "UNIT_PRICE____"
        assert mk_col_name("a-b.c") == "A_B_C"

    def test_leading_underscore(self) -> None:
        """Test that a name never starts with an underscore."""
        assert mk_col_name("_id") == "X_ID"
        assert mk_col_name(" x") == "X_X"

    def test_long_names_are_hashed(self) -> None:
        """Test that long names keep a prefix and a digest of the whole name."""
        first = mk_col_name("a_very_long_column_name_describing_the_first_thing")
        second = mk_col_name("a_very_long_column_name_describing_the_other_thing")
        assert len(first) == len(second) == 30
        assert first[:23] == second[:23] == "A_VERY_LONG_COLUMN_NAME"
        assert first != second
        assert first == mk_col_name("A_VERY_LONG_COLUMN_NAME_DESCRIBING_THE_FIRST_THING")

    def test_exactly_thirty(self) -> None:
        """Test that a 30 character name is kept whole."""
        assert mk_col_name("x" * 30) == "X" * 30

    def test_unique_names(self) -> None:
        """Test that repeated names get a positional suffix."""
        assert _unique_names(["A", "B", "A"]) == ["A", "B", "A_3"]


class TestColumnDdl:
    """Test suite for column definitions of created tables."""

    def test_oracle_types(self) -> None:
        """Test widths are doubled and overlong text becomes a CLOB."""
        dialect = SqliteDialect("sqlite://")
        assert column_ddl(dialect, inferred("a", ColumnType.INT, 4)) == "NUMBER(8)"
        assert column_ddl(dialect, inferred("a", ColumnType.INT, 30)) == "NUMBER(38)"
        assert column_ddl(dialect, inferred("a", ColumnType.FLOAT, 6)) == "NUMBER"
        assert column_ddl(dialect, inferred("a", ColumnType.DATE, 10)) == "DATE"
        assert column_ddl(dialect, inferred("a", ColumnType.STRING, 10)) == "VARCHAR2(20)"
        assert column_ddl(dialect, inferred("a", ColumnType.UNKNOWN, 0)) == "VARCHAR2(1)"
        assert column_ddl(dialect, inferred("a", ColumnType.STRING, 2001)) == "CLOB"

    def test_postgres_spelling(self) -> None:
        """Test the PostgreSQL names of the same types."""
        dialect = PostgresDialect("postgresql://localhost/db")
        assert column_ddl(dialect, inferred("a", ColumnType.INT, 4)) == "NUMERIC(8)"
        assert column_ddl(dialect, inferred("a", ColumnType.STRING, 10)) == "VARCHAR(20)"
        assert column_ddl(dialect, inferred("a", ColumnType.DATE, 10)) == "TIMESTAMP"
        assert column_ddl(dialect, inferred("a", ColumnType.STRING, 3000)) == "TEXT"

    def test_create_table_sql(self) -> None:
        """Test the complete statement with a tablespace."""
        dialect = OracleDialect("oracle://scott:tiger@db:1521/orcl")
        sql = create_table_sql(
            dialect,
            "T_PEOPLE",
            [inferred("Név", ColumnType.STRING, 5), inferred("név", ColumnType.INT, 2)],
            tablespace="DATA",
        )
        assert sql == "CREATE TABLE T_PEOPLE (\n  NEV VARCHAR2(10),\n  NEV_2 NUMBER(4)\n) TABLESPACE DATA"


class TestMatchFields:
    """Test suite for pairing source fields with table columns."""

    def test_matching(self) -> None:
        """Test exact, sanitized and F_ prefixed matches; unknown fields are left out."""
        columns = [Column("ID", "NUMBER"), Column("F_NAME", "VARCHAR2"), Column("UNIT_PRICE", "NUMBER")]
        pairs = match_fields(columns, ["id", "unknown", "name", "Unit Price"])
        assert [(i, c.name) for i, c in pairs] == [(0, "ID"), (2, "F_NAME"), (3, "UNIT_PRICE")]

    def test_column_used_once(self) -> None:
        """Test that a column is filled by its first matching field only."""
        pairs = match_fields([Column("ID", "NUMBER")], ["id", "ID"])
        assert [i for i, _ in pairs] == [0]


class TestProvision:
    """Test suite for provisioning against a real database."""

    def test_create_from_header(self, db_url: str) -> None:
        """Test that a missing table is created with inferred types."""
        rows = [Row(["1", "Alice", "2024-01-15", "1.5"]), Row(["22", "Bob", "", "2.25"])]
        with DatabaseConnection(db_url) as db:
            columns = provision(db, "t_people", ["id", "name", "born", "score"], rows)
        assert table_exists(db_url, "T_PEOPLE")
        assert get_table_columns(db_url, "T_PEOPLE") == ["ID", "NAME", "BORN", "SCORE"]
        by_name = {c.name: c for c in columns}
        assert by_name["ID"].type is ColumnType.INT
        assert by_name["NAME"].type is ColumnType.STRING
        assert by_name["BORN"].type is ColumnType.DATE
        assert by_name["SCORE"].type is ColumnType.FLOAT

    def test_existing_table_is_kept(self, db_url: str) -> None:
        """Test that rows are not consumed for an existing table."""
        execute_script(db_url, "CREATE TABLE T_KEEP (ID NUMERIC(5), NAME VARCHAR(10))")

        def no_rows():
            raise AssertionError("rows must not be read")
            yield

        with DatabaseConnection(db_url) as db:
            columns = provision(db, "T_KEEP", ["id", "name"], no_rows())
        assert sorted(c.name for c in columns) == ["ID", "NAME"]

    def test_truncate(self, db_url: str) -> None:
        """Test emptying an existing table."""
        execute_script(
            db_url,
            "CREATE TABLE T_TRUNC (ID NUMERIC(5))",
            "INSERT INTO T_TRUNC (ID) VALUES (1)",
        )
        with DatabaseConnection(db_url) as db:
            provision(db, "T_TRUNC", ["id"], [], ProvisionOptions(truncate=True))
        assert execute_query(db_url, "SELECT COUNT(*) FROM T_TRUNC") == [(0,)]

    def test_copy_structure(self, db_url: str) -> None:
        """Test creating the table like another one."""
        execute_script(db_url, "CREATE TABLE T_MODEL (ID NUMERIC(5), NAME VARCHAR(10))")
        with DatabaseConnection(db_url) as db:
            provision(db, "T_COPY", [], [], ProvisionOptions(copy="T_MODEL"))
        assert get_table_columns(db_url, "T_COPY") == ["ID", "NAME"]

    def test_no_header(self, tmp_path: Path) -> None:
        """Test that a table cannot be created without a header."""
        with DatabaseConnection(f"sqlite:///{tmp_path / 'x.db'}") as db, pytest.raises(DbcsvError):
            provision(db, "T_NONE", [], [])
