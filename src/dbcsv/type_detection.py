"""Type inference for untyped source columns."""

from collections.abc import Iterable
from enum import IntEnum

from dbcsv.dates import DEFAULT_LOAD_LAYOUT, layout_width, parse_prefix
from dbcsv.readers import Row


class ColumnType(IntEnum):
    """Inferred scalar type of a source column."""

    UNKNOWN = 0
    STRING = 1
    INT = 2
    FLOAT = 3
    DATE = 4

    @property
    def native_type(self) -> str:
        """Oracle type name used when creating a column of this type."""
        if self in (ColumnType.INT, ColumnType.FLOAT):
            return "NUMBER"
        if self is ColumnType.DATE:
            return "DATE"
        return "VARCHAR2"


def _is_ascii_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


def type_of(value: str, force_string: bool = False, layout: str = DEFAULT_LOAD_LAYOUT) -> ColumnType:
    """Classify a single sample value.

    Args:
        value: Raw cell value
        force_string: Classify everything as a string
        layout: Date layout tried for values of a plausible length

    Returns:
        The ColumnType of the value; UNKNOWN for an empty string

    Examples:
        >>> type_of("123")
        <ColumnType.INT: 2>
        >>> type_of("0123")
        <ColumnType.STRING: 1>
        >>> type_of("2024-01-15")
        <ColumnType.DATE: 4>
    """
    if force_string:
        return ColumnType.STRING
    if value == "":
        return ColumnType.UNKNOWN

    dots = value.count(".")
    has_non_digit = any(ch != "." and not _is_ascii_digit(ch) for ch in value)
    if not has_non_digit and value[0] != "0":
        if dots == 1:
            return ColumnType.FLOAT
        if dots == 0:
            return ColumnType.INT

    if 10 <= len(value) <= layout_width(layout):
        try:
            parse_prefix(value, layout)
        except ValueError:
            pass
        else:
            return ColumnType.DATE
    return ColumnType.STRING


class InferredColumn:
    """Running type and width of one source column."""

    def __init__(self, name: str, force_string: bool = False) -> None:
        self.name = name
        self.type = ColumnType.STRING if force_string else ColumnType.UNKNOWN
        self.width = 0

    def fold(self, value: str, force_string: bool = False, layout: str = DEFAULT_LOAD_LAYOUT) -> None:
        """Widen the running classification with one more sample."""
        if len(value) > self.width:
            self.width = len(value)
        if self.type is ColumnType.STRING:
            return
        typ = type_of(value, force_string, layout)
        if self.type is ColumnType.UNKNOWN:
            self.type = typ
        elif typ is not ColumnType.UNKNOWN and typ is not self.type:
            self.type = ColumnType.STRING

    def __repr__(self) -> str:
        return f"InferredColumn({self.name!r}, {self.type.name}, width={self.width})"


def infer_columns(
    header: list[str],
    rows: Iterable[Row | list[str]],
    force_string: bool = False,
    layout: str = DEFAULT_LOAD_LAYOUT,
) -> list[InferredColumn]:
    """Infer type and width of every column named in ``header`` over ``rows``.

    Fields beyond the header are ignored.
    """
    columns = [InferredColumn(name, force_string) for name in header]
    for row in rows:
        values = row.values if isinstance(row, Row) else row
        for col, value in zip(columns, values):
            col.fold(value, force_string, layout)
    return columns
