"""Destination columns and the conversion of raw strings into bind values."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from dbcsv.dates import DEFAULT_LOAD_LAYOUT, XLS_EPOCH, parse_prefix
from dbcsv.errors import ConversionError
from dbcsv.type_detection import ColumnType

LOB_TYPES = frozenset({"CLOB", "NCLOB", "BLOB"})
FLOAT_NATIVE_TYPES = frozenset({"FLOAT", "BINARY_FLOAT", "BINARY_DOUBLE"})

INT_ALPHABET = frozenset("0123456789-")
FLOAT_ALPHABET = frozenset("0123456789-.")


@dataclass(frozen=True)
class Column:
    """A destination table column as reported by the catalog.

    Attributes:
        name: Column name
        data_type: Native (Oracle family) type name, e.g. ``VARCHAR2``
        length: Byte length bound of character columns
        precision: Numeric precision, 0 when unconstrained
        scale: Numeric scale
        nullable: Whether NULL is allowed
        type: Classification used for parsing input strings
    """

    name: str
    data_type: str
    length: int = 0
    precision: int = 0
    scale: int = 0
    nullable: bool = True
    type: ColumnType = ColumnType.STRING

    @classmethod
    def from_catalog(
        cls,
        name: str,
        data_type: str,
        length: int | None = 0,
        precision: int | None = 0,
        scale: int | None = 0,
        nullable: bool = True,
    ) -> Column:
        """Build a column from catalog metadata, classifying its type.

        NUMBER with a positive scale or without precision is a float,
        otherwise an integer.
        """
        data_type = data_type.upper()
        length, precision, scale = length or 0, precision or 0, scale or 0
        typ = ColumnType.STRING
        if data_type == "DATE" or data_type.startswith("TIMESTAMP"):
            typ, length = ColumnType.DATE, 8
        elif data_type == "NUMBER":
            if scale > 0 or precision == 0:
                typ, length = ColumnType.FLOAT, precision + 1
            else:
                typ, length = ColumnType.INT, precision
        elif data_type in FLOAT_NATIVE_TYPES:
            typ = ColumnType.FLOAT
        return cls(name, data_type, length, precision, scale, nullable, typ)

    @property
    def is_lob(self) -> bool:
        return self.data_type in LOB_TYPES

    def from_strings(self, values: list[str], layout: str = DEFAULT_LOAD_LAYOUT) -> list[Any]:
        """Convert one column's batch of raw strings into bind values.

        Args:
            values: Raw cell values, one per batch row
            layout: strftime layout of date values

        Returns:
            The bind values, in order

        Raises:
            ConversionError: With the batch-relative row index of the first bad value
        """
        if self.type is ColumnType.DATE:
            return [self._date(i, s, layout) for i, s in enumerate(values)]
        if self.data_type.startswith("VARCHAR2"):
            return [self._varchar(i, s) for i, s in enumerate(values)]
        if self.type is ColumnType.INT:
            return [self._number(i, s, INT_ALPHABET, int, "integer") for i, s in enumerate(values)]
        if self.type is ColumnType.FLOAT:
            return [self._number(i, s, FLOAT_ALPHABET, Decimal, "float") for i, s in enumerate(values)]
        if self.data_type == "BLOB":
            return [_blob(s) for s in values]
        return list(values)

    def _error(self, i: int, value: str, reason: str) -> ConversionError:
        return ConversionError(i, self.name, value, reason)

    def _date(self, i: int, s: str, layout: str) -> datetime | None:
        if s == "":
            return None
        if len(s) < 8:
            try:
                return XLS_EPOCH + timedelta(days=int(s))
            except ValueError:
                pass
        try:
            return parse_prefix(s, layout)
        except ValueError as e:
            raise self._error(i, s, str(e)) from e

    def _varchar(self, i: int, s: str) -> str:
        n = len(s.encode("utf-8"))
        if self.length and n > self.length * 4:
            raise self._error(i, s, f"is longer ({n}) then allowed ({self.length})")
        return s

    def _number(self, i: int, s: str, alphabet: frozenset[str], convert: Any, what: str) -> Any:
        if s == "":
            return None
        bad = "".join(ch for ch in s if ch not in alphabet)
        if bad:
            raise self._error(i, s, f"is not {what} ({bad!r})")
        try:
            return convert(s)
        except (ValueError, InvalidOperation) as e:
            raise self._error(i, s, f"is not {what}") from e


def _blob(s: str) -> bytes | None:
    if s == "":
        return None
    try:
        return bytes.fromhex(s)
    except ValueError:
        return s.encode("utf-8")
