"""Rendering of database values as CSV text (the dump direction)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from dbcsv.dates import DEFAULT_DUMP_LAYOUT, date_end

ZERO_DATE = datetime(1, 1, 1)

# Native type names of the Oracle family, plus the other dialects' spellings.
INTEGER_TYPES = frozenset(
    {"INTEGER", "INT", "SMALLINT", "BIGINT", "BINARY_INTEGER", "PLS_INTEGER", "INT2", "INT4", "INT8"}
)
FLOAT_TYPES = frozenset(
    {"FLOAT", "BINARY_FLOAT", "BINARY_DOUBLE", "DOUBLE", "DOUBLE PRECISION", "REAL", "FLOAT4", "FLOAT8"}
)
BYTES_TYPES = frozenset({"RAW", "LONG RAW", "BLOB", "BYTEA"})
DATE_TYPES = frozenset({"DATE", "TIMESTAMP", "TIMESTAMPTZ", "DATETIME"})


class _OpenEnded:
    """Marker for dates with a negative year, meaning "no end date"."""

    _instance: _OpenEnded | None = None

    def __new__(cls) -> _OpenEnded:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "OPEN_ENDED"


OPEN_ENDED = _OpenEnded()


class ValueKind(str, Enum):
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    BYTES = "bytes"
    DATE = "date"
    OPAQUE_NUMERIC = "opaque_numeric"


def value_kind(native_type: str, precision: int | None = None, scale: int | None = None) -> ValueKind:
    """Map a native column type to the kind of value it holds.

    ``NUMBER`` with a precision or scale is an integer when its scale is
    zero and it has at most 19 digits, and a float otherwise. An
    unconstrained ``NUMBER`` is kept as opaque numeric text.

    Examples:
        >>> value_kind("NUMBER", 10, 0)
        <ValueKind.INTEGER: 'integer'>
        >>> value_kind("NUMBER", 12, 2)
        <ValueKind.FLOAT: 'float'>
        >>> value_kind("NUMBER")
        <ValueKind.OPAQUE_NUMERIC: 'opaque_numeric'>
    """
    name = (native_type or "").upper()
    base = name.split("(", 1)[0].strip()
    precision = precision or 0
    scale = scale or 0
    if base in ("NUMBER", "NUMERIC", "DECIMAL"):
        if scale == -127:
            return ValueKind.FLOAT if precision else ValueKind.OPAQUE_NUMERIC
        if precision or scale:
            if scale == 0 and precision <= 19:
                return ValueKind.INTEGER
            return ValueKind.FLOAT
        return ValueKind.OPAQUE_NUMERIC
    if base in INTEGER_TYPES:
        return ValueKind.INTEGER
    if base in FLOAT_TYPES:
        return ValueKind.FLOAT
    if base in BYTES_TYPES:
        return ValueKind.BYTES
    if base in DATE_TYPES or base.startswith("TIMESTAMP"):
        return ValueKind.DATE
    return ValueKind.STRING


def csv_quote(sep: str, value: str) -> str:
    """Quote ``value`` if it contains ``sep``, a double quote or a newline.

    An empty separator disables quoting.

    Examples:
        >>> csv_quote(",", 'a"b')
        '"a""b"'
        >>> csv_quote(",", "plain")
        'plain'
    """
    if not sep:
        return value
    if sep in value or '"' in value or "\n" in value:
        return '"' + value.replace('"', '""') + '"'
    return value


def format_float(value: float | Decimal | int) -> str:
    """Shortest round-trip decimal rendering, never in exponent notation.

    Examples:
        >>> format_float(3.0), format_float(0.1), format_float(1e20)
        ('3', '0.1', '100000000000000000000')
    """
    if isinstance(value, int):
        return str(value)
    if not isinstance(value, Decimal):
        value = Decimal(repr(value))
    if not value.is_finite():
        return str(value)
    s = format(value, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s


@dataclass(frozen=True)
class FormatOptions:
    """Formatting settings of one dump or load operation.

    Attributes:
        layout: strftime layout of dates
        sep: CSV field separator; empty disables quoting
        end_date: Rendering of open-ended dates; the maximal date in
            ``layout`` when empty
    """

    layout: str = DEFAULT_DUMP_LAYOUT
    sep: str = ","
    end_date: str = ""

    @property
    def sentinel(self) -> str:
        return self.end_date or date_end(self.layout)

    @property
    def quote_dates(self) -> bool:
        return bool(self.sep) and self.sep in self.layout


@dataclass(frozen=True)
class Renderer:
    """Renders the values of one column, resolved once from its metadata."""

    kind: ValueKind
    options: FormatOptions

    def render_raw(self, value: Any) -> str:
        """Render ``value`` without CSV quoting; NULL renders as empty."""
        if value is None:
            return ""
        if self.kind is ValueKind.DATE:
            return self._date(value)
        if self.kind is ValueKind.INTEGER:
            return str(int(value)) if not isinstance(value, str) else value
        if self.kind is ValueKind.FLOAT:
            return format_float(value) if not isinstance(value, str) else value
        if self.kind is ValueKind.BYTES:
            return _hex(value)
        return _text(value, self.options)

    def render(self, value: Any) -> str:
        """Render ``value`` for a CSV field with the configured separator."""
        s = self.render_raw(value)
        if not s:
            return s
        if self.kind is ValueKind.DATE:
            if self.options.quote_dates:
                return '"' + s + '"'
            return s
        if self.kind in (ValueKind.STRING, ValueKind.OPAQUE_NUMERIC):
            return csv_quote(self.options.sep, s)
        return s

    def _date(self, value: Any) -> str:
        if value is OPEN_ENDED:
            return self.options.sentinel
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value)
            except ValueError:
                return value
        if isinstance(value, datetime):
            if value == ZERO_DATE:
                return ""
            return value.strftime(self.options.layout)
        if isinstance(value, date):
            if value == ZERO_DATE.date():
                return ""
            return datetime(value.year, value.month, value.day).strftime(self.options.layout)
        return str(value)


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value.encode("utf-8").hex()
    return bytes(value).hex()


def _text(value: Any, options: FormatOptions) -> str:
    # Untyped columns (SQLite) carry whatever the value is.
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (float, Decimal)):
        return format_float(value)
    if value is OPEN_ENDED:
        return options.sentinel
    if isinstance(value, datetime):
        return value.strftime(options.layout)
    return str(value)
