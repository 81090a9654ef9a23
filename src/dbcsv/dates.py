"""Date layout helpers shared by type inference, loading and dumping."""

from __future__ import annotations

from datetime import datetime, timedelta

# Day zero of spreadsheet serial dates.
XLS_EPOCH = datetime(1899, 12, 30)

DEFAULT_LOAD_LAYOUT = "%Y-%m-%d %H:%M:%S"
DEFAULT_DUMP_LAYOUT = "%Y-%m-%dT%H:%M:%S"

# Rendered width of the strftime directives we know about.
_DIRECTIVE_WIDTHS = {
    "Y": 4,
    "m": 2,
    "d": 2,
    "H": 2,
    "M": 2,
    "S": 2,
    "y": 2,
    "I": 2,
    "p": 2,
    "f": 6,
    "j": 3,
    "b": 3,
    "a": 3,
    "%": 1,
}


def _tokens(layout: str) -> list[tuple[str, int]]:
    tokens = []
    i = 0
    while i < len(layout):
        if layout[i] == "%" and i + 1 < len(layout):
            tokens.append((layout[i : i + 2], _DIRECTIVE_WIDTHS.get(layout[i + 1], 2)))
            i += 2
        else:
            tokens.append((layout[i], 1))
            i += 1
    return tokens


def layout_width(layout: str) -> int:
    """Number of characters a value rendered with ``layout`` occupies."""
    return sum(width for _, width in _tokens(layout))


def truncate_layout(layout: str, length: int) -> str:
    """Return the longest prefix of ``layout`` rendering to at most ``length`` characters.

    Examples:
        >>> truncate_layout("%Y-%m-%d %H:%M:%S", 10)
        '%Y-%m-%d'
        >>> truncate_layout("%Y-%m-%d %H:%M:%S", 16)
        '%Y-%m-%d %H:%M'
    """
    out = []
    width = 0
    for token, w in _tokens(layout):
        if width + w > length:
            break
        out.append(token)
        width += w
    return "".join(out)


def parse_prefix(value: str, layout: str) -> datetime:
    """Parse ``value`` with the prefix of ``layout`` matching its length.

    Raises:
        ValueError: If the value does not match the truncated layout
    """
    return datetime.strptime(value, truncate_layout(layout, len(value)))


def from_serial(days: float) -> datetime:
    """Convert a spreadsheet serial day number to a datetime."""
    return XLS_EPOCH + timedelta(days=days)


def date_end(layout: str) -> str:
    """Render the maximal date (the "no end date" sentinel) with ``layout``."""
    return datetime(9999, 12, 31, 23, 59, 59).strftime(layout)


def iso_string(value: datetime) -> str:
    """Render date-only when the time of day is midnight, else a full timestamp."""
    if value.hour == 0 and value.minute == 0 and value.second == 0 and not value.microsecond:
        return value.strftime("%Y-%m-%d")
    return value.strftime("%Y-%m-%d %H:%M:%S")
