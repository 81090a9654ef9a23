"""Move tabular data between relational databases and CSV/spreadsheet files.

This package provides both a CLI tool and programmatic API.

CLI Usage:
    dbcsv load <table> <file> --connect <url>
    dbcsv dump <table> [where] [columns...] --connect <url>
    dbcsv inspect <file>
    dbcsv copy <src-table> [where] [dst-table] --src <url> --dst <url>
    dbcsv foreach <file> --call <procedure> --connect <url>
    dbcsv paraexp 'name:SELECT ...' --connect <url>

Programmatic Usage:
    from dbcsv import Context, LoadOptions, load

    result = load(Context(), "sqlite:///data.db", "T_DATA", "data.csv", LoadOptions())
"""

__version__ = "0.1.0"

from dbcsv.concurrency import Context
from dbcsv.dump import DumpOptions, dump
from dbcsv.errors import (
    Cancelled,
    ConversionError,
    DbcsvError,
    DeadlineExceeded,
    ExecutionError,
    FormatError,
    TooManyFieldsError,
    UnknownSheetError,
)
from dbcsv.load import LoadOptions, LoadResult, load
from dbcsv.render import FormatOptions
from dbcsv.source import Source, SourceOptions

__all__ = [
    "__version__",
    "Context",
    # Operations
    "load",
    "LoadOptions",
    "LoadResult",
    "dump",
    "DumpOptions",
    "FormatOptions",
    "Source",
    "SourceOptions",
    # Errors
    "DbcsvError",
    "Cancelled",
    "DeadlineExceeded",
    "FormatError",
    "UnknownSheetError",
    "TooManyFieldsError",
    "ConversionError",
    "ExecutionError",
]
