"""Exception hierarchy for dbcsv."""

from __future__ import annotations

from typing import Any


class DbcsvError(Exception):
    """Base class for all dbcsv failures."""


class Cancelled(DbcsvError):  # noqa: N818
    """The operation was stopped through its cancellation context.

    Never an application error: callers treat it as a clean stop.
    """


class DeadlineExceeded(Cancelled):
    """The operation ran past the deadline of its context."""


class FormatError(DbcsvError, ValueError):
    """Unrecognized or corrupt input container."""


class UnknownSheetError(FormatError):
    """The requested sheet does not exist in the workbook."""

    def __init__(self, index: int, names: list[str] | None = None) -> None:
        self.index = index
        self.names = names or []
        super().__init__(f"{index}: unknown sheet (have {len(self.names)} sheets)")


class TooManyFieldsError(DbcsvError, ValueError):
    """A source row has more non-empty fields than destination columns."""

    def __init__(self, row_index: int, n_fields: int, n_columns: int) -> None:
        self.row_index = row_index
        self.n_fields = n_fields
        self.n_columns = n_columns
        super().__init__(
            f"{row_index}. more elements in the row ({n_fields}) then columns ({n_columns})"
        )


class ConversionError(DbcsvError, ValueError):
    """A cell could not be converted into the bind value of its column."""

    def __init__(self, row_index: int, column: str, value: str, reason: str) -> None:
        self.row_index = row_index
        self.column = column
        self.value = value
        self.reason = reason
        super().__init__(f"row {row_index}, column {column}: {value!r}: {reason}")

    def shifted(self, offset: int) -> ConversionError:
        """Return the same error with the row index moved by ``offset``."""
        return ConversionError(self.row_index + offset, self.column, self.value, self.reason)


class ExecutionError(DbcsvError):
    """The database rejected a statement."""

    def __init__(
        self,
        query: str,
        cause: BaseException,
        binds: Any = None,
        row_index: int | None = None,
    ) -> None:
        self.query = query
        self.cause = cause
        self.binds = binds
        self.row_index = row_index
        where = f" (row {row_index})" if row_index is not None else ""
        params = f" [{binds!r}]" if binds is not None else ""
        super().__init__(f"{query}{params}{where}: {cause}")
