"""Row sources: files, standard input and compressed variants of both."""

from __future__ import annotations

import codecs
import logging
import os
import shutil
import sys
import tempfile
import zlib
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import zstandard

from dbcsv.concurrency import Context
from dbcsv.detect import Compression, Container, FileType, decompress_stream
from dbcsv.errors import FormatError
from dbcsv.readers import (
    Row,
    iter_csv,
    iter_xls,
    iter_xlsx,
    sheet_names_xls,
    sheet_names_xlsx,
)

logger = logging.getLogger(__name__)

STDIN_NAMES = ("", "-")


@dataclass
class SourceOptions:
    """How to read a source.

    Attributes:
        delim: CSV field delimiter, detected when empty
        charset: Character set of CSV text and legacy spreadsheets
        sheet: Zero-based sheet index for spreadsheets
        skip: Number of leading rows to skip
        columns: Optional 1-based column projection
    """

    delim: str = ""
    charset: str = "utf-8"
    sheet: int = 0
    skip: int = 0
    columns: list[int] = field(default_factory=list)


def python_encoding(charset: str) -> str:
    """Map a charset name to a Python codec, stripping a UTF-8 byte order mark."""
    try:
        name = codecs.lookup(charset or "utf-8").name
    except LookupError as e:
        raise FormatError(f"{charset}: unknown character set") from e
    return "utf-8-sig" if name == "utf-8" else name


class Source:
    """An opened row source.

    Spreadsheet readers need random access, so standard input, pipes and
    compressed files are first copied into a temporary file which is removed
    again on :meth:`close`.
    """

    def __init__(self, name: str, path: str, file_type: FileType, options: SourceOptions, temp: bool) -> None:
        self.name = name
        self.path = path
        self.file_type = file_type
        self.options = options
        self._temp = temp

    @classmethod
    def open(cls, file_name: str, options: SourceOptions | None = None) -> Source:
        """Open ``file_name`` (``-`` or empty for standard input) and detect its type.

        Raises:
            FormatError: If the container is not recognized
        """
        options = options or SourceOptions()
        name = "-" if file_name in STDIN_NAMES else file_name
        raw: Any = sys.stdin.buffer if name == "-" else open(file_name, "rb")  # noqa: SIM115
        try:
            file_type, stream = decompress_stream(raw, name)
            if file_type.container is Container.UNKNOWN:
                raise FormatError(f"{name}: unknown file type")
            regular = name != "-" and os.path.isfile(file_name)
            if regular and file_type.compression is Compression.NONE:
                return cls(name, file_name, file_type, options, temp=False)
            suffix = f".{file_type.container.value}"
            with tempfile.NamedTemporaryFile(prefix="dbcsv-", suffix=suffix, delete=False) as tmp:
                try:
                    shutil.copyfileobj(stream, tmp)
                except (OSError, EOFError, zlib.error, zstandard.ZstdError) as err:
                    tmp.close()
                    Path(tmp.name).unlink(missing_ok=True)
                    raise FormatError(f"{name}: corrupt {file_type.compression.value} stream: {err}") from err
            logger.info("spooled source=%s into temp=%s type=%s", name, tmp.name, file_type)
            return cls(name, tmp.name, file_type, options, temp=True)
        finally:
            if raw is not sys.stdin.buffer:
                raw.close()

    def close(self) -> None:
        if self._temp:
            Path(self.path).unlink(missing_ok=True)
            self._temp = False

    def __enter__(self) -> Source:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def encoding(self) -> str:
        return python_encoding(self.options.charset)

    def _projection(self) -> list[int] | None:
        if not self.options.columns:
            return None
        return [c - 1 for c in self.options.columns]

    def read_sheets(self) -> dict[int, str]:
        """Return the sheets of the source as ``{index: name}``."""
        if self.file_type.container is Container.XLSX:
            names = sheet_names_xlsx(self.path)
        elif self.file_type.container is Container.XLS:
            names = sheet_names_xls(self.path, self.options.charset or None)
        else:
            names = [self.name]
        return dict(enumerate(names))

    def iter_rows(self, ctx: Context) -> Iterator[tuple[str, Row]]:
        """Yield ``(sheet_name, row)`` for every row of the configured sheet."""
        opts = self.options
        columns = self._projection()
        container = self.file_type.container
        if container is Container.XLSX:
            yield from iter_xlsx(ctx, self.path, opts.sheet, columns, opts.skip)
        elif container is Container.XLS:
            yield from iter_xls(ctx, self.path, opts.charset or None, opts.sheet, columns, opts.skip)
        else:
            with open(self.path, encoding=self.encoding, newline="") as f:
                for row in iter_csv(ctx, f, opts.delim, columns, opts.skip):
                    yield self.name, row

    def read_rows(self, ctx: Context, on_row: Callable[[Context, str, Row], None]) -> int:
        """Call ``on_row(ctx, sheet_name, row)`` for every row, in order.

        Returns:
            Number of rows delivered

        Raises:
            Cancelled: If ``ctx`` is cancelled or ``on_row`` asks to stop
        """
        n = 0
        for sheet, row in self.iter_rows(ctx):
            on_row(ctx, sheet, row)
            n += 1
        return n
