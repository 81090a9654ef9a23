"""Inspect command for examining CSV and spreadsheet sources."""

from __future__ import annotations

import os
from collections.abc import Iterator

import click
from rich.console import Console
from rich.table import Table

from dbcsv.cli_common import make_source_options, run, source_options
from dbcsv.concurrency import Context
from dbcsv.dates import DEFAULT_LOAD_LAYOUT
from dbcsv.load import data_rows, rows_with_first
from dbcsv.provision import mk_col_name
from dbcsv.readers import Row
from dbcsv.source import Source, SourceOptions
from dbcsv.type_detection import infer_columns

console = Console()

# Constants
MAX_COLUMNS_TO_DISPLAY = 10
MAX_VALUE_LENGTH = 80


def format_file_size(size_bytes: float) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted file size string
    """
    for unit in ["B", "KB", "MB", "GB"]:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} TB"


def _shorten(value: str) -> str:
    if len(value) > MAX_VALUE_LENGTH:
        return value[: MAX_VALUE_LENGTH - 3] + "..."
    return value


class _Sampler:
    """Counts the rows passing through and keeps the first few."""

    def __init__(self, keep: int) -> None:
        self.keep = keep
        self.rows: list[Row] = []
        self.count = 0

    def __call__(self, rows: Iterator[Row]) -> Iterator[Row]:
        for row in rows:
            self.count += 1
            if len(self.rows) < self.keep:
                self.rows.append(row)
            yield row


def inspect_source(ctx: Context, file_name: str, options: SourceOptions, num_records: int, layout: str) -> int:
    """Print type, sheets, sample rows and inferred column types of one source.

    Returns:
        Number of data rows
    """
    with Source.open(file_name, options) as src:
        console.print(f"\n[bold cyan]{src.file_type} source: {src.name}[/bold cyan]")
        if file_name not in ("", "-"):
            console.print(f"[dim]Size: {format_file_size(os.path.getsize(file_name))}[/dim]")
        if src.file_type.is_spreadsheet:
            sheets = src.read_sheets()
            listed = ", ".join(f"{i}: {name}" for i, name in sheets.items())
            console.print(f"[bold]Sheets ({len(sheets)}):[/bold] {listed}")

        rows = src.iter_rows(ctx)
        first = next(rows, None)
        if first is None:
            console.print("[yellow]No rows found[/yellow]")
            return 0
        header = first[1].columns
        console.print(f"[bold]Columns ({len(header)}):[/bold]")
        console.print(f"  {', '.join(header)}\n")

        sampler = _Sampler(num_records)
        inferred = infer_columns(header, sampler(data_rows(rows_with_first(first, rows))), layout=layout)

    shown = header[:MAX_COLUMNS_TO_DISPLAY]
    table = Table(title=f"Sample Records (first {num_records})")
    for col in shown:
        table.add_column(col, style="cyan", overflow="fold")
    for row in sampler.rows:
        table.add_row(*[_shorten(row.values[i]) if i < len(row.values) else "" for i in range(len(shown))])
    console.print(table)
    if len(header) > len(shown):
        console.print(f"[dim]... and {len(header) - len(shown)} more columns[/dim]")

    types = Table(title="Inferred Columns")
    types.add_column("Header")
    types.add_column("Column", style="cyan")
    types.add_column("Type", style="green")
    types.add_column("Width", justify="right")
    for col in inferred:
        types.add_row(col.name, mk_col_name(col.name), col.type.native_type, str(col.width))
    console.print(types)

    console.print(f"\n[green]Summary: {sampler.count:,} rows, {len(header)} columns[/green]")
    return sampler.count


@click.command()
@click.argument("files", nargs=-1, type=str, required=True)
@source_options()
@click.option(
    "--records",
    "-n",
    type=int,
    default=10,
    help="Number of sample records to display (default: 10)",
)
@click.option("--date-format", default=DEFAULT_LOAD_LAYOUT, show_default=True, help="strftime layout of dates")
def inspect(
    files: tuple[str, ...],
    delim: str,
    charset: str,
    sheet: int,
    skip: int,
    columns: str,
    records: int,
    date_format: str,
) -> None:
    """Inspect CSV, XLS or XLSX files and display summary information.

    Displays the detected format, sheets, sample data and the column types
    a load would create, without touching any database.

    Arguments:
        FILES: One or more file paths to inspect, - for standard input

    Examples:
        # Inspect a single CSV file
        dbcsv inspect data.csv

        # Inspect the second sheet of a workbook with more samples
        dbcsv inspect data.xlsx --sheet 1 --records 20
    """
    options = make_source_options(delim, charset, sheet, skip, columns)

    def inspect_all(ctx: Context) -> None:
        for file_name in files:
            inspect_source(ctx, file_name, options, records, date_format)
            if len(files) > 1:
                console.print("\n" + "=" * 80 + "\n")

    run(inspect_all)
