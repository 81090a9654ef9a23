"""Load command for loading CSV and spreadsheet files into a table."""

from __future__ import annotations

import sys

import click

from dbcsv.cli_common import (
    connect_option,
    console,
    make_source_options,
    require_connection,
    run,
    source_options,
)
from dbcsv.dates import DEFAULT_LOAD_LAYOUT
from dbcsv.load import DEFAULT_BATCH_SIZE, DEFAULT_CONCURRENCY, LoadOptions, load as load_file


@click.command()
@click.argument("table", type=str, required=True)
@click.argument("file_name", type=str, default="-")
@connect_option()
@source_options()
@click.option("--fields", default="", help="Target field names, comma separated (default: the header row)")
@click.option("--truncate", is_flag=True, default=False, help="Empty the table before loading")
@click.option("--tablespace", default="", help="Tablespace of a created table")
@click.option("--copy", "copy_from", default="", help="Create the table with the structure of this one")
@click.option("--force-string", is_flag=True, default=False, help="Create every column as VARCHAR2")
@click.option("--concurrency", type=int, default=DEFAULT_CONCURRENCY, show_default=True, help="Inserting workers")
@click.option("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, show_default=True, help="Rows per insert")
@click.option("--date-format", default=DEFAULT_LOAD_LAYOUT, show_default=True, help="strftime layout of dates")
@click.option("--just-print", is_flag=True, default=False, help="Print an INSERT ALL script instead of loading")
@click.option(
    "--partial-commit",
    is_flag=True,
    default=False,
    help="Commit the batches of healthy workers even when another worker fails",
)
@click.option("--timeout", type=float, default=None, help="Overall timeout in seconds")
def load(
    table: str,
    file_name: str,
    connect: str,
    delim: str,
    charset: str,
    sheet: int,
    skip: int,
    columns: str,
    fields: str,
    truncate: bool,
    tablespace: str,
    copy_from: str,
    force_string: bool,
    concurrency: int,
    batch_size: int,
    date_format: str,
    just_print: bool,
    partial_commit: bool,
    timeout: float | None,
) -> None:
    """Load a CSV, XLS or XLSX file into a database table.

    A missing table is created from the header row with column types
    inferred from the data.

    Arguments:
        TABLE: Destination table ([owner.]table), or a complete INSERT statement
        FILE_NAME: Source file, - for standard input (default)

    Examples:
        # Load a CSV file, detecting the delimiter
        dbcsv load T_PEOPLE people.csv --connect oracle://scott:tiger@db:1521/orcl

        # Second sheet of a workbook, replacing the table's rows
        dbcsv load T_PEOPLE people.xlsx --sheet 1 --truncate

        # Print the INSERT script only
        dbcsv load T_PEOPLE people.csv --just-print
    """
    if not just_print:
        require_connection(connect)
    options = LoadOptions(
        source=make_source_options(delim, charset, sheet, skip, columns),
        fields=[f.strip() for f in fields.split(",") if f.strip()],
        truncate=truncate,
        tablespace=tablespace,
        copy=copy_from,
        force_string=force_string,
        concurrency=concurrency,
        batch_size=batch_size,
        layout=date_format,
        just_print=just_print,
        partial_commit=partial_commit,
        timeout=timeout,
    )
    out = sys.stdout
    result = run(lambda ctx: load_file(ctx, connect, table, file_name, options, out=out))
    if just_print:
        console.print(f"[dim]Printed {result.read:,} rows[/dim]")
        return
    console.print(f"[green]✓ Loaded {result.inserted:,} of {result.read:,} rows into {result.table}[/green]")
    console.print(f"[dim]  Source file: {file_name}[/dim]")
    console.print(f"[dim]  Duration: {result.duration:.3f}s[/dim]")
