"""Dump command for writing query results as CSV or XLSX."""

from __future__ import annotations

import sys

import click

from dbcsv.cli_common import connect_option, console, require_connection, run
from dbcsv.config import env_charset
from dbcsv.dates import DEFAULT_DUMP_LAYOUT
from dbcsv.dump import DumpOptions, call_query, dump as dump_query, get_query
from dbcsv.render import FormatOptions

DEFAULT_TIMEOUT = 15 * 60.0


@click.command()
@click.argument("args", nargs=-1, type=str)
@connect_option()
@click.option("--output", "-o", default="-", show_default=True, help="Output file, - for standard output")
@click.option("--sep", default=",", show_default=True, help="Field separator")
@click.option("--header/--no-header", default=True, show_default=True, help="Write the column names first")
@click.option("--encoding", default=env_charset, help="Output character set (default from $LANG)")
@click.option("--raw", is_flag=True, default=False, help="Concatenate raw values, not real CSV")
@click.option("--sort", is_flag=True, default=False, help="Sort a SELECT * query by every non-LOB column")
@click.option("--compress", default="", help="Compress output with gz/gzip or zst/zstd")
@click.option("--date-format", default=DEFAULT_DUMP_LAYOUT, show_default=True, help="strftime layout of dates")
@click.option("--end-date", default="", help="Rendering of open-ended dates (default: maximal date)")
@click.option("--sheet", "sheets", multiple=True, help="name:SELECT ... becomes a sheet of an XLSX output")
@click.option("--param", "params", multiple=True, help="Bind parameter (:1, :2, ...), repeatable")
@click.option("--call", is_flag=True, default=False, help="The first argument is a function returning a cursor")
@click.option("--timeout", type=float, default=DEFAULT_TIMEOUT, show_default=True, help="Timeout in seconds")
def dump(
    args: tuple[str, ...],
    connect: str,
    output: str,
    sep: str,
    header: bool,
    encoding: str,
    raw: bool,
    sort: bool,
    compress: str,
    date_format: str,
    end_date: str,
    sheets: tuple[str, ...],
    params: tuple[str, ...],
    call: bool,
    timeout: float | None,
) -> None:
    """Dump the result of a query as CSV, or of several queries as XLSX sheets.

    Arguments:
        ARGS: TABLE [WHERE [COLUMNS...]], a literal SELECT, or with --call
            FUNCTION [name=value...]; the query is read from standard input
            when nothing is given

    Examples:
        # A whole table
        dbcsv dump T_PEOPLE --connect oracle://scott:tiger@db:1521/orcl

        # Filtered columns, semicolon separated, gzipped
        dbcsv dump T_PEOPLE "age > :1" NAME AGE --param 18 --sep ";" -o people.csv.gz --compress gz

        # Two sheets of a workbook
        dbcsv dump --sheet "people:SELECT * FROM T_PEOPLE" --sheet "pets:SELECT * FROM T_PETS" -o out.xlsx
    """
    require_connection(connect)
    if sep == "\\t":
        sep = "\t"
    bind_params: list[str] = list(params)
    query = ""
    if call:
        if not args:
            raise click.UsageError("--call needs the function name")
        query, bind_params = call_query(args[0], list(args[1:]))
    elif not sheets:
        table = args[0] if args else ""
        where = args[1] if len(args) > 1 else ""
        query = get_query(table, where, list(args[2:]), sys.stdin)
    options = DumpOptions(
        format=FormatOptions(layout=date_format, sep=sep, end_date=end_date),
        header=header,
        raw=raw,
        encoding=encoding,
        compress=compress,
        sort=sort,
        timeout=timeout or None,
    )
    n = run(
        lambda ctx: dump_query(
            ctx, connect, query, output, options, bind_params, call=call, sheets=list(sheets) or None
        )
    )
    console.print(f"[dim]Dumped {n:,} rows[/dim]")
