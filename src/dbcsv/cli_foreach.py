"""Foreach command for calling a stored procedure with every row."""

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
from dbcsv.foreach import DEFAULT_FIX, DEFAULT_FUNCTION, ForeachOptions, foreach as call_foreach


@click.command()
@click.argument("file_name", type=str, required=True)
@connect_option()
@source_options(skip=1)
@click.option("--call", "function", default=DEFAULT_FUNCTION, show_default=True, help="Function or BEGIN...END; block")
@click.option("--fix", default=DEFAULT_FIX, show_default=True, help="Fixed parameters, name=>template,...")
@click.option("--call-ret-ok", type=int, default=0, show_default=True, help="Function result meaning success")
@click.option("--one-tx/--tx-per-row", default=True, show_default=True, help="One transaction, or commit each row")
def foreach(
    file_name: str,
    connect: str,
    delim: str,
    charset: str,
    sheet: int,
    skip: int,
    columns: str,
    function: str,
    fix: str,
    call_ret_ok: int,
    one_tx: bool,
) -> None:
    """Call a stored procedure or function with the cells of every row.

    Cells are passed as strings, except for DATE arguments which are parsed.
    Fixed parameters may refer to {file_name}.

    Arguments:
        FILE_NAME: CSV, XLS or XLSX file, - for standard input

    Examples:
        # Call a packaged function, requiring it to return 0
        dbcsv foreach people.csv --call pkg.add_person --call-ret-ok 0

        # A literal block
        dbcsv foreach people.csv --call "BEGIN pkg.add(:1, :2); END;" --fix ""
    """
    require_connection(connect)
    options = ForeachOptions(
        function=function,
        fix=fix,
        ret_ok=call_ret_ok,
        one_tx=one_tx,
        source=make_source_options(delim, charset, sheet, skip, columns),
    )
    out = sys.stdout
    err = sys.stderr
    n = run(lambda ctx: call_foreach(ctx, connect, file_name, options, out=out, err=err))
    console.print(f"[dim]Processed {n:,} rows[/dim]")
