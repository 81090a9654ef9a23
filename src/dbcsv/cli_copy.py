"""Copy command for copying tables between database connections."""

from __future__ import annotations

import sys

import click

from dbcsv.cli_common import connect_option, console, require_connection, run
from dbcsv.tablecopy import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_TABLE_TIMEOUT,
    DEFAULT_TIMEOUT,
    CopyOptions,
    copy_tables,
    parse_replace,
    parse_tasks,
)


@click.command()
@click.argument("args", nargs=-1, type=str)
@connect_option("--src", help="Database to read from")
@connect_option("--dst", help="Database to write to")
@click.option("--replace", default="", help="Literal overrides, FIELD_NAME=VALUE,OTHER=NEXT")
@click.option("--truncate", is_flag=True, default=False, help="Empty destination tables (of a different name)")
@click.option("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, show_default=True, help="Rows per insert")
@click.option("--concurrency", type=int, default=DEFAULT_CONCURRENCY, show_default=True, help="Tables copied at once")
@click.option("--timeout", type=float, default=DEFAULT_TIMEOUT, show_default=True, help="Overall timeout in seconds")
@click.option(
    "--table-timeout",
    type=float,
    default=DEFAULT_TABLE_TIMEOUT,
    show_default=True,
    help="Timeout of one table in seconds",
)
def copy(
    args: tuple[str, ...],
    src: str,
    dst: str,
    replace: str,
    truncate: bool,
    batch_size: int,
    concurrency: int,
    timeout: float | None,
    table_timeout: float | None,
) -> None:
    """Copy table rows from one database to another.

    Only the columns present in both tables are copied, and the destination
    is committed only when every table succeeded.

    Arguments:
        ARGS: SRC_TABLE [WHERE [DST_TABLE]]; without arguments (or with -)
            standard input lists one SRC_TABLE[=DST_TABLE] [WHERE] per line

    Examples:
        # Copy a table into the same name on another database
        dbcsv copy T_ABLE --src oracle://a:b@prod/orcl --dst oracle://a:b@test/orcl

        # Copy some rows into a table of another name
        dbcsv copy Source_table "F_ield=1" Dest_table

        # Several tables at once
        printf 'T_ONE\\nT_TWO=T_TWO_BAK F=1\\n' | dbcsv copy -
    """
    require_connection(src, "--src")
    require_connection(dst, "--dst")
    lines = sys.stdin if not args or list(args) == ["-"] else None
    tasks = parse_tasks(list(args), lines, parse_replace(replace) if replace else {}, truncate)
    if not tasks:
        console.print("[yellow]Nothing to copy[/yellow]")
        return
    options = CopyOptions(
        batch_size=batch_size,
        concurrency=concurrency,
        timeout=timeout or None,
        table_timeout=table_timeout or None,
    )
    counts = run(lambda ctx: copy_tables(ctx, src, dst, tasks, options))
    for table, n in counts.items():
        console.print(f"[green]✓ {table}: {n:,} rows[/green]")
