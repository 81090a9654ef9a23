"""Paraexp command for running queries in parallel into one JSON document."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import click

from dbcsv.cli_common import connect_option, require_connection, run
from dbcsv.paraexp import DEFAULT_FETCH_ROWS, paraexp as run_paraexp, parse_values


@click.command()
@click.argument("queries", nargs=-1, type=str, required=True)
@connect_option()
@click.option("--value", "values", multiple=True, help="name=value bound to each query as :name, repeatable")
@click.option("--concurrency", type=int, default=os.cpu_count() or 4, help="Queries run at once")
@click.option("--fetch-rows", type=int, default=DEFAULT_FETCH_ROWS, show_default=True, help="Fetch array size")
@click.option("--output", "-o", default="-", show_default=True, help="Output file, - for standard output")
def paraexp(
    queries: tuple[str, ...],
    connect: str,
    values: tuple[str, ...],
    concurrency: int,
    fetch_rows: int,
    output: str,
) -> None:
    """Run named queries in parallel and write their rows as one JSON array.

    Arguments:
        QUERIES: name:SELECT ... items

    Examples:
        dbcsv paraexp --value v_alue1=1 --value v_alue2=3.14 \\
            'name1:SELECT * FROM T_able1 WHERE F_ield=:v_alue1' \\
            'name2:SELECT * FROM T_able2 WHERE F_ield=:v_alue2'
    """
    require_connection(connect)
    binds = run(lambda _ctx: parse_values(list(values)))
    if output in ("", "-"):
        out = sys.stdout
        run(lambda ctx: run_paraexp(ctx, connect, list(queries), out, binds, concurrency, fetch_rows))
        return
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        run(lambda ctx: run_paraexp(ctx, connect, list(queries), fh, binds, concurrency, fetch_rows))
