"""Command-line interface for dbcsv."""

from __future__ import annotations

from pathlib import Path

import click

from dbcsv import __version__
from dbcsv.cli_copy import copy
from dbcsv.cli_dump import dump
from dbcsv.cli_foreach import foreach
from dbcsv.cli_inspect import inspect
from dbcsv.cli_load import load
from dbcsv.cli_paraexp import paraexp
from dbcsv.config import DbcsvConfig
from dbcsv.logging_config import configure_logging


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file with option defaults",
)
@click.option("--verbose", "-v", count=True, help="More logging: -v info, -vv debug")
@click.pass_context
def main(ctx: click.Context, config: Path | None, verbose: int) -> None:
    """Move tabular data between relational databases and CSV or spreadsheet files.

    Load CSV, XLS and XLSX files into tables, dump queries as CSV or XLSX,
    copy tables between databases, call procedures for every row and run
    queries in parallel into JSON.
    """
    ctx.ensure_object(dict)
    configure_logging(verbose)
    if config is not None:
        try:
            ctx.default_map = DbcsvConfig.from_yaml(config).default_map()
        except (FileNotFoundError, ValueError) as e:
            raise click.BadParameter(str(e), param_hint="--config") from e
    ctx.obj["config"] = config


# Register commands
main.add_command(load)
main.add_command(dump)
main.add_command(inspect)
main.add_command(copy)
main.add_command(foreach)
main.add_command(paraexp)
