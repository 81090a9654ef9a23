"""Options and error reporting shared by the dbcsv commands."""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

import click
from rich.console import Console
from rich.markup import escape

from dbcsv.concurrency import Context, wrap_signals
from dbcsv.config import env_charset, env_database
from dbcsv.errors import Cancelled, DbcsvError
from dbcsv.source import SourceOptions

T = TypeVar("T")

# Data may go to standard output, so status lines go to standard error.
console = Console(stderr=True)


def parse_columns(value: str) -> list[int]:
    """Parse a comma separated list of 1-based column numbers.

    Raises:
        click.BadParameter: If an item is not a positive integer
    """
    columns = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        if not item.isdigit() or int(item) < 1:
            raise click.BadParameter(f"{item!r} is not a 1-based column number", param_hint="--columns")
        columns.append(int(item))
    return columns


def connect_option(name: str = "--connect", help: str = "Database connection string") -> Callable[[T], T]:
    return click.option(
        name,
        default=env_database,
        show_default="$DB_ID, $BRUNO_ID or $DATABASE_URL",
        help=help,
    )


def source_options(skip: int = 0) -> Callable[[T], T]:
    """Decorate a command with the options describing how to read its source."""

    def decorate(f: T) -> T:
        for opt in reversed(
            [
                click.option("--delim", "-d", default="", help="CSV field delimiter (detected when empty)"),
                click.option("--charset", default=env_charset, help="Input character set (default from $LANG)"),
                click.option("--sheet", type=int, default=0, show_default=True, help="Zero-based sheet index"),
                click.option("--skip", type=int, default=skip, show_default=True, help="Skip the first N rows"),
                click.option("--columns", default="", help="1-based column numbers to use, comma separated"),
            ]
        ):
            f = opt(f)
        return f

    return decorate


def make_source_options(delim: str, charset: str, sheet: int, skip: int, columns: str) -> SourceOptions:
    if delim == "\\t":
        delim = "\t"
    return SourceOptions(delim=delim, charset=charset, sheet=sheet, skip=skip, columns=parse_columns(columns))


def require_connection(url: str, name: str = "--connect") -> str:
    if not url:
        console.print(f"[red]Error:[/red] No database given: use {name} or set DB_ID")
        raise click.Abort()
    return url


def run(fn: Callable[[Context], T]) -> T:
    """Run ``fn`` under a fresh context cancelled by SIGINT/SIGTERM.

    Failures are reported on standard error and end in :class:`click.Abort`.
    """
    ctx = Context()
    restore = wrap_signals(ctx)
    try:
        return fn(ctx)
    except Cancelled as e:
        console.print(f"[yellow]Cancelled:[/yellow] {escape(str(e))}")
        raise click.Abort() from e
    except (DbcsvError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise click.Abort() from e
    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
        raise click.Abort() from e
    finally:
        restore()

