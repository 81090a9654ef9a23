"""Logging setup shared by every dbcsv command."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LEVELS = {0: logging.WARNING, 1: logging.INFO}


def level_of(verbosity: int) -> int:
    """Log level of a ``-v`` count: none WARNING, one INFO, more DEBUG."""
    return LEVELS.get(verbosity, logging.DEBUG if verbosity > 1 else logging.WARNING)


def configure_logging(verbosity: int = 0) -> None:
    """Send the ``dbcsv`` loggers to standard error through rich."""
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbosity > 1,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger = logging.getLogger("dbcsv")
    for old in list(logger.handlers):
        if isinstance(old, RichHandler):
            logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(level_of(verbosity))
