"""Logging setup for the CLI.

Library modules only call ``logging.getLogger(__name__)``; handlers are
installed here, once, by the command-line entry point.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_LOGGER_NAME = "mindcache"


def configure_logging(level: str = "WARNING", *, console: Console | None = None) -> logging.Logger:
    """Route ``mindcache.*`` records through a single ``RichHandler`` on stderr.

    Calling it again replaces the handler and level instead of stacking handlers.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False

    # LiteLLM logs every request at INFO; keep it quiet unless debugging.
    if level.upper() != "DEBUG":
        logging.getLogger("LiteLLM").setLevel(logging.WARNING)
    return logger
