from __future__ import annotations

import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "annotab"


def configure_logging(level: int = logging.INFO, console: Console | None = None) -> logging.Logger:
    """Route the ``annotab`` logger to stderr through rich.

    Standard output carries only the session record, so diagnostics never go there.
    Calling this again replaces the previous handler.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.hasHandlers():
        logger.handlers.clear()
    handler = RichHandler(
        console=console or Console(file=sys.stderr),
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
