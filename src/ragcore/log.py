"""Logging setup for ragcore.

Library modules only call ``logging.getLogger(__name__)``. Applications (the
CLI, a service embedding the core) call ``configure_logging()`` once to route
the ``ragcore`` logger through rich.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_ROOT_LOGGER = "ragcore"


def configure_logging(level: int | str = "INFO", *, console: Console | None = None) -> logging.Logger:
    """Attach a single RichHandler to the ``ragcore`` logger (idempotent).

    Args:
        level: Logging level name or number.
        console: Console to render to. Defaults to stderr.

    Returns:
        The configured ``ragcore`` logger.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            handler.setLevel(level)
            return logger

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
