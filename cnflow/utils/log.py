"""Rich-backed logging shared by the CNF layers."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_ROOT_LOGGER = "cnflow"
_console = Console(stderr=True)


def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the ``cnflow`` namespace."""

    if name != _ROOT_LOGGER and not name.startswith(_ROOT_LOGGER + "."):
        name = f"{_ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def configure_logging(level: int | str = "INFO") -> logging.Logger:
    """Attach a :class:`~rich.logging.RichHandler` to the package logger.

    Calling this more than once only updates the level.

    Args:
        level: Logging level name or number.

    Returns:
        The package root logger.
    """

    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(level)
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        handler = RichHandler(console=_console, show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
        logger.propagate = False
    return logger
