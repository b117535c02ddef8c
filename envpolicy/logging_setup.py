"""Logging configuration for the envpolicy CLI."""

import logging
import os
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_LEVEL_ENV_VAR = "ENVPOLICY_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"

_handler: Optional[RichHandler] = None


def resolve_log_level(level: Optional[str] = None, verbose: bool = False) -> int:
    """Work out the effective log level.

    Precedence: ENVPOLICY_LOG_LEVEL, then --verbose, then the configured level.
    """
    env_level = os.environ.get(LOG_LEVEL_ENV_VAR)
    if env_level:
        chosen = env_level
    elif verbose:
        chosen = "DEBUG"
    else:
        chosen = level or DEFAULT_LOG_LEVEL

    numeric = logging.getLevelName(chosen.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {chosen}")
    return numeric


def configure_logging(level: int = logging.WARNING) -> logging.Logger:
    """Attach a Rich handler on stderr to the ``envpolicy`` logger.

    Reports go to stdout, so logs must never share that stream.
    Calling this again only updates the level.
    """
    global _handler

    logger = logging.getLogger("envpolicy")
    logger.setLevel(level)

    if _handler is None:
        _handler = RichHandler(
            console=Console(stderr=True),
            show_time=False,
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
        _handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(_handler)

    _handler.setLevel(level)
    return logger
