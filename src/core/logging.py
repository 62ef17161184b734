"""Logging configuration for consensus runs.

Library modules obtain loggers through get_logger() and never install
handlers themselves; entry points (the benchmark runner, notebooks) call
configure_logging() once.
"""

from __future__ import annotations

import logging
import sys

__all__ = ["ROOT_LOGGER_NAME", "get_logger", "configure_logging"]

ROOT_LOGGER_NAME = "consensus_lob"

_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
_DATEFMT = "%H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the package root logger.

    Args:
        name: Usually ``__name__`` of the calling module.
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Install a single stdout handler on the package root logger.

    Calling it again replaces the handler instead of stacking a new one.

    Args:
        level: Logging level name or number.

    Returns:
        The configured root logger.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
