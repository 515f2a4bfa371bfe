"""Logging utilities for Journeys."""

from __future__ import annotations

import logging
import sys
from typing import TextIO


def get_logger(
    name: str = "journeys",
    level: int = logging.INFO,
    stream: TextIO = sys.stderr,
) -> logging.Logger:
    """Get a configured logger for Journeys.

    Args:
        name: Logger name.
        level: Logging level.
        stream: Output stream.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(stream)
        handler.setLevel(logging.NOTSET)

        formatter = logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger


def configure_cli_logging(quiet: bool = False, verbose: bool = False) -> logging.Logger:
    """Configure the package root logger for command-line use.

    Args:
        quiet: Only show warnings and errors.
        verbose: Show debug output, including clustering split decisions.

    Returns:
        The configured ``journeys`` root logger.
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    return get_logger("journeys", level=level)
