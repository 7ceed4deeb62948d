"""Structured logging setup for Converge."""

import logging
import sys
from typing import Optional

# Libraries that log per request or per lock attempt; kept at WARNING
# unless Converge itself runs at DEBUG.
NOISY_LOGGERS = ("filelock", "urllib3", "tenacity")


def setup_logging(level: int = logging.INFO, format_string: Optional[str] = None) -> logging.Logger:
    """
    Set up structured logging for Converge.

    Safe to call more than once: the first call installs the stderr
    handler, later calls (the CLI's ``--verbose``) only change levels.

    Args:
        level: Level for the ``converge`` logger tree (default: INFO)
        format_string: Custom format string (optional)

    Returns:
        The ``converge`` root logger
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stderr,
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    logger = logging.getLogger("converge")
    logger.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get the logger for one area, e.g. ``get_logger("state.store")`` -> ``converge.state.store``."""
    return logging.getLogger(f"converge.{name}")
