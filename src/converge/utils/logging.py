"""Logging for converge: one stderr handler, one child logger per module."""

import logging
import sys
from typing import Optional

# apply workers are "converge-apply_N", the lock heartbeat is "converge-lock"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"


def setup_logging(level: int = logging.INFO, format_string: Optional[str] = None) -> logging.Logger:
    """
    Send converge log records to stderr.

    Several apply workers log at once, so every record carries its thread
    name. The handler is installed by the first call only; later calls just
    change the level of the ``converge`` logger.

    Args:
        level: Level for the ``converge`` logger (default: INFO)
        format_string: Record format (default: DEFAULT_FORMAT)

    Returns:
        The ``converge`` logger
    """
    logging.basicConfig(
        level=level,
        format=format_string or DEFAULT_FORMAT,
        stream=sys.stderr,
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    logger = logging.getLogger("converge")
    logger.setLevel(level)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for one module, named by area, e.g. ``get_logger("executor.scheduler")``."""
    return logging.getLogger(f"converge.{name}")
