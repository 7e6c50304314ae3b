"""
Logging configuration.

The library logs through loguru but stays silent until an application calls
``configure_logging``.
"""

import sys
from pathlib import Path
from typing import Any, TextIO

from loguru import logger

DEFAULT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def configure_logging(
    level: str = "INFO",
    sink: TextIO | str | Path | None = None,
    serialize: bool = False,
    replace_handlers: bool = True,
) -> int:
    """Enable edgelab logging and install a loguru sink.

    Args:
        level: Minimum level written to the sink
        sink: Stream or file path (stderr when None)
        serialize: Write JSON records instead of formatted text
        replace_handlers: Remove previously installed loguru handlers first

    Returns:
        The loguru handler id, for ``logger.remove``
    """
    if replace_handlers:
        logger.remove()
    logger.enable("edgelab")

    options: dict[str, Any] = {"level": level.upper(), "serialize": serialize}
    if not serialize:
        options["format"] = DEFAULT_FORMAT
    if isinstance(sink, (str, Path)):
        options["rotation"] = "10 MB"
        options["enqueue"] = True
    return logger.add(sink if sink is not None else sys.stderr, **options)


def disable_logging() -> None:
    """Silence edgelab log records again."""
    logger.disable("edgelab")
