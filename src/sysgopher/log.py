"""
Logging configuration for sysgopher.

Records go to Textual's log handler so they show up in ``textual console``
rather than being written over the terminal UI.
"""

import logging
from pathlib import Path

from textual.logging import TextualHandler

ROOT_LOGGER = "sysgopher"


def setup_logging(level: str | int = logging.INFO, log_file: Path | None = None) -> logging.Logger:
    """
    Configure and return the package logger.

    Args:
        level: Logging level name or number.
        log_file: Optional file that receives DEBUG and above.

    Returns:
        The configured ``sysgopher`` logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    console_handler = TextualHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(fmt="[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)
        logger.setLevel(min(logger.level, logging.DEBUG))

    logger.propagate = False
    return logger
