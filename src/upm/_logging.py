"""Console and file logging for the ``upm`` logger.

Every line carries a ``[timestamp] [LEVEL]`` prefix. Console output colours
the level when attached to a terminal; the file copy is always plain text.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

_ROOT_LOGGER = "upm"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LINE_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"

_RESET = "\033[0m"
_LEVEL_COLORS: dict[int, str] = {
    logging.DEBUG: "\033[2m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}

# Marks handlers installed here so reconfiguration only replaces our own.
_HANDLER_ATTR = "_upm_handler"


class ColorFormatter(logging.Formatter):
    """Formatter that wraps the level name in an ANSI colour."""

    def __init__(self, fmt: str = _LINE_FORMAT, datefmt: str = _DATE_FORMAT, *, color: bool = True) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        if not self.color:
            return super().format(record)
        original = record.levelname
        code = _LEVEL_COLORS.get(record.levelno)
        if code:
            record.levelname = f"{code}{original}{_RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _wants_color(stream: TextIO, color: bool | None) -> bool:
    if color is not None:
        return color
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def configure_logging(
    level: int | str = logging.INFO,
    *,
    log_file: Path | None = None,
    color: bool | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Install console (and optional file) handlers on the ``upm`` logger.

    Calling this again replaces the handlers installed by the previous call.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_ATTR, False):
            logger.removeHandler(handler)
            handler.close()

    console_stream = stream if stream is not None else sys.stderr
    console = logging.StreamHandler(console_stream)
    console.setFormatter(ColorFormatter(color=_wants_color(console_stream, color)))
    setattr(console, _HANDLER_ATTR, True)
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
        setattr(file_handler, _HANDLER_ATTR, True)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
