"""Logging bootstrap for the TUI; the terminal belongs to Textual, so logs go to a file."""

from __future__ import annotations

import logging
from pathlib import Path

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(log_file: Path, *, level: int = logging.INFO) -> logging.Handler:
    """Attach a file handler to the `sqldeck` logger and return it."""

    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger = logging.getLogger("sqldeck")
    logger.setLevel(level)
    logger.addHandler(handler)
    return handler


__all__ = ["configure_logging"]
