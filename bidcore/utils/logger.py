"""
Logging for bidcore.

All loggers hang off the "bidcore" namespace, one child per subsystem
(placement, proxy, closer, registry, trust, storage). Records go to a
colored console and, when the market configuration asks for it, to
bidcore.log under its log_dir.
"""

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import colorlog

if TYPE_CHECKING:
    from bidcore.core.config import MarketConfig

ROOT_LOGGER = "bidcore"
LOG_FILE = "bidcore.log"

CONSOLE_FORMAT = "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s"
FILE_FORMAT = "%(asctime)s [%(name)s] %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def _console_handler(level: int) -> logging.Handler:
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(colorlog.ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT, log_colors=LEVEL_COLORS))
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(level: int = logging.INFO, config: Optional["MarketConfig"] = None) -> logging.Logger:
    """
    (Re)configure the bidcore logger tree.

    Handlers from an earlier call are closed and replaced, so calling this
    again after the configuration is loaded is safe.

    Args:
        level: Logging level for the tree and its handlers
        config: Market configuration; with log_to_file set, records are
            also appended to config.log_dir / bidcore.log

    Returns:
        The "bidcore" root logger
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.addHandler(_console_handler(level))
    if config is not None and config.log_to_file:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        root.addHandler(_file_handler(config.log_dir / LOG_FILE, level))
    return root


def get_logger(name: str) -> logging.Logger:
    """Logger for one subsystem, e.g. get_logger("closer")"""
    if not logging.getLogger(ROOT_LOGGER).handlers:
        setup_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
