"""
Logging for checkercalib.

Modules log through get_logger(<module>), which nests them under the
"checkercalib" logger; setup_logging attaches the handlers once, at the
entry point. Verbosity names follow the calibration tools convention:
fatal, error, warning, info, debug, trace.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT_LOGGER = "checkercalib"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

VERBOSITY_LEVELS = {
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    # stdlib logging has nothing finer than DEBUG
    "trace": logging.DEBUG,
}


def parse_level(level: int | str) -> int:
    """
    Numeric logging level from a verbosity name (case-insensitive) or an int.

    Raises:
        ValueError: Unknown verbosity name
    """
    if isinstance(level, int):
        return level
    try:
        return VERBOSITY_LEVELS[level.lower()]
    except KeyError:
        names = ", ".join(VERBOSITY_LEVELS)
        raise ValueError(f"Unknown verbosity level '{level}' (expected one of: {names})") from None


def setup_logging(level: int | str = "info", log_file: Path | None = None) -> logging.Logger:
    """
    Send checkercalib logs to stdout, and to log_file when given.

    Calling it again replaces the handlers of the previous call.

    Args:
        level: Verbosity name or numeric logging level
        log_file: Optional file that receives the same records

    Returns:
        The root checkercalib logger

    Raises:
        ValueError: Unknown verbosity name
    """
    numeric = parse_level(level)
    logger = logging.getLogger(ROOT_LOGGER)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(numeric)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Logger nested under checkercalib ("pipeline" -> "checkercalib.pipeline")."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
