"""Utility helpers."""

from checkercalib.utils.logging import get_logger, parse_level, setup_logging

__all__ = [
    "get_logger",
    "parse_level",
    "setup_logging",
]
