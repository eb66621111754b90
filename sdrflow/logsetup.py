"""Console logging for the runtime."""

from __future__ import annotations

import logging
import threading

from sdrflow.config import TRACE, config

LOGGER_NAME = "sdrflow"

_lock = threading.Lock()
_installed = False


def _level_name(levelno: int) -> str:
    if levelno <= TRACE:
        return "TRACE"
    if levelno <= logging.DEBUG:
        return "DEBUG"
    if levelno <= logging.INFO:
        return "INFO"
    if levelno <= logging.WARNING:
        return "WARN"
    return "ERROR"


class _PrintHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except Exception:
            self.handleError(record)
            return
        print(f"sdrflow: {_level_name(record.levelno)} - {message}")


def init() -> bool:
    """Install the console handler once; return False if already installed."""
    global _installed
    with _lock:
        if _installed:
            print("logger already initialized")
            return False
        logger = logging.getLogger(LOGGER_NAME)
        logger.addHandler(_PrintHandler())
        logger.propagate = False
        logger.setLevel(config().log_level)
        _installed = True
        return True