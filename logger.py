"""
Logging setup shared by the API process.

setup_logger() configures the root logging system once (format, level and a
stdout handler) and returns a named logger. Other modules just call
logging.getLogger(__name__).
"""

import logging
import sys
from logging import Logger, StreamHandler
from typing import Final


LOG_FORMAT: Final[str] = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logger(name: str = __name__, level: str = "INFO") -> Logger:
    """
    Configure application logging and return a logger called ``name``.

    ``level`` is a level name such as "DEBUG" or "error"; unknown values fall
    back to INFO.
    """
    log_levels: dict[str, int] = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    log_level = log_levels.get(level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[StreamHandler(sys.stdout)],
        force=True,
    )

    return logging.getLogger(name)
