"""
Logging setup.

Installs one stream handler on the root logger so module loggers
(logging.getLogger(__name__)) share a single format.
"""

import logging
import sys

from backend.app.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
    "httpx": logging.WARNING,
}


def setup_logging(level: str = None) -> logging.Logger:
    """
    Configure application logging.

    Safe to call more than once; existing handlers installed by a previous
    call are replaced rather than duplicated.

    Args:
        level: Log level name, defaults to settings.log_level

    Returns:
        The root logger
    """
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in list(root_logger.handlers):
        if getattr(handler, "_ledger_handler", False):
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler._ledger_handler = True
    root_logger.addHandler(handler)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    return root_logger
