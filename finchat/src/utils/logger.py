"""
FinChat - Logging
==================
Logger factory shared by every FinChat module, so API, retrieval and
streaming logs read the same way on stdout.

Verbosity follows ``settings.ENV``:
  • ``"dev"``  → DEBUG
  • ``"prod"`` → WARNING

Third-party clients (httpx, pymongo, LanceDB) log each request at INFO;
``quiet_third_party_loggers`` caps them at WARNING.

Usage:
    from finchat.src.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("[SELECT] %d namespace(s) queried", 3)
"""

import logging
import sys

from finchat.config.settings import settings

_ENV_LEVEL_MAP = {
    "dev": logging.DEBUG,
    "prod": logging.WARNING,
}
_DEFAULT_LEVEL = _ENV_LEVEL_MAP.get(settings.ENV, logging.INFO)

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("httpx", "httpcore", "pymongo", "lancedb", "urllib3")


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Return a named logger with the FinChat stdout handler attached.

    Args:
        name:  Typically ``__name__`` of the calling module.
        level: Explicit level override; defaults to the ``ENV`` mapping.
    """
    resolved_level = level if level is not None else _DEFAULT_LEVEL
    logger = logging.getLogger(name)

    # Handlers are attached once per logger name
    if not logger.handlers:
        logger.setLevel(resolved_level)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(resolved_level)
        handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
        logger.addHandler(handler)

        logger.propagate = False

    return logger


def quiet_third_party_loggers(level: int = logging.WARNING) -> None:
    """Cap the per-request chatter of HTTP / DB client libraries."""
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)
