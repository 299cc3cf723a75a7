"""Logging helpers for Craftiva.

All loggers live under the ``craftiva`` namespace so a host application can
tune them with a single ``logging.getLogger("craftiva")`` call.
"""

import logging
import os
from typing import Optional, Union

ROOT_LOGGER_NAME = "craftiva"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the craftiva namespace.

    ``get_logger("jobs")`` and ``get_logger("craftiva.jobs")`` return the
    same logger.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(
    level: Optional[Union[int, str]] = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """Attach a stream handler to the craftiva root logger.

    The level falls back to ``CRAFTIVA_LOG_LEVEL`` and then INFO. Calling
    this twice does not add a second handler.
    """
    if level is None:
        level = os.environ.get("CRAFTIVA_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    if not any(getattr(h, "_craftiva", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        handler._craftiva = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
