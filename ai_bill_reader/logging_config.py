"""
Logging setup.

All modules log through children of the ``ai_bill_reader`` logger so a
single handler configuration covers the whole package.
"""

import logging
import os
from typing import Optional, Union

PACKAGE_LOGGER = "ai_bill_reader"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _coerce_level(value: Optional[Union[str, int]]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


def _configure_package_logger() -> logging.Logger:
    logger = logging.getLogger(PACKAGE_LOGGER)
    if getattr(logger, "_bill_reader_configured", False):
        return logger

    level = _coerce_level(os.environ.get("LOG_LEVEL", "INFO"))
    logger.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(formatter)
    logger.addHandler(sh)

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(formatter)
            logger.addHandler(fh)
        except OSError:
            logger.warning("LOG_FILE could not be opened; continuing without file logging")

    logger.propagate = False
    setattr(logger, "_bill_reader_configured", True)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package hierarchy.

    Honors LOG_LEVEL (default INFO) and LOG_FILE (optional path). Names
    outside the package are nested under it, so ``get_logger("cli")`` and
    ``get_logger("ai_bill_reader.cli")`` are the same logger.
    """
    _configure_package_logger()
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
