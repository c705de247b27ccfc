"""Centralized logging configuration for the image store.

All loggers live under the ``image-store`` namespace and write to stderr,
leaving stdout to command output (JSON listings, streamed image bytes).
"""

import os
import sys
import logging
from typing import Optional

ROOT_LOGGER_NAME = "image-store"

STRUCTURED_FORMAT = (
    "%(asctime)s | %(name)s | %(levelname)-8s | "
    "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
)
SIMPLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
HANDLER_NAME = "image-store-stderr"

# Level chosen through set_log_level; applies to namespace loggers created later too
_namespace_level: Optional[int] = None


def _in_namespace(name: str) -> bool:
    return name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + ".")


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, name, logging.INFO)


def _build_formatter(format_type: str) -> logging.Formatter:
    # LOG_FORMAT wins over the format requested by the caller
    if os.getenv("LOG_FORMAT", format_type).lower() == "structured":
        return logging.Formatter(STRUCTURED_FORMAT, datefmt=DATE_FORMAT)
    return logging.Formatter(SIMPLE_FORMAT)


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Optional[str] = None,
    format_type: str = "structured",
) -> logging.Logger:
    """
    Configure a logger from arguments and the environment.

    Args:
        name: Logger name
        level: Log level override (defaults to LOG_LEVEL or INFO)
        format_type: "structured" or "simple" (LOG_FORMAT overrides it)

    Returns:
        Configured logger instance with a single stderr handler

    Without ``level`` an already configured logger keeps its level, and a new
    image-store logger starts at the level last passed to ``set_log_level``.
    """
    logger = logging.getLogger(name)
    configured = any(h.get_name() == HANDLER_NAME for h in logger.handlers)

    if level is not None:
        logger.setLevel(_resolve_level(level))
    elif not configured:
        if _namespace_level is not None and _in_namespace(name):
            logger.setLevel(_namespace_level)
        else:
            logger.setLevel(_resolve_level(None))

    if not configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(_build_formatter(format_type))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Get a component logger namespaced under "image-store".

    ``get_logger("storage")`` returns the "image-store.storage" logger; names
    already inside the namespace are used as they are.
    """
    if not _in_namespace(name):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return setup_logger(name)


def set_log_level(level: str) -> None:
    """Change the level of every image-store logger, present and future."""
    global _namespace_level
    _namespace_level = _resolve_level(level)
    for logger_name in list(logging.root.manager.loggerDict):
        if _in_namespace(logger_name):
            logging.getLogger(logger_name).setLevel(_namespace_level)


# Default logger instance
logger = setup_logger()
