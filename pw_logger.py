# pw_logger.py
from __future__ import annotations

import logging
import sys
from typing import Dict, Union

FORMATTER = logging.Formatter(
    "".join(["[%(levelname)s:%(asctime)s]", "[%(filename)s:%(lineno)s:%(process)s]%(message)s"])
)

_LOGGERS: Dict[str, logging.Logger] = {}
_LEVEL = logging.WARNING


def _create_console_handler(stream) -> logging.StreamHandler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(FORMATTER)
    return handler


def get_logger(name: str) -> logging.Logger:
    """Creates a pre-configured logger"""
    logger = _LOGGERS.get(name)
    if logger is not None:
        return logger
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(_LEVEL)
    logger.addHandler(_create_console_handler(sys.stderr))
    _LOGGERS[name] = logger
    return logger


def configure_logging(level: Union[int, str]) -> None:
    global _LEVEL
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved
    _LEVEL = level
    for logger in _LOGGERS.values():
        logger.setLevel(level)
