#!/usr/bin/env python3
# ring_log.py
# File logging for the Ring terminal client (the TUI owns stdout/stderr).

from __future__ import annotations

import logging
import os
from typing import Optional

LOGGER_NAME = "ring_tui"
LOG_FILE = "ring-tui.log"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def log_dir() -> str:
    return os.path.expanduser(
        os.environ.get("RING_LOG_PATH", "~/.cache/ring-tui/logs")
    )


def setup_logger(level: int = logging.INFO, name: str = LOGGER_NAME) -> logging.Logger:
    """Create or update the project logger.

    - RING_LOG_LEVEL overrides ``level`` on every call.
    - Keeps exactly one FileHandler at RING_LOG_PATH/ring-tui.log; if the
      directory cannot be created, a NullHandler is used instead.
    """
    logger = logging.getLogger(name)

    env_level = (os.getenv("RING_LOG_LEVEL") or "").strip().lower()
    if env_level:
        level = _LEVELS.get(env_level, level)
    logger.setLevel(level)

    has_handler = any(
        isinstance(h, (logging.FileHandler, logging.NullHandler))
        for h in logger.handlers
    )
    if not has_handler:
        handler: logging.Handler
        try:
            path = log_dir()
            os.makedirs(path, exist_ok=True)
            handler = logging.FileHandler(
                os.path.join(path, LOG_FILE), mode="a", encoding="utf-8"
            )
        except OSError:
            handler = logging.NullHandler()
        handler.setFormatter(
            logging.Formatter(
                fmt="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    base = logging.getLogger(LOGGER_NAME)
    return base if not name else base.getChild(name)
