#!/usr/bin/env python3
"""
Logging setup shared by the CLI and the publishers.
Modules log through logging.getLogger(__name__); only the entry point
calls setup_logging().
"""
import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DEFAULT_LEVEL = logging.WARNING


def resolve_level(level: Optional[str] = None) -> int:
    """Explicit level, then LOGGER_LOG_LEVEL, then WARNING."""
    name = level or os.environ.get("LOGGER_LOG_LEVEL")
    if not name:
        return DEFAULT_LEVEL
    resolved = logging.getLevelName(name.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {name}")
    return resolved


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    resolved = resolve_level(level)
    handlers = [logging.StreamHandler()]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=resolved,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # pika and aiormq are chatty at INFO
    if resolved > logging.DEBUG:
        for name in ("pika", "aiormq", "aio_pika"):
            logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()
