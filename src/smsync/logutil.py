"""Logging setup shared by smsync modules."""

import logging
import os

FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
PACKAGE = "smsync"


def _level(name: str | None) -> int:
    if not name:
        return logging.WARNING
    return getattr(logging, name.strip().upper(), logging.WARNING)


def get_logger(name: str = PACKAGE) -> logging.Logger:
    """Return a module-level logger.

    A single stream handler is attached to the package logger the first time
    this is called; module loggers propagate to it. The level comes from
    SMSYNC_LOG_LEVEL (default WARNING) and can be changed with set_level().
    """
    root = logging.getLogger(PACKAGE)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(FORMAT))
        root.addHandler(handler)
        root.setLevel(_level(os.environ.get("SMSYNC_LOG_LEVEL")))
        root.propagate = False
    return logging.getLogger(name)


def set_level(name: str) -> None:
    get_logger().setLevel(_level(name))
