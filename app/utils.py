"""
Shared helpers.
"""
import logging
import sys

from app.core import config


_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger writing to stdout.

    Usage:
        log = get_logger(__name__)
    """
    root = logging.getLogger("app")
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
        root.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
        root.propagate = False
    if name == "__main__" or not name.startswith("app"):
        name = f"app.{name}"
    return logging.getLogger(name)
