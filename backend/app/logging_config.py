"""Logging setup for the Homeflow backend."""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stdout handler to the ``homeflow`` logger tree."""
    global _configured
    root = logging.getLogger("homeflow")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``homeflow`` namespace."""
    if not name.startswith("homeflow"):
        name = f"homeflow.{name}"
    return logging.getLogger(name)
