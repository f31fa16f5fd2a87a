"""Logging setup for the pgferry command line."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Send pgferry logs to stderr, at DEBUG when ``verbose``."""
    level = logging.DEBUG if verbose else logging.INFO
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger("pgferry")
    root.handlers[:] = [handler]
    root.setLevel(level)
    root.propagate = False
