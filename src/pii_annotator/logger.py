"""Logging setup.

Usage:
    from pii_annotator.logger import get_logger, setup_logging

    setup_logging("DEBUG")          # once, from the CLI or server entry point
    logger = get_logger(__name__)
    logger.warning("Invalid regex for pattern %s: %s", label, err)
"""

from __future__ import annotations
import logging
import sys

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging. Subsequent calls are no-ops."""
    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
