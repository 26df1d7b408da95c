"""
Logger factory shared by all rag_retrieval modules.

The level comes from ``RAG_LOG_LEVEL`` (default ``INFO``).

Usage:
    from rag_retrieval.logging_config import get_logger
    logger = get_logger(__name__)
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LOG_LEVEL = "RAG_LOG_LEVEL"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_ROOT_LOGGER = "rag_retrieval"


def _resolve_level() -> int:
    raw = os.getenv(ENV_LOG_LEVEL, "INFO").strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package root, configuring the root once."""
    root = logging.getLogger(_ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
        root.addHandler(handler)
        root.setLevel(_resolve_level())

    if name == _ROOT_LOGGER or name.startswith(_ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")
