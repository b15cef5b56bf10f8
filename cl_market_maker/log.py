"""Per-module logger setup shared by the runner modules."""

from __future__ import annotations

import logging
import os


def get_logger(name: str, tag: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(f"[{tag}] %(asctime)s - %(levelname)s - %(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: object) -> None:
    """Structured-ish logging for operational events."""
    payload = " ".join(f"{k}={v}" for k, v in fields.items())
    logger.log(level, f"[{event}] {payload}".strip())
