"""Structured logger setup shared by the API Lambda and the client library."""

import logging
from typing import Optional
from pythonjsonlogger import jsonlogger


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """
    Configure a JSON logger once and reuse it.

    Handlers attach request context through ``extra=`` so every line can be
    filtered by session, shop or correlation id.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter(
        "%(levelname)s %(name)s %(message)s %(asctime)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def short_token(token: Optional[str]) -> str:
    """Truncate a session token for log lines."""
    if not token:
        return ""
    return f"{token[:8]}..."
