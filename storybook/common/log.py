"""
Console logging setup shared by the web app and the CLI scripts.
"""

from __future__ import annotations

import logging
import secrets
import sys
from typing import Any, MutableMapping

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Install a single console handler on the ``storybook`` logger."""
    logger = logging.getLogger("storybook")
    logger.setLevel(level if isinstance(level, int) else level.upper())

    if logger.hasHandlers():
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def new_request_id() -> str:
    return secrets.token_hex(4)


class RequestLogger(logging.LoggerAdapter):
    """Prefix every message with ``[request_id]`` so interleaved runs stay readable."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['request_id']}] {msg}", kwargs


def request_logger(logger: logging.Logger, request_id: str | None = None) -> RequestLogger:
    return RequestLogger(logger, {"request_id": request_id or new_request_id()})
