"""Centralized logging configuration."""

import logging
import os
import sys
from typing import Any, MutableMapping, Optional, Tuple

LOG_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)
        level: Optional log level override. Falls back to the LOG_LEVEL
            environment variable, then INFO.

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name)

    log_level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(
            logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )
        logger.addHandler(console_handler)

    return logger


class BatchLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the extraction batch it belongs to.

    The batch identifiers are also merged into ``extra`` so structured
    handlers can index on them.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        context = self.extra or {}
        prefix = " ".join(f"{key}={value}" for key, value in context.items())
        extra = dict(context)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[{prefix}] {msg}", kwargs


def get_batch_logger(name: str, **context: Any) -> BatchLoggerAdapter:
    """Return a logger adapter bound to one extraction batch.

    Args:
        name: Logger name
        **context: Identifiers to stamp on every line (organization_id, step_id, ...)
    """
    return BatchLoggerAdapter(get_logger(name), context)
