"""Structured logging configuration for Assistant Engine.

Lines render as key=value pairs. The request correlation fields always come
right after the message, in a fixed order, so one ask can be followed through
quota, retrieval, generation and persistence:

    ... message=Ask pipeline failed request_id=3f9a1c0e7b2d user_id=0b7e... stage=retrieval
"""

import logging
import sys
from typing import Any

# Promoted out of extra_data and printed first, in this order
CORRELATION_FIELDS = ("request_id", "user_id", "stage", "capability")


class StructuredFormatter(logging.Formatter):
    """key=value formatter with assistant request correlation fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        for name in CORRELATION_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        line = " ".join(f"{k}={v}" for k, v in log_data.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

        try:
            from assistant_engine.core.config import get_settings

            settings = get_settings()
            logger.setLevel(logging.DEBUG if settings.ASSISTANT_ENV == "dev" else logging.INFO)
        except Exception:
            # settings unavailable (missing env): fall back to INFO
            logger.setLevel(logging.INFO)

    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    exc_info: bool = False,
    **kwargs: Any,
) -> None:
    """
    Log with correlation fields and extra context.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        exc_info: Attach the active exception's traceback
        **kwargs: request_id / user_id / stage / capability are promoted to
            correlation fields; anything else is appended as key=value
    """
    extra: dict[str, Any] = {
        name: kwargs.pop(name) for name in CORRELATION_FIELDS if name in kwargs
    }
    extra["extra_data"] = kwargs
    logger.log(level, msg, exc_info=exc_info, extra=extra)
