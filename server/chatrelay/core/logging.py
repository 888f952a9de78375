from __future__ import annotations
import logging
import logging.config
import re
from typing import Union

SECRET_PATTERNS = (
    re.compile(r"sk-[A-Za-z0-9_-]{20,}"),  # OpenAI-style API keys
    re.compile(r"(?i)(?<=bearer )[A-Za-z0-9._~+/=-]{16,}"),  # JWTs and other bearer tokens
)
MASK = "***"


def redact(text: str) -> str:
    for pattern in SECRET_PATTERNS:
        text = pattern.sub(MASK, text)
    return text


class RedactingFormatter(logging.Formatter):
    """Masks secrets in the fully rendered record, arguments and traceback included."""

    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


def _level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Union[str, int] = logging.INFO) -> None:
    level = _level(level)
    logging.config.dictConfig({
        "version": 1,
        # Module loggers created at import time must keep working
        "disable_existing_loggers": False,
        "formatters": {
            "redacting": {
                "()": RedactingFormatter,
                "fmt": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%SZ",
            },
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "redacting"},
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": {
            "uvicorn.error": {"level": level},
            "uvicorn.access": {"level": level},
            # httpx logs every upstream request line at INFO
            "httpx": {"level": max(level, logging.WARNING)},
        },
    })
