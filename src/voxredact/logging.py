"""Structured logging helpers (JSON).

Use `get_logger(__name__)` to emit JSON logs. Extra fields can be attached with
``logger.info("msg", extra={"extra": {"page": 3}})``.
"""

from __future__ import annotations

import logging
import threading

import orjson


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "thread": threading.current_thread().name,
        }
        if record.args and isinstance(record.args, dict):
            payload.update(record.args)
        if hasattr(record, "extra") and isinstance(getattr(record, "extra"), dict):
            payload.update(getattr(record, "extra"))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def get_logger(name: str = "voxredact") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(JsonFormatter())
        logger.addHandler(h)
        logger.setLevel(logging.INFO)
    return logger
