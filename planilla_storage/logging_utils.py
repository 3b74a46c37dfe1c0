"""
Structured JSON logging for planilla storage.

Every line is one JSON object. Record context (``record_id``, ``remote_id``)
comes right after the message so log collectors can index it without
parsing free text:

    {"timestamp": "2024-05-01T12:00:00.123Z", "level": "WARNING",
     "logger": "planilla_storage.records", "message": "...",
     "record_id": "...", "remote_id": "..."}
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TextIO

from .models import format_timestamp

# Context keys emitted right after the message, in this order
CONTEXT_FIELDS = ("record_id", "remote_id", "operation")

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class StructuredJsonFormatter(logging.Formatter):
    """Render log records as single-line JSON with record context."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": format_timestamp(datetime.fromtimestamp(record.created, UTC)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        for key, value in vars(record).items():
            if key in _RESERVED or key in entry or key.startswith("_"):
                continue
            entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = "planilla_storage",
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Send a logger's records to ``stream`` as JSON lines.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Minimum level emitted
        logger_name: Logger to configure; None means the root logger
        stream: Destination (default: stdout)
    """
    target = logging.getLogger(logger_name)
    target.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    target.addHandler(handler)
    target.setLevel(level)
    return target


class StorageLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps every message with fixed context.

    Per-call ``extra`` values win over the adapter's own.
    """

    @classmethod
    def for_record(cls, logger: logging.Logger, record_id: str) -> StorageLoggerAdapter:
        return cls(logger, {"record_id": record_id})

    def process(
        self, msg: str, kwargs: Mapping[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        kwargs = dict(kwargs)
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs
