"""Structured logging setup for the metrics engine."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from gwmetrics.core.config import get_settings

# Structured fields emitted by the registry and push client
_STRUCTURED_FIELDS = (
    "family",
    "job",
    "method",
    "gateway_url",
    "status_code",
    "latency_ms",
    "bytes",
    "collector",
)


class JsonFormatter(logging.Formatter):
    def __init__(self, service_name: str = "gwmetrics", include_timestamp: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "service": self.service_name,
        }
        if self.include_timestamp:
            data["timestamp"] = (
                datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z")
            )
        for attr in _STRUCTURED_FIELDS:
            if hasattr(record, attr):
                data[attr] = getattr(record, attr)
        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info),
            }
        return json.dumps(data, ensure_ascii=False, default=str)


class SimpleFormatter(logging.Formatter):
    """Human readable single-line formatter."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s")


def setup_logging(level: Optional[str] = None, json_format: Optional[bool] = None) -> None:
    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    if json_format is None:
        json_format = settings.LOG_JSON

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JsonFormatter(service_name=settings.SERVICE_NAME))
    else:
        handler.setFormatter(SimpleFormatter())
    root.handlers = [handler]
