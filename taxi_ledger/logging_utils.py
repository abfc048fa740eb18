from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any

LEDGER_LOGGER_NAME = "taxi_ledger"

_RESERVED_LOG_RECORD_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
}


def _json_default(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_RECORD_FIELDS or key.startswith("_"):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default, ensure_ascii=False)


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"{LEDGER_LOGGER_NAME}.{component}")


def setup_json_logging(level: int = logging.INFO, *, root: bool = False) -> logging.Handler:
    """Install a JSON stream handler.

    By default only the ``taxi_ledger`` logger tree is configured so a host
    application keeps its own root handlers; ``root=True`` replaces them.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    target = logging.getLogger() if root else logging.getLogger(LEDGER_LOGGER_NAME)
    target.handlers.clear()
    target.addHandler(handler)
    target.setLevel(level)
    if not root:
        target.propagate = False
    return handler
