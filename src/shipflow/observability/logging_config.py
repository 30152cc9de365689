"""Structured logging setup for ShipFlow.

Every record gets the current request id. Shipment context passed through
``extra=`` (draft_key, human_id, carrier, phase, ...) is lifted into the JSON
payload so a single booking can be followed across log lines.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Iterable

from .request_id import get_request_id


# Extra attributes copied into the JSON payload when present on a record
CONTEXT_FIELDS = (
    "company_key",
    "user_key",
    "draft_key",
    "human_id",
    "section",
    "step",
    "carrier",
    "phase",
    "attempt_id",
    "strategy",
    "reason",
    "duration_ms",
    "status_code",
)

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore")


class RequestIDFilter(logging.Filter):
    """Stamp the bound request id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, service: str = "shipflow"):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "request_id": getattr(record, "request_id", "no-request-id"),
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value if isinstance(value, (int, float, bool)) else str(value)

        if record.exc_info:
            payload["error"] = repr(record.exc_info[1])
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    quiet: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Root log level name
        json_format: JSON lines when True, a plain one-line format otherwise
        quiet: Third-party loggers capped at WARNING
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDFilter())
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
