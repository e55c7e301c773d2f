"""JSON logging setup shared by the service and the HTTP app."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import jsonlogger

_SENSITIVE_KEYS = ("password", "api_key", "authorization", "secret")


class RedactingJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps a UTC timestamp and masks secrets."""

    def __init__(self, *args: Any, environment: str = "development", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.environment = environment

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["environment"] = self.environment
        for key in list(log_record):
            lowered = key.lower()
            if any(marker in lowered for marker in _SENSITIVE_KEYS):
                log_record[key] = "***REDACTED***"
            elif "token" in lowered and "tokens" not in lowered:
                log_record[key] = "***REDACTED***"


def setup_logging(level: str = "INFO", *, environment: str = "development") -> None:
    """Route package logs to stdout as JSON. Safe to call more than once."""

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        RedactingJsonFormatter("%(message)s", environment=environment)
    )

    root = logging.getLogger("kb_agent")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())
    root.propagate = False

    # Request bodies and auth headers are logged by httpx at DEBUG.
    logging.getLogger("httpx").setLevel(logging.WARNING)
