"""Structured JSON logging for mentor-meter."""

import json
import logging
import sys
from datetime import datetime, timezone

# Keys passed via ``extra=`` that are copied into the JSON line.
CONTEXT_FIELDS = (
    "user_id",
    "conversation_id",
    "event_type",
    "usage_period_id",
    "action_type",
    "reason",
)


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines, carrying request context fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Install the JSON handler on the ``mentor_meter`` logger (idempotent)."""
    root = logging.getLogger("mentor_meter")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if any(isinstance(h.formatter, JSONFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)
    root.propagate = False
