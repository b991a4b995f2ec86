"""
Structured JSON Logging

Opt-in via LOG_JSON=true; otherwise the standard text format is used.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

from ..config import LOG_JSON

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info", "taskName",
}


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Log format:
    {
        "ts": "2024-01-01T00:00:00Z",
        "level": "INFO",
        "logger": "donormatch.services.emergency_matching.orchestrator",
        "message": "...",
        "request_id": "uuid"
    }
    """

    def __init__(self, json_output: bool = LOG_JSON):
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        if not self.json_output:
            return super().format(record)

        log_data = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["error"] = self.formatException(record.exc_info)

        # Extra fields passed via `logger.info(..., extra={...})`
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and key not in log_data:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_structured_logging(json_output: bool = LOG_JSON) -> logging.Logger:
    """Setup root logging with the structured formatter."""
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJSONFormatter(json_output))
    root_logger.addHandler(handler)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    return root_logger
