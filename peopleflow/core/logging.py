import json
import logging
import os
from datetime import datetime, timezone

SERVICE_NAME = "peopleflow"

_STANDARD_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created", "msecs",
    "relativeCreated", "thread", "threadName", "processName", "process", "taskName",
}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra={...}`` fields land under ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if extras:
            payload["extra"] = extras

        if record.levelno >= logging.WARNING:
            payload["source"] = f"{record.module}:{record.funcName}:{record.lineno}"

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        if record.stack_info:
            payload["stack_info"] = record.stack_info

        return json.dumps(payload, default=str)


def configure_logging() -> None:
    """
    Install the formatter on the root logger.

    LOG_LEVEL picks the level (default INFO). LOG_FORMAT=text keeps plain
    lines for local runs; anything else logs JSON.
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = os.getenv("LOG_FORMAT", "json").lower()

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(message)s",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    if log_format == "text":
        formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    else:
        formatter = JsonFormatter()

    for handler in root_logger.handlers:
        handler.setFormatter(formatter)
