"""JSON logging for the Life Forecast bot API. Phone addresses never reach the log stream unmasked."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

LOGGER_NAMESPACE = "life_forecast"

# Keys in `extra={"context": ...}` whose values are phone addresses.
ADDRESS_KEYS = {"phone", "address", "from_address", "to_address"}

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def mask_address(address: str | None) -> str:
    """Keep the last four digits of a phone address for log lines."""
    if not address:
        return "unknown"
    digits = "".join(ch for ch in address if ch.isdigit())
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"


def _scrub_context(context: dict[str, Any]) -> dict[str, Any]:
    return {
        key: mask_address(str(value)) if key in ADDRESS_KEYS and value else value
        for key, value in context.items()
    }


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if isinstance(context, dict) and context:
            entry["context"] = _scrub_context(context)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for existing in list(root.handlers):
        root.removeHandler(existing)

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(JSONFormatter())
    root.addHandler(stream)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
