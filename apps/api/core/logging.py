"""
Structured logging configuration.

JSON lines in production, plain text locally. Engine events attach their
identifiers (athlete, plan, event key) through ``log_fields`` so the JSON
output can be filtered per athlete:

    logger.info("Plan generated", extra=log_fields(athlete_id=..., plan_id=...))
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from core.config import Settings, settings

# Libraries that are chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "redis")


def log_fields(**fields: Any) -> Dict[str, Dict[str, Any]]:
    """Build the ``extra`` mapping understood by JSONFormatter; None values are dropped."""
    return {"extra_fields": {key: value for key, value in fields.items() if value is not None}}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        # UUIDs and datetimes in extra_fields
        return json.dumps(log_data, default=str)


def setup_logging(config: Optional[Settings] = None) -> logging.Logger:
    """
    Configure the root logger from LOG_LEVEL / LOG_FORMAT / ENVIRONMENT.

    Safe to call more than once; existing root handlers are replaced.
    """
    config = config or settings
    log_level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)

    if config.LOG_FORMAT == "json" or config.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
