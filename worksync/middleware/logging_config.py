"""
Logging setup for the sync engine.

One stderr handler on the root logger, installed by ``configure_logging``:
    - production: one JSON object per line
    - development and tests: short coloured lines tagged with the collection
The level comes from LOG_LEVEL when set.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Keys passed as ``extra={...}`` by the engine's loggers
_EXTRA_KEYS = (
    "collection",
    "subscription_id",
    "entity_id",
    "notification_id",
    "actor_id",
    "record_count",
    "duration_ms",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "asyncio")


def _has_exception(record: logging.LogRecord) -> bool:
    return bool(record.exc_info) and record.exc_info[0] is not None


class JSONFormatter(logging.Formatter):
    """One JSON object per record, engine extras as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            (key, getattr(record, key))
            for key in _EXTRA_KEYS
            if getattr(record, key, None) is not None
        )
        if _has_exception(record):
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger [collection]: message`` with the level coloured."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        collection = getattr(record, "collection", None)
        tag = f" [{collection}]" if collection else ""
        line = (
            f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET} "
            f"{record.name}{tag}: {record.getMessage()}"
        )
        if _has_exception(record):
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install the worksync log handler for ``app``.

    Production (neither DEBUG nor TESTING) logs JSON at INFO by default;
    everything else logs readable lines at DEBUG. LOG_LEVEL overrides both.
    Calling it again replaces the handler instead of adding a second one.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not testing:
        app.logger.info("Logging ready: level=%s format=%s",
                        level_name, "json" if production else "readable")
