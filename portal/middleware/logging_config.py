"""
Logging setup for the portal.

Two output shapes, picked from the app config:
    production   one JSON object per line, for the log aggregator
    development  coloured single line: time, level, logger, [event], context

Engine and cascade code logs with ``extra={"project_id": ..., "event_type":
...}`` (plus ``entity_id`` where a row is involved). RequestContextFilter
adds the acting user and the request line, so a best-effort failure can be
traced to the request and user that triggered it.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Record attributes copied into the output when present, in this order.
CONTEXT_FIELDS = ("project_id", "event_type", "entity_id", "user_id", "method", "path")

_NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "httpx", "openai")


def record_context(record):
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class RequestContextFilter(logging.Filter):
    """Stamp user_id / method / path on records emitted inside a request."""

    def filter(self, record):
        if has_request_context():
            user = getattr(g, "current_user", None)
            if user is not None and getattr(record, "user_id", None) is None:
                record.user_id = user.id
            record.method = request.method
            record.path = request.path
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        context = record_context(record)
        event = context.pop("event_type", None)
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}"
        if event:
            line += f" [{event}]"
        line += f": {record.getMessage()}"
        if context:
            line += "  " + " ".join(f"{k}={v}" for k, v in context.items())
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install one stderr handler on the root logger.

    LOG_LEVEL overrides the level (DEBUG outside production, INFO in it).
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
