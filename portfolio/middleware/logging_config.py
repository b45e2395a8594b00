"""
Logging setup for the portfolio service.

Two output shapes share one root handler:

- ``readable`` (development, testing): one coloured line per record, with
  the domain event name and use case in brackets when the record carries them
- ``json`` (production): one JSON object per record; request context and
  event fields become top-level keys, the event payload stays nested

LOG_LEVEL and LOG_FORMAT env variables override the defaults picked from
the app config.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Request-scoped attributes copied from the record when set
_REQUEST_KEYS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")
# Domain event attributes set by LoggingEventSink
_EVENT_KEYS = ("event_type", "use_case_id", "payload")

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


class RequestContextFilter(logging.Filter):
    """Stamp ``request_id`` from ``flask.g`` on records logged inside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = getattr(g, "request_id", None)
        return True


class PortfolioJSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _REQUEST_KEYS + _EVENT_KEYS:
            value = getattr(record, key, None)
            if value not in (None, "", {}):
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.colour:
            level = f"{_LEVEL_COLOURS.get(record.levelno, '')}{level}{_RESET}"

        scope = ""
        event = getattr(record, "event_type", None)
        if event:
            use_case = getattr(record, "use_case_id", None)
            scope = f" [{event}{' ' + use_case if use_case else ''}]"

        line = f"{datetime.fromtimestamp(record.created):%H:%M:%S} {level} {record.name}{scope} {record.getMessage()}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _pick_format(app) -> str:
    requested = os.getenv("LOG_FORMAT", "").lower()
    if requested in ("json", "readable"):
        return requested
    if app.config.get("DEBUG") or app.config.get("TESTING"):
        return "readable"
    return "json"


def configure_logging(app) -> None:
    """Install the root handler. Safe to call once per ``create_app``."""
    fmt = _pick_format(app)
    default_level = "DEBUG" if app.config.get("DEBUG") else "INFO"
    level = getattr(logging, os.getenv("LOG_LEVEL", default_level).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(PortfolioJSONFormatter() if fmt == "json" else ReadableFormatter(sys.stderr.isatty()))
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # tests build the app more than once
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for chatty in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(chatty).setLevel(logging.WARNING)

    if not app.config.get("TESTING"):
        app.logger.info("Logging configured: level=%s format=%s", logging.getLevelName(level), fmt)
