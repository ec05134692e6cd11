"""
Logging setup for the sheet service.

Two output formats share one root handler:

    text   one line per record, coloured level, trailing request id
    json   one object per line for the log pipeline

Every record logged while a request is active carries ``request_id`` and
``actor_id`` from ``flask.g``, so service-level lines (lock conflicts,
denied access, audit write failures) can be joined with the access log
line that the timing middleware writes.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# ``extra={...}`` keys copied into JSON output
CONTEXT_FIELDS = (
    "request_id",
    "actor_id",
    "staff_id",
    "sheet_key",
    "row_id",
    "event_type",
    "action",
    "reason",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic.runtime.migration")


class RequestContextFilter(logging.Filter):
    """Stamp request_id and actor_id onto records emitted inside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "actor_id", None) is None:
                record.actor_id = g.get("jwt_user_id")
        return True


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<7}"
        if self.colour:
            level = f"{self.LEVEL_COLOURS.get(record.levelno, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"

        sheet_key = getattr(record, "sheet_key", None)
        if sheet_key:
            row_id = getattr(record, "row_id", None)
            line += f" [{sheet_key}#{row_id}]" if row_id else f" [{sheet_key}]"
        request_id = getattr(record, "request_id", None)
        if request_id:
            line += f" rid={request_id}"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app) -> None:
    """
    Install a single stderr handler on the root logger.

    LOG_FORMAT picks the formatter ("json" or "text"); when unset, text is
    used under DEBUG or TESTING and json otherwise. LOG_LEVEL defaults to
    DEBUG for development and INFO elsewhere. Existing root handlers are
    replaced, so building several apps in one process does not duplicate
    output.
    """
    debugging = app.config.get("DEBUG", False) or app.config.get("TESTING", False)

    fmt = (app.config.get("LOG_FORMAT") or ("text" if debugging else "json")).lower()
    if fmt not in ("json", "text"):
        raise ValueError(f"LOG_FORMAT must be 'json' or 'text', got {fmt!r}")

    level_name = (app.config.get("LOG_LEVEL") or ("DEBUG" if app.config.get("DEBUG") else "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown LOG_LEVEL {level_name!r}")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter(colour=sys.stderr.isatty()))
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.debug("Logging configured: level=%s format=%s", level_name, fmt)
