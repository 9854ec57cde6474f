"""
Logging for the Gift Aid service.

Every record emitted inside a request is stamped with the request id and,
when the route names them, the claim and charity it concerns. Extras whose
names look like credentials are replaced before any handler sees them:
gateway passwords and Authorization headers never reach the log stream.

Development and tests get one readable line per record; production gets
one JSON object per line. LOG_LEVEL overrides the default level.
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

REDACTED = "***"

_SENSITIVE_RE = re.compile(r"password|passwd|authori[sz]ation|secret|credential|token", re.I)
# Attributes every LogRecord has; anything else arrived through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "taskName",
}


class ScopeFilter(logging.Filter):
    """Attach request scope and redact credential-bearing extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            view_args = request.view_args or {}
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            for key in ("claim_id", "charity_id"):
                if getattr(record, key, None) is None:
                    setattr(record, key, view_args.get(key))
        for key in list(vars(record)):
            if key not in _RECORD_ATTRS and _SENSITIVE_RE.search(key):
                setattr(record, key, REDACTED)
        return True


def _extras(record: logging.LogRecord) -> dict:
    return {
        key: value for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and value is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_extras(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """`12:00:01 INFO     app.services.claim_service: ... [claim=... req=...]`"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    _SCOPE_LABELS = {"claim_id": "claim", "charity_id": "charity", "request_id": "req"}

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"

        scope = " ".join(
            f"{label}={getattr(record, key)}"
            for key, label in self._SCOPE_LABELS.items()
            if getattr(record, key, None)
        )
        if scope:
            line += f" [{scope}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for this app.

    Production (neither DEBUG nor TESTING) logs JSON at INFO; otherwise
    readable lines at DEBUG, uncoloured under TESTING.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter(color=not testing))
    handler.addFilter(ScopeFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if production else "readable")
