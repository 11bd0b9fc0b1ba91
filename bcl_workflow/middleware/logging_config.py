"""
Structured logging for the workflow service.

Engine modules log through ``logging.getLogger(__name__)`` and pass scope
context with ``extra={...}``.  The same records render two ways:

    readable  development / testing
              03:00:01 WARNING  review.apply [p-1/w6 ev-1]: Write rejected: ... (locked)
    json      production, one object per line; request context at the top
              level, workflow context grouped under "workflow"

LOG_FORMAT and LOG_LEVEL come from the app config (env overridable).
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Set by the timing middleware
REQUEST_KEYS = ("request_id", "method", "path", "status", "duration_ms")

# Passed by the gateway and the managers
WORKFLOW_KEYS = (
    "project_id",
    "period_id",
    "evidence_id",
    "snapshot_id",
    "actor_role",
    "operation",
    "condition",
    "idempotency_key",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_cors")


def _context(record: logging.LogRecord, keys) -> dict:
    values = {}
    for key in keys:
        value = getattr(record, key, None)
        if value is not None:
            values[key] = value
    return values


class JSONFormatter(logging.Formatter):
    """One JSON object per record for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record, REQUEST_KEYS))
        workflow = _context(record, WORKFLOW_KEYS)
        if workflow:
            entry["workflow"] = workflow
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Single-line rendering led by the operation and its scope."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True) -> None:
        super().__init__()
        self.color = color

    @staticmethod
    def scope_label(record: logging.LogRecord) -> str:
        project = getattr(record, "project_id", None)
        period = getattr(record, "period_id", None)
        parts = []
        if project or period:
            parts.append(f"{project or '?'}/{period or '?'}")
        for key in ("evidence_id", "snapshot_id"):
            value = getattr(record, key, None)
            if value:
                parts.append(str(value))
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        source = getattr(record, "operation", None) or record.name

        line = f"{ts} {level} {source}{self.scope_label(record)}: {record.getMessage()}"
        condition = getattr(record, "condition", None)
        if condition:
            line += f" ({condition})"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    LOG_FORMAT  "readable" | "json"; readable under DEBUG or TESTING,
                json otherwise
    LOG_LEVEL   defaults to DEBUG under DEBUG or TESTING, INFO otherwise
    """
    verbose = bool(app.config.get("DEBUG") or app.config.get("TESTING"))
    log_format = (app.config.get("LOG_FORMAT") or ("readable" if verbose else "json")).lower()
    level_name = (app.config.get("LOG_LEVEL") or ("DEBUG" if verbose else "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if log_format == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING"):
        app.logger.info("Logging configured: level=%s format=%s", level_name, log_format)
