"""
Structured logging for ledgermatch.

Every event helper emits one record on the package logger with an `event`
name and a flat dict of fields. The console format appends the fields as
key=value pairs; with USE_JSON_LOGS=true each record is a single JSON line.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("ledgermatch")

# Record attributes that identify the emitting event rather than its payload
EVENT_ATTR = "event"
FIELDS_ATTR = "event_fields"


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, FIELDS_ATTR, None) or {}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; event fields sit at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, EVENT_ATTR, None) or "log",
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        for key, value in _fields(record).items():
            payload.setdefault(key, value)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Plain text with the event fields appended as key=value."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _fields(record)
        if fields:
            line += " | " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> logging.Logger:
    """(Re)install the package handler. Safe to call more than once."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_logs is None:
        json_logs = os.getenv("USE_JSON_LOGS", "false").lower() == "true"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_logs else ConsoleFormatter())

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level, logging.INFO))
    logger.propagate = False
    return logger


def _emit(level: int, event: str, message: str, fields: Dict[str, Any], exc_info=None) -> None:
    if not logger.isEnabledFor(level):
        return
    record = logger.makeRecord(
        logger.name, level, fn="", lno=0, msg=message, args=(), exc_info=exc_info,
        extra={EVENT_ATTR: event, FIELDS_ATTR: fields},
    )
    logger.handle(record)


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_id: Optional[str] = None,
    **kwargs
):
    """Log HTTP request."""
    fields = {"method": method, "path": path, "status_code": status_code, "duration_ms": duration_ms}
    if client_id:
        fields["client_id"] = client_id
    fields.update(kwargs)
    _emit(logging.INFO, "http_request", f"{method} {path} {status_code}", fields)


def log_reconciliation_run(
    run_id: str,
    counts: Dict[str, int],
    transactions: int,
    entries: int,
    duration_ms: Optional[float] = None,
):
    """
    One line per batch. `counts` is the run summary (matched, ignored,
    corrected, synthesized, learned, errors, ...); unmatched leftovers are
    logged at WARNING so they surface in default-level output.
    """
    fields: Dict[str, Any] = {"run_id": run_id, "transactions": transactions, "entries": entries}
    fields.update(counts)
    if duration_ms is not None:
        fields["duration_ms"] = duration_ms

    left_over = counts.get("unmatched_transactions", 0)
    level = logging.WARNING if left_over else logging.INFO
    _emit(
        level,
        "reconciliation_run",
        f"Run {run_id}: {counts.get('matched', 0)} of {transactions} transactions matched, {left_over} left for review",
        fields,
    )


def log_error(
    error_type: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    exception: Optional[Exception] = None
):
    """Log error with context."""
    fields = {"error_type": error_type, **(context or {})}
    exc_info = (type(exception), exception, exception.__traceback__) if exception else None
    _emit(logging.ERROR, "error", message, fields, exc_info=exc_info)


configure_logging()
