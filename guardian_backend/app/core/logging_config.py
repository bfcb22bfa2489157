"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (machine-parseable)
    • Pretty console logs for development (human-readable)
    • Request-scoped context set by the middleware (request_id, actor_id)
    • Dispatch context bound around alert work (alert_id, responder_id, ...)

Dispatch fields are looked up on the record first (``extra=``) and then
in the bound context, so a log line emitted deep inside the matcher still
carries the alert it belongs to:

    with bind_context(alert_id=alert.alert_id):
        logger.info("Claimed %d responders", n)
        # JSON → {"message": "Claimed 2 responders",
        #         "dispatch": {"alert_id": "ALR-…"}, ...}
        # pretty → 12:00:01 INFO     [1a2b3c4d] <U1> alert=ALR-… …: Claimed 2 responders

Usage:
    from guardian_backend.app.core.logging_config import setup_logging, get_logger

    setup_logging(settings)
    logger = get_logger(__name__)
    logger.info("Alert created", extra={"alert_id": alert.alert_id})
"""

from __future__ import annotations

import contextlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from guardian_backend.app.core.config import Settings

# ── Context variable for request-scoped data ──
_request_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "request_context", default=None
)

# Identify what a line is about; merged from the record and the bound context
DISPATCH_FIELDS = (
    "alert_id", "user_id", "responder_id", "subject_id", "location_id",
    "target_id", "kind", "status", "assigned_count", "distance_km",
)

# Only ever set per record, by the access log
HTTP_FIELDS = ("endpoint", "status_code", "duration_ms")

# Shown inline by the pretty formatter, in this order
_PRETTY_KEYS = (("alert_id", "alert"), ("responder_id", "responder"), ("subject_id", "subject"))


def set_request_context(**kwargs: Any) -> None:
    """Replace the request context (call from middleware; no args clears it)."""
    _request_context.set(dict(kwargs) if kwargs else None)


def get_request_context() -> Dict[str, Any]:
    """Get current request context."""
    return _request_context.get() or {}


@contextlib.contextmanager
def bind_context(**fields: Any) -> Iterator[None]:
    """Add dispatch fields to the current context for the duration of a block."""
    merged = {**get_request_context(), **{k: v for k, v in fields.items() if v is not None}}
    token = _request_context.set(merged)
    try:
        yield
    finally:
        _request_context.reset(token)


def dispatch_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Dispatch fields for ``record``; explicit ``extra=`` values win."""
    ctx = get_request_context()
    found = {}
    for key in DISPATCH_FIELDS:
        if hasattr(record, key):
            found[key] = getattr(record, key)
        elif key in ctx:
            found[key] = ctx[key]
    return found


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """Machine-parseable JSON log output for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        ctx = get_request_context()
        if ctx.get("request_id"):
            log_entry["request_id"] = ctx["request_id"]
        if ctx.get("actor_id"):
            log_entry["actor_id"] = ctx["actor_id"]

        dispatch = dispatch_fields(record)
        if dispatch:
            log_entry["dispatch"] = dispatch

        http = {key: getattr(record, key) for key in HTTP_FIELDS if hasattr(record, key)}
        if http:
            log_entry["http"] = http

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured human-readable format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, "%H:%M:%S")
        level = f"{record.levelname:8s}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, self.RESET)}{level}{self.RESET}"

        ctx = get_request_context()
        parts = []
        if ctx.get("request_id"):
            parts.append(f"[{ctx['request_id'][:8]}]")
        if ctx.get("actor_id"):
            parts.append(f"<{ctx['actor_id']}>")
        dispatch = dispatch_fields(record)
        parts.extend(f"{label}={dispatch[key]}" for key, label in _PRETTY_KEYS if key in dispatch)

        prefix = " ".join([ts, level] + parts)
        formatted = f"{prefix} {record.name}: {record.getMessage()}"

        if record.exc_info and record.exc_info[1]:
            formatted += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"

        return formatted


# ── Setup ──

def setup_logging(settings: Settings, stream: Optional[Any] = None) -> None:
    """Configure root logging: JSON in production, pretty otherwise."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    out = stream or sys.stdout
    handler = logging.StreamHandler(out)
    if settings.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(PrettyFormatter(color=getattr(out, "isatty", lambda: False)()))
    root.addHandler(handler)

    # Quieten noisy libraries
    for name in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DATABASE_ECHO else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    """Get a named logger (call once per module)."""
    return logging.getLogger(name)
