"""
Structured Logger — Driver Event Logging
=========================================

Structured logging for the unified driver with automatic connection and
operation context injection.

Design:
  - Event-name-first calls: ``log.info("backend_opened", backend="xend")``
  - JSON output for log collectors, one-line human format for consoles
  - Context variables carry the connection id and current operation so
    every record emitted while dispatching is attributable
  - Lazy: disabled levels cost one ``isEnabledFor`` check

Architecture:
  - This is the lowest-level telemetry primitive
  - All other layers import from here
  - Stdlib ``logging`` underneath
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# ── Context Variables ──────────────────────────────────────────────

_connection_id: ContextVar[str | None] = ContextVar("connection_id", default=None)
_operation: ContextVar[str | None] = ContextVar("operation", default=None)

def set_log_context(
    *,
    connection_id: str | None = None,
    operation: str | None = None,
) -> None:
    """Set context fields injected into every subsequent record."""
    if connection_id is not None:
        _connection_id.set(connection_id)
    if operation is not None:
        _operation.set(operation)

# ── Structured Formatter ──────────────────────────────────────────

_SKIP_ATTRS = frozenset({
    "name", "msg", "args", "created", "relativeCreated",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "pathname", "filename", "module", "levelno", "levelname",
    "thread", "threadName", "process", "processName", "msecs",
    "taskName", "message",
})

_JSON_SAFE = (str, int, float, bool, type(None))

class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter with automatic context injection."""

    def __init__(self, *, json_output: bool = True, include_traceback: bool = True):
        super().__init__()
        self._json = json_output
        self._include_tb = include_traceback
        self._pid = os.getpid()

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "line": record.lineno,
            "pid": self._pid,
        }

        ctx = {
            "connection_id": _connection_id.get(None),
            "operation": _operation.get(None),
        }
        entry["context"] = {k: v for k, v in ctx.items() if v is not None}

        extras: dict[str, Any] = {}
        for key, val in record.__dict__.items():
            if key.startswith("_") or key in _SKIP_ATTRS:
                continue
            extras[key] = val if isinstance(val, _JSON_SAFE) else str(val)
        if extras:
            entry["data"] = extras

        if record.exc_info and self._include_tb:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": traceback.format_exception(*record.exc_info)
                if exc_tb
                else None,
            }

        if self._json:
            return json.dumps(entry, default=str, ensure_ascii=False)

        # Human-readable fallback
        conn = entry["context"].get("connection_id", "-")[:8]
        data = " ".join(f"{k}={v}" for k, v in extras.items())
        line = (
            f"{entry['timestamp']} | {entry['level']:8s} | {conn} | "
            f"{entry['logger']}:{entry['line']} | {entry['event']}"
        )
        return f"{line} {data}" if data else line

# ── Structured Logger ─────────────────────────────────────────────

class StructuredLogger:
    """
    Wrapper around stdlib logger providing structured logging helpers.

    Usage:
        log = StructuredLogger("xenunified.infra.runtime.router")
        log.debug("candidate_declined", backend="xm", operation="domain_get_info")
        log.warning("backend_close_failed", backend="xenstore")
    """

    __slots__ = ("_logger", "_name")

    def __init__(self, name: str):
        self._name = name
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._name

    def _log(self, level: int, event: str, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, event, extra=kwargs, stacklevel=3)

    def debug(self, event: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, exc: BaseException | None = None, **kwargs: Any) -> None:
        if exc:
            self._logger.error(event, extra=kwargs, exc_info=exc, stacklevel=2)
        else:
            self._log(logging.ERROR, event, **kwargs)

# ── Setup ──────────────────────────────────────────────────────────

_initialized = False

def setup_logging(
    *,
    level: str = "INFO",
    json_output: bool = False,
    log_dir: str | Path | None = None,
) -> None:
    """
    Initialize the logging system. Call once at process startup.

    Args:
        level: Root log level
        json_output: Emit JSON records on the console handler
        log_dir: Directory for rotating log files. None = stderr only.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    root = logging.getLogger("xenunified")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.propagate = False

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(StructuredFormatter(json_output=json_output))
    root.addHandler(console)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "xenunified.log",
            maxBytes=20 * 1024 * 1024,  # 20MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter(json_output=True))
        root.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            log_path / "errors.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8",
        )
        error_handler.setFormatter(StructuredFormatter(json_output=True))
        error_handler.setLevel(logging.ERROR)
        root.addHandler(error_handler)

def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)
