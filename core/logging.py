# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across all components
# CREATED: 16 OCT 2026
# ============================================================================
"""
Structured Logging

Features:
- Contextual fields (user_id, resource_id, job_id, queue_name, ...)
  carried by a ContextVar, so each asyncio task (one per job) keeps its own
- ContextFilter copies the active context onto every record
- JSON output for log aggregation, a compact line format for development
- Named checkpoints for tracing one generation end to end

Usage:
    from core.logging import get_logger, log_context

    logger = get_logger(__name__)

    with log_context(job_id="generation-u1-1760000000000", user_id="u1"):
        logger.info("Processing job", extra={"attempt": 1})
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class ComponentType(str, Enum):
    """Component types for logging categorization."""
    ORCHESTRATOR = "orchestrator"
    WORKER = "worker"
    API = "api"
    REPOSITORY = "repository"
    SERVICE = "service"
    QUEUE = "queue"
    CACHE = "cache"


# ============================================================================
# CONTEXT
# ============================================================================

@dataclass(frozen=True)
class LogContext:
    """Fields attached to every record logged while the context is active."""
    user_id: Optional[str] = None
    resource_id: Optional[str] = None
    job_id: Optional[str] = None
    queue_name: Optional[str] = None
    correlation_id: Optional[str] = None
    worker_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def merged(self, **overrides: Any) -> "LogContext":
        """Child context: overrides win, extra dicts are combined."""
        extra = {**self.extra, **overrides.pop("extra", {})}
        values = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "extra"}
        values.update({k: v for k, v in overrides.items() if k in values})
        return LogContext(**values, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        """Non-None fields, with extra flattened in."""
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        result.update(self.extra)
        return result


_EMPTY = LogContext()
_current: ContextVar[LogContext] = ContextVar("log_context", default=_EMPTY)


def get_current_context() -> LogContext:
    """Context of the running task."""
    return _current.get()


@contextmanager
def log_context(**kwargs):
    """
    Add fields to the logging context for the duration of the block.

    Nested blocks inherit the enclosing fields.

    Example:
        with log_context(user_id="u1", resource_id="ideal-customer-profile"):
            logger.info("Validating resource")
    """
    token = _current.set(_current.get().merged(**kwargs))
    try:
        yield _current.get()
    finally:
        _current.reset(token)


class ContextFilter(logging.Filter):
    """Copies the active LogContext onto each record as record.context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = get_current_context().to_dict()
        return True


# ============================================================================
# FORMATTERS
# ============================================================================

def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    context = getattr(record, "context", None)
    return context if context is not None else get_current_context().to_dict()


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = _record_context(record)
        if context:
            log_data["context"] = context

        data = getattr(record, "data", None)
        if data:
            log_data["data"] = data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data["source"] = f"{record.filename}:{record.lineno}"
        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Single-line format for development, with the key context fields inline."""

    # (context key, label) in display order
    INLINE_FIELDS = (
        ("user_id", "user"),
        ("resource_id", "resource"),
        ("job_id", "job"),
        ("queue_name", "queue"),
    )

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        context = _record_context(record)
        inline = [f"{label}={context[key]}" for key, label in self.INLINE_FIELDS if context.get(key)]
        context_str = f" [{', '.join(inline)}]" if inline else ""

        line = f"{timestamp} {record.levelname:<8} {record.name}{context_str}: {record.getMessage()}"

        data = getattr(record, "data", None)
        if data:
            line += f" {data}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


# ============================================================================
# LOGGERS
# ============================================================================

class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter whose extra= dict is stored as record.data.

    The optional component is added to the data of every record.
    """

    def process(self, msg, kwargs):
        data = dict(kwargs.pop("extra", None) or {})
        component = self.extra.get("component") if self.extra else None
        if component is not None:
            data.setdefault("component", component.value)
        kwargs["extra"] = {"data": data}
        return msg, kwargs


def get_logger(name: str, component: Optional[ComponentType] = None) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (usually __name__)
        component: Optional component type for categorization
    """
    return ContextLogger(logging.getLogger(name), {"component": component})


# Third-party loggers that are too chatty at INFO
_NOISY_LOGGERS = ("psycopg.pool", "aiohttp.access", "uvicorn.access")


def configure_logging(level: Union[str, int] = "INFO", json_output: bool = False) -> None:
    """
    Configure the root logger once per process.

    Args:
        level: Log level name or number
        json_output: JSON lines (also enabled by LOG_FORMAT=json)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = HumanFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named checkpoint.

    Checkpoints ("context_cache_hit", "resource_generated", ...) can be
    queried to reconstruct the execution of a single job.
    """
    logger = logger or logging.getLogger("checkpoint")
    payload: Dict[str, Any] = {"checkpoint": name}
    if data:
        payload.update(data)
    logger.info(f"CHECKPOINT: {name}", extra={"data": payload})


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ComponentType",
    "LogContext",
    "ContextFilter",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
