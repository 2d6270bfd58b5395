"""
Rho Observability

Structured logging for the canonicalization core. Every component logs through
a RhoLogger, which emits one JSON object per line with correlation id, layer,
operation and structured context.

    logger = get_logger("store", Layer.CAS)
    logger.debug("Stored blob", cid=cid, size=len(data))

Log level and output format come from ``observability.*`` in rho.config and
are looked up when an event is logged, so later configuration changes apply to
loggers created at import time.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar

from rho.config import get_config

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class Layer(Enum):
    """Rho components, used to categorize log events."""
    CORE = "core"
    CAS = "cas"
    COMPILER = "compiler"
    EXECUTOR = "executor"
    POLICY = "policy"
    RECEIPT = "receipt"
    MODULES = "modules"
    CONFIG = "config"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)


class StructuredHandler(logging.Handler):
    """
    Writes one JSON object (or one flat text line) per record.

    With ``fmt=None`` the format follows ``observability.log_format`` at emit
    time; an explicit format stays fixed.
    """

    def __init__(self, stream: Any = None, fmt: Optional[str] = None):
        super().__init__()
        self.stream = stream or sys.stderr
        self.fmt = fmt

    def _format_name(self) -> str:
        return self.fmt or get_config().observability.log_format.get()

    def _event(self, record: logging.LogRecord) -> LogEvent:
        event = LogEvent(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=correlation_id_var.get(),
            layer=getattr(record, "layer", ""),
            operation=getattr(record, "operation", ""),
            duration_ms=getattr(record, "duration_ms", None),
            error_code=getattr(record, "error_code", ""),
            context=getattr(record, "context", {}),
        )
        if record.exc_info:
            event.exception = "".join(traceback.format_exception(*record.exc_info))
        return event

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = self._event(record)
            if self._format_name() == "text":
                ctx = " ".join(f"{k}={v}" for k, v in sorted(event.context.items()))
                line = f"{event.timestamp} {event.level.upper()} {event.logger}: {event.message} {ctx}".rstrip()
            else:
                line = event.to_json()
            self.stream.write(line + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class RhoLogger:
    """
    Structured logger for rho components.

    Loggers are created at import time, so the level is resolved on every call:
    an explicit ``level`` is fixed, otherwise ``observability.log_level`` from
    the current configuration applies.
    """

    def __init__(self, name: str, layer: Layer, level: Optional[str] = None):
        self.name = name
        self.layer = layer
        self._level = level
        self._logger = logging.getLogger(f"rho.{layer.value}.{name}")
        self._sync_level()

        if not any(isinstance(h, StructuredHandler) for h in self._logger.handlers):
            self._logger.addHandler(StructuredHandler())

    @property
    def stdlib(self) -> logging.Logger:
        return self._logger

    def _sync_level(self) -> None:
        name = self._level or get_config().observability.log_level.get()
        level = getattr(logging, name.upper())
        if self._logger.level != level:
            self._logger.setLevel(level)

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._sync_level()
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.DEBUG if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str, layer: Layer) -> RhoLogger:
    """Get a logger for a rho component."""
    return RhoLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: RhoLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                logger.operation(operation_name, duration_ms, success)
        return wrapper
    return decorator
