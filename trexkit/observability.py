"""
trexkit Observability

Structured logging and step tracing for deployment runs.

    ┌─────────────────────────────────────────────────────────┐
    │        roles / authority / linker / claims / ...         │
    │  logger.info("msg", contract=x)   tracer.span("step")   │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                 SuiteLogger / Tracer                     │
    │  run correlation id, span ids, structured context        │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │       StructuredHandler (JSON or text lines, stderr)     │
    └─────────────────────────────────────────────────────────┘

Log output goes to stderr so that the hand-off address table printed on
stdout stays machine-readable.

Copyright (c) 2024 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, TypeVar

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)
span_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "span_id", default=""
)
trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "trace_id", default=""
)


class SuiteLayer(Enum):
    """Provisioner components, used to scope loggers and spans."""
    ROLES = "roles"
    AUTHORITY = "authority"
    PROXY = "proxy"
    LINKER = "linker"
    CLAIMS = "claims"
    FACTORY = "factory"
    EVENTS = "events"
    LEDGER = "ledger"
    SESSION = "session"
    REGISTRATION = "registration"
    ORCHESTRATOR = "orchestrator"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    trace_id: str = ""
    span_id: str = ""
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
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        context = " ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"{self.timestamp} {self.level.upper():<8} [{self.layer or self.logger}] {self.message}"
        if context:
            line += f" {context}"
        if self.exception:
            line += "\n" + self.exception.rstrip()
        return line


@dataclass
class SpanEvent:
    """Event recorded within a span."""
    name: str
    timestamp: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Span:
    """
    One unit of work within a deployment run.

    The session opens a span per submitted deployment or call so each step
    carries its own timing, tx hash and outcome.
    """
    trace_id: str
    span_id: str
    parent_span_id: str = ""
    name: str = ""
    layer: str = ""
    start_time: float = field(default_factory=time.monotonic)
    end_time: Optional[float] = None
    status: str = "ok"
    attributes: Dict[str, Any] = field(default_factory=dict)
    events: List[SpanEvent] = field(default_factory=list)

    def record_event(self, name: str, **attributes: Any) -> None:
        self.events.append(SpanEvent(
            name=name,
            timestamp=datetime.now(timezone.utc).isoformat(),
            attributes=attributes,
        ))

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_status(self, status: str, message: str = "") -> None:
        self.status = status
        if message:
            self.attributes["status_message"] = message

    def end(self) -> None:
        if self.end_time is None:
            self.end_time = time.monotonic()

    @property
    def duration_ms(self) -> float:
        end = self.end_time or time.monotonic()
        return (end - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "name": self.name,
            "layer": self.layer,
            "duration_ms": round(self.duration_ms, 2),
            "status": self.status,
            "attributes": self.attributes,
            "events": [asdict(e) for e in self.events],
        }


class SpanContext:
    """Context manager for spans."""

    def __init__(self, tracer: "Tracer", name: str, layer: SuiteLayer, **attributes: Any):
        self.tracer = tracer
        self.name = name
        self.layer = layer
        self.attributes = attributes
        self.span: Optional[Span] = None
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> Span:
        self.span = self.tracer.start_span(self.name, self.layer, **self.attributes)
        self._token = span_id_var.set(self.span.span_id)
        return self.span

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.span:
            if exc_type:
                self.span.set_status("error", str(exc_val))
                self.span.set_attribute("exception_type", exc_type.__name__)
            self.tracer.end_span(self.span)
        if self._token:
            span_id_var.reset(self._token)


class Tracer:
    """Creates spans and keeps the finished ones for the run report."""

    def __init__(self, service_name: str = "trexkit"):
        self.service_name = service_name
        self._spans: Dict[str, Span] = {}
        self._finished: List[Span] = []
        self._lock = threading.RLock()

    def start_trace(self) -> str:
        trace_id = uuid.uuid4().hex
        trace_id_var.set(trace_id)
        return trace_id

    def start_span(self, name: str, layer: SuiteLayer, **attributes: Any) -> Span:
        trace_id = trace_id_var.get() or self.start_trace()
        span = Span(
            trace_id=trace_id,
            span_id=uuid.uuid4().hex[:16],
            parent_span_id=span_id_var.get(),
            name=name,
            layer=layer.value,
            attributes=attributes,
        )
        with self._lock:
            self._spans[span.span_id] = span
        return span

    def end_span(self, span: Span) -> None:
        span.end()
        with self._lock:
            self._spans.pop(span.span_id, None)
            self._finished.append(span)

    @property
    def finished_spans(self) -> List[Span]:
        with self._lock:
            return list(self._finished)

    def span(self, name: str, layer: SuiteLayer, **attributes: Any) -> SpanContext:
        return SpanContext(self, name, layer, **attributes)


class StructuredHandler(logging.Handler):
    """Logging handler that writes one JSON (or text) line per record."""

    def __init__(self, stream: Any = None, fmt: str = "json"):
        super().__init__()
        self.stream = stream
        self.fmt = fmt

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                trace_id=trace_id_var.get(),
                span_id=span_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            # resolved per record so pytest's capsys/capfd swaps are honoured
            stream = self.stream or sys.stderr
            stream.write((event.to_text() if self.fmt == "text" else event.to_json()) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


_ROOT_LOGGER = "trexkit"
_handler_lock = threading.Lock()


def configure_logging(level: str = "info", fmt: str = "json", stream: Any = None) -> None:
    """
    Install the structured handler on the ``trexkit`` logger.

    Component loggers are children of it, so one handler covers every layer.
    Calling again replaces the handler (used by the CLI once config is read).
    """
    root = logging.getLogger(_ROOT_LOGGER)
    with _handler_lock:
        for handler in list(root.handlers):
            if isinstance(handler, StructuredHandler):
                root.removeHandler(handler)
        root.addHandler(StructuredHandler(stream=stream, fmt=fmt))
    root.setLevel(getattr(logging, level.upper()))


class SuiteLogger:
    """
    Structured logger for one provisioner component.

    Keyword arguments become the event's ``context``; the component layer and
    the current run/span ids are attached automatically.
    """

    def __init__(self, name: str, layer: SuiteLayer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"{_ROOT_LOGGER}.{layer.value}.{name}")

        root = logging.getLogger(_ROOT_LOGGER)
        if not any(isinstance(h, StructuredHandler) for h in root.handlers):
            configure_logging()

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
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def generate_correlation_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    return correlation_id_var.set(correlation_id)


_tracer: Optional[Tracer] = None


def get_tracer() -> Tracer:
    """Get the global tracer instance."""
    global _tracer
    if _tracer is None:
        _tracer = Tracer()
    return _tracer


def get_logger(name: str, layer: SuiteLayer) -> SuiteLogger:
    return SuiteLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: SuiteLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging a top-level flow."""
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
