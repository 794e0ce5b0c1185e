"""
trace-agent - Error Taxonomy

Errors raised or reported by the agent bootstrap.

Two channels are kept apart:
- ``AlreadyStartedError`` is raised to the caller (misuse of ``start``)
- every other ``TraceAgentError`` is produced inside the controller, logged
  and converted into a disabled agent; it never escapes ``start``
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode


class ErrorSeverity(Enum):
    """Error severity levels."""

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TraceAgentError(Exception):
    """
    Base exception for all agent errors.

    Provides:
    - Error code and severity
    - Chained cause
    - OpenTelemetry span recording
    """

    default_severity: ErrorSeverity = ErrorSeverity.ERROR
    error_code: str = "TRACE_AGENT_ERROR"

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.component = component
        self.severity = severity or self.default_severity
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        self._record_to_span()

    def _record_to_span(self) -> None:
        """Record exception to current OpenTelemetry span."""
        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_status(Status(StatusCode.ERROR, self.message))
            span.record_exception(self)
            span.set_attribute("error.code", self.error_code)
            span.set_attribute("error.severity", self.severity.value)
            if self.component:
                span.set_attribute("error.component", self.component)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "component": self.component,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.component:
            parts.append(f" (component: {self.component})")
        if self.cause:
            parts.append(f" [caused by: {self.cause}]")
        return "".join(parts)


class ConfigurationError(TraceAgentError):
    """Malformed config file or structurally invalid resolved field."""

    error_code = "CONFIG_ERROR"
    default_severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Any = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("component", "config")
        super().__init__(message, **kwargs)
        self.config_key = config_key
        self.actual_value = actual_value


class AlreadyStartedError(TraceAgentError):
    """``start`` called on an active agent without ``force_new``."""

    error_code = "ALREADY_STARTED"

    def __init__(self, message: str = "Cannot call start on an already started agent.", **kwargs: Any):
        kwargs.setdefault("component", "bootstrap")
        super().__init__(message, **kwargs)


class SubsystemConstructionError(TraceAgentError):
    """An exception raised while creating or enabling a subsystem."""

    error_code = "SUBSYSTEM_ERROR"

    def __init__(self, message: str, subsystem: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("component", subsystem)
        super().__init__(message, **kwargs)
        self.subsystem = subsystem


class AsyncInitializationError(TraceAgentError):
    """Failure reported by the trace writer after ``start`` returned."""

    error_code = "ASYNC_INIT_ERROR"

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("component", "trace_writer")
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


class SubsystemNotCreatedError(TraceAgentError):
    """``get`` called on a subsystem handle that holds no instance."""

    error_code = "SUBSYSTEM_NOT_CREATED"
    default_severity = ErrorSeverity.WARNING


def as_agent_error(error: BaseException, subsystem: Optional[str] = None) -> TraceAgentError:
    """Wrap a foreign exception raised during bring-up."""
    if isinstance(error, TraceAgentError):
        return error
    return SubsystemConstructionError(str(error), subsystem=subsystem, cause=error)
