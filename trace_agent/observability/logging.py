"""
trace-agent - Structured Logging with Trace Context

The agent's logging sink: structlog loggers filtered at the configured
agent log level, rendering onto a stdlib logger named ``trace_agent``.

Usage:
    from trace_agent.observability.logging import create_logger

    logger = create_logger(level=3)
    logger.info("TraceAgent#start: Trace Agent activated.", project_id="my-project")
"""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from structlog.types import EventDict, WrappedLogger

from trace_agent.core.types import AGENT_TAG, LOG_LEVELS

# Agent level index -> stdlib level. "silent" filters at CRITICAL; the agent
# itself never logs at that level.
STDLIB_LEVELS = (
    logging.CRITICAL,
    logging.ERROR,
    logging.WARNING,
    logging.INFO,
    logging.DEBUG,
)


@dataclass
class LoggingConfig:
    """Configuration for the agent logger."""

    tag: str = AGENT_TAG
    level: int = 1
    json_format: bool = field(
        default_factory=lambda: os.getenv("TRACE_AGENT_LOG_FORMAT", "json").lower() == "json"
    )
    enable_trace_context: bool = True


def stdlib_level(level: int) -> int:
    """Map an agent log-level index onto a stdlib logging level."""
    level = max(0, min(level, len(LOG_LEVELS) - 1))
    return STDLIB_LEVELS[level]


def add_trace_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """
    Structlog processor that adds OpenTelemetry trace context to log events.

    Adds trace_id and span_id from the current span context so agent
    messages emitted inside a traced request can be correlated with it.
    """
    from opentelemetry import trace

    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        if ctx.is_valid:
            event_dict["trace_id"] = format(ctx.trace_id, "032x")
            event_dict["span_id"] = format(ctx.span_id, "016x")

    return event_dict


def add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add ISO8601 timestamp."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def format_exception(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Format exception information for structured output."""
    exc_info = event_dict.pop("exc_info", None)
    if exc_info:
        if isinstance(exc_info, tuple):
            event_dict["exception"] = {
                "type": exc_info[0].__name__ if exc_info[0] else None,
                "message": str(exc_info[1]) if exc_info[1] else None,
            }
        elif isinstance(exc_info, BaseException):
            event_dict["exception"] = {
                "type": type(exc_info).__name__,
                "message": str(exc_info),
            }
    return event_dict


def build_processors(config: LoggingConfig) -> list[structlog.types.Processor]:
    """Processor chain shared by every agent logger."""
    processors: list[structlog.types.Processor] = [
        structlog.processors.add_log_level,
        add_timestamp,
    ]

    if config.enable_trace_context:
        processors.append(add_trace_context)

    processors.append(format_exception)
    processors.append(structlog.processors.UnicodeDecoder())

    if config.json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    return processors


def _stdlib_sink(config: LoggingConfig) -> logging.Logger:
    """The stdlib logger agent messages end up on."""
    sink = logging.getLogger(config.tag)
    sink.setLevel(stdlib_level(config.level))
    if not sink.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        sink.addHandler(handler)
        sink.propagate = False
    return sink


def create_logger(
    level: int,
    tag: str = AGENT_TAG,
    sink: Optional[Any] = None,
    json_format: Optional[bool] = None,
) -> structlog.types.FilteringBoundLogger:
    """
    Create a logger scoped to an agent log level.

    Args:
        level: Agent log-level index (0 silent .. 4 debug)
        tag: Bound to every message and used as the stdlib logger name
        sink: Underlying logger; the ``tag`` stdlib logger when omitted
        json_format: Override ``TRACE_AGENT_LOG_FORMAT``

    Example:
        >>> logger = create_logger(level=1)
        >>> logger.error("TraceAgent#start: Disabling the Trace Agent", reason="bad config")
    """
    config = LoggingConfig(tag=tag, level=level)
    if json_format is not None:
        config.json_format = json_format

    wrapped = sink if sink is not None else _stdlib_sink(config)
    return structlog.wrap_logger(
        wrapped,
        processors=build_processors(config),
        wrapper_class=structlog.make_filtering_bound_logger(stdlib_level(level)),
        context_class=dict,
    ).bind(tag=tag)
