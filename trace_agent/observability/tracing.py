"""
trace-agent - Agent Handle

The public agent object handed to the embedding process. It is created once
per process and mutated in place by the lifecycle controller across
start/stop cycles; only the controller calls ``enable`` / ``disable``.

Usage:
    import trace_agent

    agent = trace_agent.start({"project_id": "my-project"})
    with agent.create_span("checkout", attributes={"cart.size": 3}) as span:
        ...
"""
from __future__ import annotations

import functools
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

from opentelemetry import trace
from opentelemetry.trace import SpanKind

from trace_agent.config import ResolvedConfig
from trace_agent.di.container import SubsystemRegistry

T = TypeVar("T")

_NOOP_TRACER = trace.NoOpTracer()


class LifecycleState(Enum):
    """Lifecycle of the agent handle."""

    DISABLED = "disabled"
    ENABLING = "enabling"
    ACTIVE = "active"


class TraceAgent:
    """Process-wide agent handle."""

    def __init__(self, name: str, registry: SubsystemRegistry) -> None:
        self.name = name
        self._registry = registry
        self._state = LifecycleState.DISABLED
        self._logger: Any = None
        self._config: Optional[ResolvedConfig] = None

    # -------------------------------------------------------------------------
    # Lifecycle (controller only)
    # -------------------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    def is_active(self) -> bool:
        return self._state is LifecycleState.ACTIVE

    def mark_enabling(self) -> None:
        self._state = LifecycleState.ENABLING

    def enable(self, logger: Any, config: ResolvedConfig) -> None:
        """Bind logger and configuration and become active."""
        self._logger = logger
        self._config = config
        self._state = LifecycleState.ACTIVE

    def disable(self) -> None:
        """Become inactive. Logger and config stay bound for inspection."""
        self._state = LifecycleState.DISABLED

    @property
    def config(self) -> Optional[ResolvedConfig]:
        return self._config

    @property
    def logger(self) -> Any:
        return self._logger

    # -------------------------------------------------------------------------
    # Span helpers
    # -------------------------------------------------------------------------

    @property
    def tracer(self) -> trace.Tracer:
        """Tracer bound to the trace writer, or a no-op tracer when inactive."""
        writer = self._registry.trace_writer.peek()
        if not self.is_active() or writer is None:
            return _NOOP_TRACER
        return writer.get_tracer(self.name)

    def current_context(self) -> Any:
        """The propagated trace context of the current execution, if any."""
        mechanism = self._registry.propagation.peek()
        if not self.is_active() or mechanism is None:
            return None
        return mechanism.get_context()

    @contextmanager
    def create_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Iterator[Any]:
        """
        Context manager recording a span while the agent is active.

        A span opened with no propagated context becomes the context for
        everything run inside it.

        Example:
            >>> with agent.create_span("load_user", attributes={"user.id": uid}) as span:
            ...     span.set_attribute("user.found", True)
        """
        mechanism = self._registry.propagation.peek()
        with self.tracer.start_as_current_span(name, kind=kind) as span:
            if attributes:
                for key, value in attributes.items():
                    self.set_attribute(span, key, value)

            token = None
            if mechanism is not None and self.is_active() and mechanism.get_context() is None:
                token = mechanism.enter(span)
            try:
                yield span
            finally:
                if token is not None:
                    mechanism.exit(token)

    def set_attribute(self, span: Any, key: str, value: Any) -> None:
        """Set a span attribute, truncating values to the label size bound."""
        if value is None:
            return
        limit = self._config.maximum_label_value_size if self._config else None
        if isinstance(value, str):
            span.set_attribute(key, value[:limit] if limit else value)
        elif isinstance(value, (bool, int, float)):
            span.set_attribute(key, value)
        else:
            text = str(value)
            span.set_attribute(key, text[:limit] if limit else text)

    def wrap(self, fn: Callable[..., T]) -> Callable[..., T]:
        """Bind ``fn`` to the current trace context for later execution."""
        mechanism = self._registry.propagation.peek()
        if not self.is_active() or mechanism is None:
            return fn
        bound = mechanism.bind(fn)
        return functools.wraps(fn)(bound)
