"""
trace-agent - Shared Type Definitions

Constants, type aliases and Protocol classes for the collaborators the
bootstrap drives.

Usage:
    from trace_agent.core.types import LOG_LEVELS, IPropagationMechanism
"""
from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, TypeVar, runtime_checkable

# =============================================================================
# CONSTANTS
# =============================================================================

# Hard ceiling for a single label (span attribute) value, in characters.
TRACE_SERVICE_LABEL_VALUE_LIMIT = 16 * 1024

# Index into this tuple is the numeric ``log_level`` of the configuration.
LOG_LEVELS = ("silent", "error", "warn", "info", "debug")

AGENT_TAG = "trace_agent"

# =============================================================================
# TYPE ALIASES
# =============================================================================

MechanismId = str
ErrorCallback = Callable[[Optional[BaseException]], None]

T = TypeVar("T")


# =============================================================================
# PROTOCOLS - collaborator contracts
# =============================================================================


@runtime_checkable
class IPropagationMechanism(Protocol):
    """Carries an execution-scoped context across async continuations."""

    def enable(self) -> None:
        ...

    def disable(self) -> None:
        ...

    def is_enabled(self) -> bool:
        ...

    def get_context(self) -> Any:
        ...

    def enter(self, context: Any) -> Any:
        ...

    def exit(self, token: Any) -> None:
        ...

    def run_with_context(self, fn: Callable[[], T], context: Any) -> T:
        ...

    def bind(self, fn: Callable[..., T]) -> Callable[..., T]:
        ...


@runtime_checkable
class ITraceWriter(Protocol):
    """Buffers spans and ships them to the collection backend."""

    def initialize(self, callback: ErrorCallback) -> None:
        ...

    def stop(self) -> None:
        ...

    def is_active(self) -> bool:
        ...


@runtime_checkable
class IPluginLoader(Protocol):
    """Activates instrumentation of third-party libraries."""

    def activate(self) -> None:
        ...

    def deactivate(self) -> None:
        ...

    def is_active(self) -> bool:
        ...
