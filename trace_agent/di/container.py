"""
trace-agent - Subsystem Registry

Lazily constructed singleton handles for the subsystems the bootstrap
drives, plus the process-wide slot the active agent is published in.

Features:
- One ``SubsystemHandle`` per subsystem with ``exists`` / ``create`` / ``get``
- ``create`` replaces the current occupant, tearing it down first
- ``get`` fails loudly when nothing has been created
- Thread-safe slot updates
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from trace_agent.core.errors import SubsystemNotCreatedError
from trace_agent.core.types import IPluginLoader, IPropagationMechanism, ITraceWriter

T = TypeVar("T")

logger = logging.getLogger("trace_agent.registry")

# Process-wide agent slot
_published_agent: Optional[Any] = None
_publish_lock = threading.Lock()


class Subsystem(Enum):
    """Subsystems in construction order."""

    PROPAGATION = "propagation"
    TRACE_WRITER = "trace_writer"
    PLUGIN_LOADER = "plugin_loader"


class SubsystemHandle(Generic[T]):
    """
    Optional-ownership slot for one lazily constructed singleton.

    Usage:
        handle = SubsystemHandle("trace_writer", TraceWriter, teardown=lambda w: w.stop())
        writer = handle.create(logger, config)
        assert handle.get() is writer
    """

    def __init__(
        self,
        name: str,
        factory: Callable[..., T],
        teardown: Optional[Callable[[T], None]] = None,
    ) -> None:
        self.name = name
        self._factory = factory
        self._teardown = teardown
        self._instance: Optional[T] = None
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self._instance is not None

    def create(self, *args: Any, **kwargs: Any) -> T:
        """Construct a new instance, replacing and tearing down any previous one."""
        with self._lock:
            previous = self._instance
            self._instance = None

        if previous is not None and self._teardown is not None:
            try:
                self._teardown(previous)
            except Exception as e:
                logger.warning(f"Teardown of previous {self.name} failed: {e}")

        instance = self._factory(*args, **kwargs)
        with self._lock:
            self._instance = instance
        logger.debug(f"Created {self.name}: {type(instance).__name__}")
        return instance

    def get(self) -> T:
        instance = self._instance
        if instance is None:
            raise SubsystemNotCreatedError(
                f"{self.name} has not been created",
                component=self.name,
            )
        return instance

    def peek(self) -> Optional[T]:
        """Current instance or None, without raising."""
        return self._instance

    def clear(self) -> None:
        """Drop the instance without tearing it down."""
        with self._lock:
            self._instance = None


class SubsystemRegistry:
    """
    Handles keyed by subsystem identity.

    Usage:
        registry = SubsystemRegistry({
            Subsystem.PROPAGATION: SubsystemHandle("propagation", create_mechanism),
            ...
        })
        registry[Subsystem.PROPAGATION].create(logger, mechanism_id)
    """

    def __init__(self, handles: Dict[Subsystem, SubsystemHandle[Any]]) -> None:
        missing = [s.value for s in Subsystem if s not in handles]
        if missing:
            raise ValueError(f"Registry is missing handles for: {', '.join(missing)}")
        self._handles = dict(handles)

    def __getitem__(self, subsystem: Subsystem) -> SubsystemHandle[Any]:
        return self._handles[subsystem]

    @property
    def propagation(self) -> SubsystemHandle[IPropagationMechanism]:
        return self._handles[Subsystem.PROPAGATION]

    @property
    def trace_writer(self) -> SubsystemHandle[ITraceWriter]:
        return self._handles[Subsystem.TRACE_WRITER]

    @property
    def plugin_loader(self) -> SubsystemHandle[IPluginLoader]:
        return self._handles[Subsystem.PLUGIN_LOADER]

    def clear(self) -> None:
        for handle in self._handles.values():
            handle.clear()


def publish_agent(agent: Any) -> None:
    """Make ``agent`` reachable through ``published_agent()``."""
    global _published_agent
    with _publish_lock:
        _published_agent = agent


def published_agent() -> Optional[Any]:
    """The most recently activated agent handle, or None before the first start."""
    return _published_agent


def reset_published_agent() -> None:
    """Empty the process slot. Intended for test isolation."""
    global _published_agent
    with _publish_lock:
        _published_agent = None
