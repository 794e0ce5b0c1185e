"""
trace-agent - Agent Lifecycle Controller

Brings the agent up and down.

``start`` resolves the configuration and then creates and enables the
subsystems in dependency order:

    propagation -> trace writer -> agent handle -> plugin loader

``stop`` tears them down in reverse order and is safe to call at any time.
Faults raised while bringing subsystems up are contained here: they are
logged, the partial bring-up is rolled back and the caller gets a disabled
handle back. The only error ``start`` raises is ``AlreadyStartedError``.

Usage:
    controller = AgentController(agent, default_registry())
    agent = controller.start({"project_id": "my-project"})
    ...
    controller.stop()
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from trace_agent.config import DEFAULT_CONFIG, FORCE_NEW, ResolvedConfig, resolve_config
from trace_agent.core.diagnostics import PreloadDiagnostic
from trace_agent.core.errors import (
    AlreadyStartedError,
    AsyncInitializationError,
    ConfigurationError,
    TraceAgentError,
    as_agent_error,
)
from trace_agent.core.selector import RuntimeCapability, select_mechanism
from trace_agent.di.container import (
    Subsystem,
    SubsystemHandle,
    SubsystemRegistry,
    publish_agent,
)
from trace_agent.observability.logging import create_logger
from trace_agent.observability.plugins import PluginLoader
from trace_agent.observability.propagation import create_mechanism
from trace_agent.observability.tracing import LifecycleState, TraceAgent
from trace_agent.observability.writer import TraceWriter

LoggerFactory = Callable[[int], Any]

ACTIVATED_MESSAGE = "TraceAgent#start: Trace Agent activated."
DISABLING_MESSAGE = "TraceAgent#start: Disabling the Trace Agent for the following reason"


@dataclass(frozen=True)
class LifecycleEvent:
    """Record of one bring-up or teardown step."""

    component: str
    success: bool
    duration_ms: float
    timestamp: float = field(default_factory=time.time)
    error: Optional[str] = None
    error_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success_event(
        cls,
        component: str,
        duration_ms: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "LifecycleEvent":
        return cls(
            component=component,
            success=True,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    @classmethod
    def failure_event(
        cls,
        component: str,
        error: BaseException,
        duration_ms: float = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "LifecycleEvent":
        return cls(
            component=component,
            success=False,
            duration_ms=duration_ms,
            error=str(error),
            error_type=type(error).__name__,
            metadata=metadata or {},
        )


def default_registry() -> SubsystemRegistry:
    """Registry wired to the built-in subsystem implementations."""
    return SubsystemRegistry({
        Subsystem.PROPAGATION: SubsystemHandle(
            Subsystem.PROPAGATION.value,
            create_mechanism,
            teardown=lambda mechanism: mechanism.disable(),
        ),
        Subsystem.TRACE_WRITER: SubsystemHandle(
            Subsystem.TRACE_WRITER.value,
            TraceWriter,
            teardown=lambda writer: writer.stop(),
        ),
        Subsystem.PLUGIN_LOADER: SubsystemHandle(
            Subsystem.PLUGIN_LOADER.value,
            PluginLoader,
            teardown=lambda loader: loader.deactivate(),
        ),
    })


class AgentController:
    """
    Owns the lifecycle of one agent handle and its subsystems.

    Start and stop are expected to be called from one thread at a time; the
    only concurrent entry is the trace writer's initialization callback.
    """

    def __init__(
        self,
        agent: TraceAgent,
        registry: SubsystemRegistry,
        logger_factory: LoggerFactory = create_logger,
        diagnostic: Optional[PreloadDiagnostic] = None,
        capability: Optional[RuntimeCapability] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.agent = agent
        self.registry = registry
        self._logger_factory = logger_factory
        self._diagnostic = diagnostic
        self._capability = capability
        self._environ = environ
        self._logger: Any = None
        self._lock = threading.Lock()
        self._starting = False
        self._pending_error: Optional[TraceAgentError] = None
        self._current_writer: Any = None
        self._events: List[LifecycleEvent] = []

    @property
    def events(self) -> Tuple[LifecycleEvent, ...]:
        return tuple(self._events)

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    def start(self, raw: Optional[Mapping[str, Any]] = None) -> TraceAgent:
        """
        Start the agent.

        Args:
            raw: Caller configuration. ``force_new`` replaces an active agent.

        Returns:
            The agent handle, active on success and disabled otherwise

        Raises:
            AlreadyStartedError: the agent is active and ``force_new`` is not set
        """
        if self.agent.is_active():
            force_new = isinstance(raw, Mapping) and bool(raw.get(FORCE_NEW, False))
            if not force_new:
                raise AlreadyStartedError()
            self.stop()

        try:
            config = resolve_config(raw, self._environ)
        except Exception as e:
            error = as_agent_error(e, subsystem="config")
            self._record(LifecycleEvent.failure_event("config", error))
            self._fallback_logger().error(DISABLING_MESSAGE, reason=error.message)
            return self.agent

        if not config.enabled:
            return self.agent

        logger = self._logger_factory(config.log_level)
        self._logger = logger
        for issue in config.issues:
            logger.warning("TraceAgent#start: Ignoring configuration option", issue=issue)
        self._report_preloaded_modules(logger)

        with self._lock:
            self._starting = True
            self._pending_error = None
        self.agent.mark_enabling()

        error = self._bring_up(logger, config)
        if error is None:
            error = self._validate(config)

        with self._lock:
            self._starting = False
            pending, self._pending_error = self._pending_error, None
        if error is None:
            error = pending

        if error is not None:
            logger.error(DISABLING_MESSAGE, reason=error.message, error_code=error.error_code)
            self.stop()
            return self.agent

        publish_agent(self.agent)
        logger.info(ACTIVATED_MESSAGE)
        return self.agent

    def _bring_up(self, logger: Any, config: ResolvedConfig) -> Optional[TraceAgentError]:
        steps: List[Tuple[str, Callable[[], None]]] = [
            (Subsystem.PROPAGATION.value, lambda: self._enable_propagation(logger, config)),
            (Subsystem.TRACE_WRITER.value, lambda: self._start_writer(logger, config)),
            ("agent", lambda: self.agent.enable(logger, config)),
            (Subsystem.PLUGIN_LOADER.value, lambda: self._activate_plugins(logger, config)),
        ]
        for component, step in steps:
            started = time.perf_counter()
            try:
                step()
            except Exception as e:
                error = as_agent_error(e, subsystem=component)
                self._record(LifecycleEvent.failure_event(
                    component, error, duration_ms=(time.perf_counter() - started) * 1000,
                ))
                return error
            self._record(LifecycleEvent.success_event(
                component, (time.perf_counter() - started) * 1000,
            ))
        return None

    def _enable_propagation(self, logger: Any, config: ResolvedConfig) -> None:
        capability = self._capability or RuntimeCapability.detect(self._environ)
        mechanism_id = select_mechanism(config, capability)
        self.registry.propagation.create(logger, mechanism_id).enable()

    def _start_writer(self, logger: Any, config: ResolvedConfig) -> None:
        writer = self.registry.trace_writer.create(logger, config)
        with self._lock:
            self._current_writer = writer
        writer.initialize(lambda error: self._on_writer_initialized(writer, error))

    def _activate_plugins(self, logger: Any, config: ResolvedConfig) -> None:
        writer = self.registry.trace_writer.peek()
        tracer_provider = getattr(writer, "tracer_provider", None)
        self.registry.plugin_loader.create(logger, config, tracer_provider).activate()

    def _validate(self, config: ResolvedConfig) -> Optional[TraceAgentError]:
        if config.project_id is not None and not isinstance(config.project_id, str):
            return ConfigurationError(
                "config.project_id, if provided, must be a string. Disabling trace agent.",
                config_key="project_id",
                actual_value=config.project_id,
            )
        return None

    def _on_writer_initialized(self, writer: Any, error: Optional[BaseException]) -> None:
        if error is None:
            self._record(LifecycleEvent.success_event("trace_writer.initialize", 0))
            return

        if isinstance(error, TraceAgentError):
            agent_error = error
        else:
            agent_error = AsyncInitializationError(str(error), cause=error)
        with self._lock:
            if self._current_writer is not writer:
                # stopped, or replaced by a newer start
                return
            self._record(LifecycleEvent.failure_event("trace_writer.initialize", agent_error))
            if self._starting:
                self._pending_error = agent_error
                return

        logger = self._logger or self._fallback_logger()
        logger.error(DISABLING_MESSAGE, reason=agent_error.message, error_code=agent_error.error_code)
        self.stop()

    def _report_preloaded_modules(self, logger: Any) -> None:
        if self._diagnostic is None or self._diagnostic.consumed:
            return
        packages = self._diagnostic.consume()
        if packages:
            logger.warning(self._diagnostic.message(packages), modules=packages)

    # -------------------------------------------------------------------------
    # Stop
    # -------------------------------------------------------------------------

    def stop(self) -> None:
        """Tear everything down in reverse dependency order. Never raises."""
        with self._lock:
            self._current_writer = None
        steps: List[Tuple[str, Callable[[], None]]] = []

        loader = self.registry.plugin_loader.peek()
        if loader is not None:
            steps.append((Subsystem.PLUGIN_LOADER.value, loader.deactivate))
        if self.agent.state is not LifecycleState.DISABLED:
            steps.append(("agent", self.agent.disable))
        mechanism = self.registry.propagation.peek()
        if mechanism is not None:
            steps.append((Subsystem.PROPAGATION.value, mechanism.disable))
        writer = self.registry.trace_writer.peek()
        if writer is not None:
            steps.append((Subsystem.TRACE_WRITER.value, writer.stop))

        for component, step in steps:
            try:
                step()
            except Exception as e:
                self._record(LifecycleEvent.failure_event(f"{component}.stop", e))
                (self._logger or self._fallback_logger()).warning(
                    "TraceAgent#stop: Error while stopping subsystem",
                    subsystem=component,
                    error=str(e),
                )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _fallback_logger(self) -> Any:
        return self._logger_factory(DEFAULT_CONFIG["log_level"])

    def _record(self, event: LifecycleEvent) -> None:
        self._events.append(event)
