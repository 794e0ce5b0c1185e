"""
trace-agent - Distributed Tracing Agent

Process-wide tracing agent: once started it records spans across
asynchronous call boundaries and ships them to a collection backend.

Import this package as early as possible, ideally before any library that
should be traced. Packages imported before it are reported once at start.

Usage:
    import trace_agent

    agent = trace_agent.start({"project_id": "my-project"})
    assert trace_agent.get() is agent

    # Restart with a different configuration
    trace_agent.start({"log_level": 4, "force_new": True})

To start the agent before the application is imported at all, run it
through the preload hook:

    trace-agent run -- python app.py
"""
import sys

from trace_agent.core.diagnostics import PreloadDiagnostic

# Must run before the agent's own dependencies are imported below
_diagnostic = PreloadDiagnostic.capture()

from pathlib import Path  # noqa: E402
from typing import Any, Mapping, Optional  # noqa: E402

from trace_agent.config import ResolvedConfig, resolve_config  # noqa: E402
from trace_agent.core.bootstrap import AgentController, LifecycleEvent, default_registry  # noqa: E402
from trace_agent.core.errors import (  # noqa: E402
    AlreadyStartedError,
    ConfigurationError,
    TraceAgentError,
)
from trace_agent.core.selector import RuntimeCapability, needs_eager_hooks  # noqa: E402
from trace_agent.di.container import published_agent  # noqa: E402
from trace_agent.observability.propagation import install_thread_hooks  # noqa: E402
from trace_agent.observability.tracing import LifecycleState, TraceAgent  # noqa: E402

__version__ = "1.0.0"

AGENT_NAME = "Custom Trace API"

if needs_eager_hooks(RuntimeCapability.detect()):
    install_thread_hooks()

_registry = default_registry()
_agent = TraceAgent(AGENT_NAME, _registry)
_controller = AgentController(_agent, _registry, diagnostic=_diagnostic)


def start(config: Optional[Mapping[str, Any]] = None) -> TraceAgent:
    """
    Start the agent.

    Never raises for bad configuration or failing subsystems; inspect
    ``is_active()`` on the returned handle instead.

    Raises:
        AlreadyStartedError: the agent is running and ``force_new`` is not set
    """
    return _controller.start(config)


def get() -> TraceAgent:
    """The agent handle, whether or not it has been started."""
    return _agent


def stop() -> None:
    """Stop the agent and all of its subsystems. Safe to call repeatedly."""
    _controller.stop()


def get_published() -> Optional[TraceAgent]:
    """The last successfully activated agent, or None."""
    return published_agent()


def _loaded_by_preload() -> bool:
    preload = sys.modules.get("sitecustomize")
    location = getattr(preload, "__file__", None)
    if not location:
        return False
    from trace_agent.preload import PRELOAD_DIR

    return Path(location).resolve().parent == PRELOAD_DIR


if _loaded_by_preload():
    start()


__all__ = [
    "AGENT_NAME",
    "AlreadyStartedError",
    "ConfigurationError",
    "LifecycleEvent",
    "LifecycleState",
    "ResolvedConfig",
    "TraceAgent",
    "TraceAgentError",
    "get",
    "get_published",
    "resolve_config",
    "start",
    "stop",
]
