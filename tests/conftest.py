"""
trace-agent - Test Configuration

Pytest fixtures shared by all tests.
"""
import threading
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest

from trace_agent.config import DEFAULT_PLUGINS, resolve_config
from trace_agent.di.container import (
    Subsystem,
    SubsystemHandle,
    SubsystemRegistry,
    reset_published_agent,
)
from trace_agent.observability.propagation import create_mechanism

# Switches every built-in instrumentor off
NO_PLUGINS: Dict[str, Any] = {name: None for name in DEFAULT_PLUGINS}


class FakeWriter:
    """Trace writer double whose initialization the test completes by hand."""

    instances: List["FakeWriter"] = []

    def __init__(self, logger: Any, config: Any) -> None:
        self.logger = logger
        self.config = config
        self.callback = None
        self.stopped = False
        self.tracer_provider = None
        FakeWriter.instances.append(self)

    def initialize(self, callback) -> None:
        self.callback = callback

    def complete(self, error: Optional[BaseException] = None) -> None:
        self.callback(error)

    def stop(self) -> None:
        self.stopped = True

    def is_active(self) -> bool:
        return self.callback is not None and not self.stopped

    def get_tracer(self, name: str, version: str = "1.0.0"):
        from opentelemetry import trace

        return trace.NoOpTracer()


class FakePluginLoader:
    """Plugin loader double recording activate/deactivate."""

    def __init__(self, logger: Any, config: Any, tracer_provider: Any = None) -> None:
        self.config = config
        self.active = False
        self.deactivations = 0

    def activate(self) -> None:
        self.active = True

    def deactivate(self) -> None:
        self.active = False
        self.deactivations += 1

    def is_active(self) -> bool:
        return self.active


@pytest.fixture(autouse=True)
def _isolate_published_agent():
    """Empty the process-wide agent slot around every test."""
    reset_published_agent()
    FakeWriter.instances = []
    yield
    reset_published_agent()


@pytest.fixture
def environ() -> Dict[str, str]:
    """Empty environment snapshot."""
    return {}


@pytest.fixture
def mock_logger():
    """Mock structlog logger."""
    return Mock()


@pytest.fixture
def logger_factory(mock_logger):
    """Logger factory handing out ``mock_logger``."""
    return Mock(return_value=mock_logger)


@pytest.fixture
def config_factory(environ):
    """Resolve a configuration against the test environment."""

    def _make(**overrides):
        return resolve_config(overrides, environ=environ)

    return _make


@pytest.fixture
def fake_registry():
    """Registry with the real propagation mechanisms and fake writer/loader."""
    return SubsystemRegistry({
        Subsystem.PROPAGATION: SubsystemHandle(
            "propagation", create_mechanism, teardown=lambda m: m.disable()
        ),
        Subsystem.TRACE_WRITER: SubsystemHandle(
            "trace_writer", FakeWriter, teardown=lambda w: w.stop()
        ),
        Subsystem.PLUGIN_LOADER: SubsystemHandle(
            "plugin_loader", FakePluginLoader, teardown=lambda p: p.deactivate()
        ),
    })


@pytest.fixture
def wait_for():
    """Poll ``predicate`` until it holds or ``timeout`` expires."""

    def _wait(predicate, timeout: float = 5.0) -> bool:
        event = threading.Event()
        deadline = timeout
        step = 0.01
        while deadline > 0:
            if predicate():
                return True
            event.wait(step)
            deadline -= step
        return predicate()

    return _wait
