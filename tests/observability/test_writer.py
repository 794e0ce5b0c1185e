"""
Tests for trace_agent/observability/writer.py - Trace Writer.

Covers:
- Resource construction from the service context
- Asynchronous initialization and its single callback
- Project id resolution and fallback
- Initialization timeout
- Idempotent stop
"""
import threading
from unittest.mock import Mock, patch

import pytest
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION

from trace_agent.config import ResolvedConfig, ServiceContext
from trace_agent.core.errors import AsyncInitializationError, ConfigurationError
from trace_agent.observability.writer import ENV_FALLBACK_PROJECT, TraceWriter, build_resource


class CallbackRecorder:
    """Collects writer callback invocations."""

    def __init__(self):
        self.calls = []
        self.event = threading.Event()

    def __call__(self, error):
        self.calls.append(error)
        self.event.set()

    def wait(self, timeout=5.0):
        assert self.event.wait(timeout), "writer callback did not fire"
        return self.calls[0]


@pytest.fixture
def recorder():
    return CallbackRecorder()


@pytest.fixture
def make_writer():
    writers = []

    def _make(**fields):
        fields.setdefault("exporter", "none")
        writer = TraceWriter(Mock(), ResolvedConfig(**fields))
        writers.append(writer)
        return writer

    yield _make
    for writer in writers:
        writer.stop()


class TestBuildResource:
    """Tests for build_resource."""

    def test_service_context_attributes(self):
        config = ResolvedConfig(
            service_context=ServiceContext(service="api", version="v3", minor_version="99"),
        )

        attributes = build_resource(config, "my-project").attributes

        assert attributes[SERVICE_NAME] == "api"
        assert attributes[SERVICE_VERSION] == "v3"
        assert attributes["service.minor_version"] == "99"
        assert attributes["cloud.account.id"] == "my-project"

    def test_unknown_service(self):
        attributes = build_resource(ResolvedConfig()).attributes

        assert attributes[SERVICE_NAME] == "unknown_service"
        assert "cloud.account.id" not in attributes


class TestTraceWriter:
    """Tests for TraceWriter."""

    def test_unknown_exporter_rejected(self):
        with pytest.raises(ValueError, match="zipkin"):
            TraceWriter(Mock(), ResolvedConfig(exporter="zipkin"))

    def test_initialize_success(self, make_writer, recorder):
        writer = make_writer(project_id="my-project")

        writer.initialize(recorder)

        assert recorder.wait() is None
        assert writer.is_active() is True
        assert writer.project_id == "my-project"

    def test_project_id_from_environment_fallback(self, make_writer, recorder, monkeypatch):
        monkeypatch.setenv(ENV_FALLBACK_PROJECT, "fallback-project")
        writer = make_writer()

        writer.initialize(recorder)

        assert recorder.wait() is None
        assert writer.project_id == "fallback-project"

    def test_missing_project_id_reported(self, make_writer, recorder, monkeypatch):
        monkeypatch.delenv(ENV_FALLBACK_PROJECT, raising=False)
        writer = make_writer()

        writer.initialize(recorder)

        error = recorder.wait()
        assert isinstance(error, ConfigurationError)
        assert error.config_key == "project_id"
        assert writer.is_active() is False

    def test_otlp_exporter_configuration(self, make_writer, recorder):
        with patch("trace_agent.observability.writer.OTLPSpanExporter") as exporter_cls, \
                patch("trace_agent.observability.writer.BatchSpanProcessor") as processor_cls:
            writer = make_writer(
                project_id="p",
                exporter="otlp",
                exporter_endpoint="http://collector:4317",
                buffer_size=100,
                flush_delay_seconds=2,
            )
            writer.initialize(recorder)
            assert recorder.wait() is None

        exporter_cls.assert_called_once_with(endpoint="http://collector:4317", insecure=True)
        processor_cls.assert_called_once_with(
            exporter_cls.return_value,
            max_queue_size=100,
            schedule_delay_millis=2000,
            max_export_batch_size=100,
        )

    def test_timeout_reported_once(self, make_writer, recorder):
        release = threading.Event()
        writer = make_writer(project_id="p", initialization_timeout=0.05)

        def slow_project_id():
            release.wait(5)
            return "p"

        with patch.object(writer, "_resolve_project_id", side_effect=slow_project_id):
            writer.initialize(recorder)
            error = recorder.wait()
            release.set()

        assert isinstance(error, AsyncInitializationError)
        assert error.timeout_seconds == 0.05
        writer.stop()
        assert recorder.calls == [error]

    def test_failure_after_stop_not_reported(self, make_writer, recorder):
        release = threading.Event()
        finished = threading.Event()
        writer = make_writer(project_id="p", initialization_timeout=0)
        fire = writer._fire

        def failing_project_id():
            release.wait(5)
            raise RuntimeError("collector unreachable")

        def fire_and_signal(callback, error):
            fire(callback, error)
            finished.set()

        with patch.object(writer, "_resolve_project_id", side_effect=failing_project_id), \
                patch.object(writer, "_fire", side_effect=fire_and_signal):
            writer.initialize(recorder)
            writer.stop()
            release.set()
            assert finished.wait(5)

        assert recorder.calls == []

    def test_stop_idempotent(self, make_writer):
        writer = make_writer(project_id="p")

        writer.stop()
        writer.stop()

        assert writer.is_active() is False

    def test_stop_failure_logged(self, make_writer):
        writer = make_writer(project_id="p")

        with patch.object(writer.tracer_provider, "shutdown", side_effect=RuntimeError("flush")):
            writer.stop()

        writer._logger.warning.assert_called_once()

    def test_tracer_records_spans(self, make_writer):
        writer = make_writer(project_id="p")

        with writer.get_tracer("test").start_as_current_span("op") as span:
            assert span.is_recording() is True
