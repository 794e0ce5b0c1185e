"""
trace-agent - Trace Writer

Owns the OpenTelemetry ``TracerProvider`` spans are recorded into and the
exporter that ships them.

The provider is built synchronously so spans can be recorded immediately.
``initialize`` then resolves the project id and attaches the exporter on a
background thread; spans that end before the exporter is attached are
dropped. The outcome is reported once through the callback, either as
``None``, as the failure, or as ``AsyncInitializationError`` when
initialization outlives ``initialization_timeout``.
"""
from __future__ import annotations

import os
import threading
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

from trace_agent.config import ResolvedConfig
from trace_agent.core.errors import AsyncInitializationError, ConfigurationError
from trace_agent.core.types import ErrorCallback

EXPORTERS = ("otlp", "console", "none")

ENV_FALLBACK_PROJECT = "GOOGLE_CLOUD_PROJECT"


def build_resource(config: ResolvedConfig, project_id: Optional[str] = None) -> Resource:
    """Resource attributes identifying the traced service."""
    context = config.service_context
    attributes: Dict[str, Any] = {
        SERVICE_NAME: context.service or "unknown_service",
        "telemetry.sdk.language": "python",
        "cloud.provider": "gcp",
    }
    if context.version:
        attributes[SERVICE_VERSION] = context.version
    if context.minor_version:
        attributes["service.minor_version"] = context.minor_version
    if project_id:
        attributes["cloud.account.id"] = project_id
    return Resource.create(attributes)


class TraceWriter:
    """
    Span buffering and export.

    Usage:
        writer = TraceWriter(logger, config)
        writer.initialize(lambda err: print("failed" if err else "ready"))
        ...
        writer.stop()
    """

    def __init__(self, logger: Any, config: ResolvedConfig) -> None:
        if config.exporter not in EXPORTERS:
            raise ValueError(
                f"Unknown exporter {config.exporter!r}; expected one of {list(EXPORTERS)}"
            )
        self._logger = logger
        self._config = config
        self._lock = threading.Lock()
        self._stopped = False
        self._initialized = False
        self._callback_fired = False
        self._timer: Optional[threading.Timer] = None
        self.project_id: Optional[str] = None
        known_project = config.project_id if isinstance(config.project_id, str) else None
        self.tracer_provider = TracerProvider(resource=build_resource(config, known_project))

    @property
    def config(self) -> ResolvedConfig:
        return self._config

    def get_tracer(self, name: str, version: str = "1.0.0") -> trace.Tracer:
        return self.tracer_provider.get_tracer(name, version)

    def is_active(self) -> bool:
        return self._initialized and not self._stopped

    def initialize(self, callback: ErrorCallback) -> None:
        """Start asynchronous initialization; ``callback`` fires exactly once."""
        timeout = self._config.initialization_timeout
        if timeout and timeout > 0:
            self._timer = threading.Timer(timeout, self._on_timeout, args=(callback, timeout))
            self._timer.daemon = True
            self._timer.start()

        worker = threading.Thread(
            target=self._initialize,
            args=(callback,),
            name="trace-agent-writer-init",
            daemon=True,
        )
        worker.start()

    def _initialize(self, callback: ErrorCallback) -> None:
        try:
            project_id = self._resolve_project_id()
            exporter = self._build_exporter()
            with self._lock:
                if self._stopped:
                    return
                self.project_id = project_id
                if exporter is not None:
                    self.tracer_provider.add_span_processor(self._build_processor(exporter))
                self._initialized = True
        except Exception as e:
            self._fire(callback, e)
            return
        self._logger.debug("Trace writer initialized", project_id=project_id)
        self._fire(callback, None)

    def _on_timeout(self, callback: ErrorCallback, timeout: float) -> None:
        self._fire(
            callback,
            AsyncInitializationError(
                f"Trace writer initialization did not complete within {timeout}s",
                timeout_seconds=timeout,
            ),
        )

    def _fire(self, callback: ErrorCallback, error: Optional[BaseException]) -> None:
        with self._lock:
            if self._callback_fired or self._stopped:
                return
            self._callback_fired = True
        if self._timer is not None:
            self._timer.cancel()
        callback(error)

    def _resolve_project_id(self) -> str:
        project_id = self._config.project_id
        if isinstance(project_id, str) and project_id:
            return project_id
        fallback = os.environ.get(ENV_FALLBACK_PROJECT)
        if fallback:
            return fallback
        raise ConfigurationError(
            "Unable to determine the project ID; set project_id, "
            f"GCLOUD_PROJECT or {ENV_FALLBACK_PROJECT}",
            config_key="project_id",
        )

    def _build_exporter(self) -> Optional[SpanExporter]:
        if self._config.exporter == "otlp":
            return OTLPSpanExporter(
                endpoint=self._config.exporter_endpoint,
                insecure=self._config.exporter_endpoint.startswith("http://"),
            )
        if self._config.exporter == "console":
            return ConsoleSpanExporter()
        return None

    def _build_processor(self, exporter: SpanExporter):
        if isinstance(exporter, ConsoleSpanExporter):
            return SimpleSpanProcessor(exporter)
        return BatchSpanProcessor(
            exporter,
            max_queue_size=max(self._config.buffer_size, 1),
            schedule_delay_millis=self._config.flush_delay_seconds * 1000,
            max_export_batch_size=max(min(self._config.buffer_size, 512), 1),
        )

    def stop(self) -> None:
        """Stop exporting and flush pending spans. Idempotent."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        if self._timer is not None:
            self._timer.cancel()
        try:
            self.tracer_provider.shutdown()
        except Exception as e:
            self._logger.warning("Trace writer shutdown failed", error=str(e))
