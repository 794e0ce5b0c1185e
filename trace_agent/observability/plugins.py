"""
trace-agent - Instrumentation Plugin Loader

Activates the OpenTelemetry instrumentors named in the ``plugins`` map.

Each entry maps a plugin name to ``"module:Attribute"``, the import path of
an instrumentor class (anything with ``instrument(**kwargs)`` and
``uninstrument()``). Instrumentors whose module cannot be imported are
skipped: the target library or its instrumentation package is simply not
installed in this process.
"""
from __future__ import annotations

import importlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from trace_agent.config import ResolvedConfig


@dataclass
class PluginSpec:
    """A parsed plugin map entry."""

    name: str
    module: str
    attribute: str

    @classmethod
    def parse(cls, name: str, target: str) -> "PluginSpec":
        module, sep, attribute = target.partition(":")
        if not sep or not module or not attribute:
            raise ValueError(
                f"Plugin {name!r} must be given as 'module:Attribute', got {target!r}"
            )
        return cls(name=name, module=module, attribute=attribute)


class PluginLoader:
    """
    Instruments third-party libraries for the active agent.

    Usage:
        loader = PluginLoader(logger, config, tracer_provider=writer.tracer_provider)
        loader.activate()
        ...
        loader.deactivate()
    """

    def __init__(
        self,
        logger: Any,
        config: ResolvedConfig,
        tracer_provider: Optional[Any] = None,
    ) -> None:
        self._logger = logger
        self._config = config
        self._tracer_provider = tracer_provider
        self._specs = [PluginSpec.parse(name, target) for name, target in config.plugins.items()]
        self._active: Dict[str, Any] = {}
        self._activated = False

    @property
    def plugin_names(self) -> List[str]:
        return [spec.name for spec in self._specs]

    @property
    def instrumented(self) -> List[str]:
        return sorted(self._active)

    def is_active(self) -> bool:
        return self._activated

    def activate(self) -> None:
        """Instrument every available plugin. Idempotent."""
        if self._activated:
            return
        self._activated = True
        for spec in self._specs:
            instrumentor = self._load(spec)
            if instrumentor is None:
                continue
            kwargs: Dict[str, Any] = {}
            if self._tracer_provider is not None:
                kwargs["tracer_provider"] = self._tracer_provider
            instrumentor.instrument(**kwargs)
            if not getattr(instrumentor, "is_instrumented_by_opentelemetry", True):
                # already instrumented elsewhere, or its library version is unsupported
                self._logger.warning("Plugin not instrumented", plugin=spec.name)
                continue
            self._active[spec.name] = instrumentor
            self._logger.info("Plugin activated", plugin=spec.name)

    def _load(self, spec: PluginSpec) -> Optional[Any]:
        try:
            module = importlib.import_module(spec.module)
        except ImportError as e:
            self._logger.debug("Plugin not available", plugin=spec.name, reason=str(e))
            return None
        target = getattr(module, spec.attribute)
        return target() if isinstance(target, type) else target

    def deactivate(self) -> None:
        """Uninstrument everything this loader instrumented. Idempotent."""
        if not self._activated:
            return
        self._activated = False
        for name, instrumentor in list(self._active.items()):
            try:
                instrumentor.uninstrument()
            except Exception as e:
                self._logger.warning("Plugin deactivation failed", plugin=name, error=str(e))
        self._active.clear()
