"""
trace-agent - Configuration

Resolves the single, immutable configuration the agent runs with.

Sources, highest precedence first:
    1. Environment variables
    2. The configuration passed to ``start()``
    3. A configuration file named by ``GCLOUD_TRACE_CONFIG``
    4. Built-in defaults

Layers are merged field by field according to each field's declared type.
A value of the wrong type never replaces a lower layer; it is dropped and
reported in ``ResolvedConfig.issues``.
"""
from __future__ import annotations

import json
import os
import runpy
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from trace_agent.core.errors import ConfigurationError
from trace_agent.core.types import LOG_LEVELS, TRACE_SERVICE_LABEL_VALUE_LIMIT

# Environment variable names
ENV_LOG_LEVEL = "GCLOUD_TRACE_LOGLEVEL"
ENV_PROJECT = "GCLOUD_PROJECT"
ENV_CONFIG_FILE = "GCLOUD_TRACE_CONFIG"
ENV_NEW_CONTEXT = "GCLOUD_TRACE_NEW_CONTEXT"
ENV_SERVICE = ("GAE_SERVICE", "GAE_MODULE_NAME")
ENV_VERSION = ("GAE_VERSION", "GAE_MODULE_VERSION")
ENV_MINOR_VERSION = ("GAE_MINOR_VERSION",)

FORCE_NEW = "force_new"

DEFAULT_PLUGINS: Dict[str, str] = {
    "aiohttp-client": "opentelemetry.instrumentation.aiohttp_client:AioHttpClientInstrumentor",
    "fastapi": "opentelemetry.instrumentation.fastapi:FastAPIInstrumentor",
    "httpx": "opentelemetry.instrumentation.httpx:HTTPXClientInstrumentor",
    "redis": "opentelemetry.instrumentation.redis:RedisInstrumentor",
    "requests": "opentelemetry.instrumentation.requests:RequestsInstrumentor",
    "sqlalchemy": "opentelemetry.instrumentation.sqlalchemy:SQLAlchemyInstrumentor",
}

DEFAULT_CONFIG: Dict[str, Any] = {
    "enabled": True,
    "log_level": 1,
    "project_id": None,
    "service_context": {"service": None, "version": None, "minor_version": None},
    "cls_mechanism": "auto",
    "maximum_label_value_size": 512,
    "plugins": DEFAULT_PLUGINS,
    "flush_delay_seconds": 30,
    "buffer_size": 1000,
    "exporter": "otlp",
    "exporter_endpoint": "http://localhost:4317",
    "initialization_timeout": 10.0,
}

_NUMBER = (int, float)

# Declared type of every recognized option. ``object`` accepts any value and
# defers validation to the consumer (``project_id`` is checked at start).
FIELD_TYPES: Dict[str, Any] = {
    "enabled": bool,
    "log_level": int,
    "project_id": object,
    "service_context": dict,
    "cls_mechanism": str,
    "maximum_label_value_size": int,
    "plugins": dict,
    "flush_delay_seconds": _NUMBER,
    "buffer_size": int,
    "exporter": str,
    "exporter_endpoint": str,
    "initialization_timeout": _NUMBER,
}

SERVICE_CONTEXT_KEYS = ("service", "version", "minor_version")


@dataclass(frozen=True)
class ServiceContext:
    """Identifies the service the spans belong to."""

    service: Optional[str] = None
    version: Optional[str] = None
    minor_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "service": self.service,
            "version": self.version,
            "minor_version": self.minor_version,
        }


@dataclass(frozen=True)
class ResolvedConfig:
    """Immutable configuration snapshot shared by all subsystems."""

    enabled: bool = True
    log_level: int = 1
    project_id: Any = None
    service_context: ServiceContext = field(default_factory=ServiceContext)
    cls_mechanism: str = "auto"
    maximum_label_value_size: int = 512
    plugins: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    flush_delay_seconds: float = 30
    buffer_size: int = 1000
    exporter: str = "otlp"
    exporter_endpoint: str = "http://localhost:4317"
    initialization_timeout: float = 10.0
    force_new: bool = False
    issues: Tuple[str, ...] = ()

    @property
    def log_level_name(self) -> str:
        return LOG_LEVELS[self.log_level]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary for diagnostics."""
        return {
            "enabled": self.enabled,
            "log_level": self.log_level,
            "project_id": self.project_id,
            "service_context": self.service_context.to_dict(),
            "cls_mechanism": self.cls_mechanism,
            "maximum_label_value_size": self.maximum_label_value_size,
            "plugins": dict(self.plugins),
            "flush_delay_seconds": self.flush_delay_seconds,
            "buffer_size": self.buffer_size,
            "exporter": self.exporter,
            "exporter_endpoint": self.exporter_endpoint,
            "initialization_timeout": self.initialization_timeout,
            "force_new": self.force_new,
        }


def _first_env(environ: Mapping[str, str], names: Tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


def env_config(environ: Mapping[str, str], issues: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Build the environment layer.

    Variables that are unset or empty are omitted entirely so that they
    cannot override a lower-precedence value.
    """
    config: Dict[str, Any] = {}

    raw_level = environ.get(ENV_LOG_LEVEL)
    if raw_level:
        try:
            config["log_level"] = int(raw_level.strip())
        except ValueError:
            if issues is not None:
                issues.append(f"{ENV_LOG_LEVEL}={raw_level!r} is not an integer; ignored")

    project = environ.get(ENV_PROJECT)
    if project:
        config["project_id"] = project

    service_context = {
        "service": _first_env(environ, ENV_SERVICE),
        "version": _first_env(environ, ENV_VERSION),
        "minor_version": _first_env(environ, ENV_MINOR_VERSION),
    }
    service_context = {k: v for k, v in service_context.items() if v is not None}
    if service_context:
        config["service_context"] = service_context

    return config


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Load the configuration file named by ``GCLOUD_TRACE_CONFIG``.

    ``.py`` files are executed and must bind a mapping named ``config``;
    anything else is parsed as JSON.

    Raises:
        ConfigurationError: the file cannot be read or does not hold a mapping
    """
    resolved = Path(path).expanduser().resolve()
    try:
        if resolved.suffix == ".py":
            loaded = runpy.run_path(str(resolved)).get("config")
        else:
            loaded = json.loads(resolved.read_text(encoding="utf-8"))
    except Exception as e:
        raise ConfigurationError(
            f"Unable to load configuration file {resolved}: {e}",
            config_key=ENV_CONFIG_FILE,
            actual_value=str(resolved),
            cause=e,
        ) from e

    if not isinstance(loaded, Mapping):
        raise ConfigurationError(
            f"Configuration file {resolved} must define a mapping, got {type(loaded).__name__}",
            config_key=ENV_CONFIG_FILE,
            actual_value=str(resolved),
        )
    return dict(loaded)


def _accepts(expected: Any, value: Any) -> bool:
    if expected is object:
        return True
    if expected is bool:
        return isinstance(value, bool)
    if isinstance(value, bool):
        # bool is an int subclass; never let True stand in for a number
        return False
    if expected is dict:
        return isinstance(value, Mapping)
    return isinstance(value, expected)


def merge_config(
    base: Dict[str, Any],
    overlay: Mapping[str, Any],
    source: str,
    issues: List[str],
) -> Dict[str, Any]:
    """
    Overlay ``overlay`` onto ``base`` field by field.

    Returns a new dictionary; neither argument is modified. Foreign-typed and
    unknown options are skipped and described in ``issues``.
    """
    merged = dict(base)
    for key, value in overlay.items():
        if key == FORCE_NEW:
            continue
        if key not in FIELD_TYPES:
            issues.append(f"{source}: unknown option {key!r} ignored")
            continue
        if value is None:
            continue
        expected = FIELD_TYPES[key]
        if not _accepts(expected, value):
            issues.append(
                f"{source}: option {key!r} has type {type(value).__name__}; ignored"
            )
            continue

        if key == "service_context":
            current = dict(merged.get(key) or {})
            for name, item in value.items():
                if name not in SERVICE_CONTEXT_KEYS:
                    issues.append(f"{source}: unknown service_context key {name!r} ignored")
                elif item is not None:
                    current[name] = str(item)
            merged[key] = current
        elif key == "plugins":
            current = dict(merged.get(key) or {})
            for name, target in value.items():
                if isinstance(target, str):
                    current[str(name)] = target
                elif target is None:
                    # explicit None switches a lower-layer plugin off
                    current.pop(str(name), None)
                else:
                    issues.append(f"{source}: plugin {name!r} must name a module; ignored")
            merged[key] = current
        else:
            merged[key] = value
    return merged


def _clamp(config: Dict[str, Any]) -> None:
    if config["maximum_label_value_size"] > TRACE_SERVICE_LABEL_VALUE_LIMIT:
        config["maximum_label_value_size"] = TRACE_SERVICE_LABEL_VALUE_LIMIT

    if config["log_level"] < 0:
        config["log_level"] = 0
    elif config["log_level"] >= len(LOG_LEVELS):
        config["log_level"] = len(LOG_LEVELS) - 1


def resolve_config(
    raw: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ResolvedConfig:
    """
    Merge defaults, config file, caller config and environment.

    Args:
        raw: The caller-supplied configuration. It is not modified.
        environ: Environment snapshot; ``os.environ`` when omitted.

    Raises:
        ConfigurationError: the configuration file is unreadable or malformed
    """
    environ = os.environ if environ is None else environ
    issues: List[str] = []

    if raw is None:
        raw = {}
    elif not isinstance(raw, Mapping):
        issues.append(f"start() config has type {type(raw).__name__}; ignored")
        raw = {}

    file_config: Dict[str, Any] = {}
    config_path = environ.get(ENV_CONFIG_FILE)
    if config_path:
        file_config = load_config_file(config_path)
        if FORCE_NEW in file_config:
            issues.append(f"{ENV_CONFIG_FILE}: option {FORCE_NEW!r} is only honored from start()")

    merged = merge_config(DEFAULT_CONFIG, file_config, "config file", issues)
    merged = merge_config(merged, raw, "start() config", issues)
    merged = merge_config(merged, env_config(environ, issues), "environment", issues)
    _clamp(merged)

    service_context = ServiceContext(**merged.pop("service_context"))
    plugins = MappingProxyType(dict(merged.pop("plugins")))

    return ResolvedConfig(
        service_context=service_context,
        plugins=plugins,
        force_new=bool(raw.get(FORCE_NEW, False)),
        issues=tuple(issues),
        **merged,
    )
