"""
trace-agent - Context-Propagation Selector

Decides which propagation mechanism the agent should construct.

``auto`` picks the native ``contextvars`` mechanism when the interpreter
supports it and the host opted in through ``GCLOUD_TRACE_NEW_CONTEXT``;
otherwise the ``threadlocal`` fallback, whose thread hooks have to be in
place before the rest of the process is imported. Explicit ids are passed
through unchanged; the propagation subsystem rejects unknown ones itself.
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from trace_agent.config import ENV_NEW_CONTEXT, ResolvedConfig
from trace_agent.core.types import MechanismId

AUTO = "auto"
CONTEXTVARS = "contextvars"
THREADLOCAL = "threadlocal"
NONE = "none"

MIN_NATIVE_VERSION: Tuple[int, int] = (3, 7)

_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def flag_enabled(value: Optional[str]) -> bool:
    """Interpret a boolean-like environment value. Unset or empty is False."""
    if not value:
        return False
    return value.strip().lower() not in _FALSE_VALUES


@dataclass(frozen=True)
class RuntimeCapability:
    """What the host interpreter offers for context propagation."""

    python_version: Tuple[int, ...]
    new_context_opt_in: bool = False

    @property
    def supports_native_context(self) -> bool:
        return self.new_context_opt_in and tuple(self.python_version[:2]) >= MIN_NATIVE_VERSION

    @classmethod
    def detect(cls, environ: Optional[Mapping[str, str]] = None) -> "RuntimeCapability":
        environ = os.environ if environ is None else environ
        return cls(
            python_version=tuple(sys.version_info[:3]),
            new_context_opt_in=flag_enabled(environ.get(ENV_NEW_CONTEXT)),
        )


def auto_mechanism(capability: RuntimeCapability) -> MechanismId:
    return CONTEXTVARS if capability.supports_native_context else THREADLOCAL


def select_mechanism(config: ResolvedConfig, capability: RuntimeCapability) -> MechanismId:
    """Resolve ``config.cls_mechanism`` against the runtime capability."""
    if config.cls_mechanism == AUTO:
        return auto_mechanism(capability)
    return config.cls_mechanism


def needs_eager_hooks(capability: RuntimeCapability) -> bool:
    """Whether ``auto`` would land on the fallback that needs early hooks."""
    return auto_mechanism(capability) == THREADLOCAL
