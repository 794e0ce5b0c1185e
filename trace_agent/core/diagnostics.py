"""
trace-agent - Modules-Loaded-Before Diagnostic

Instrumentation patches libraries when they are imported. Any third-party
package already imported when the agent package itself was imported may
escape instrumentation, so the facade captures a snapshot of
``sys.modules`` at import time and the controller reports it once.
"""
from __future__ import annotations

import sys
from types import ModuleType
from typing import Iterable, List, Mapping, Optional, Tuple

_THIRD_PARTY_DIRS = ("site-packages", "dist-packages")
_AGENT_PACKAGE = "trace_agent"


def package_name(module_name: str, module: Optional[ModuleType]) -> Optional[str]:
    """
    Top-level distribution package of ``module``, or None if it is not a
    third-party package (stdlib, builtin, namespace, the agent itself).
    """
    top = module_name.partition(".")[0]
    if not top or top == _AGENT_PACKAGE or top.startswith("_"):
        return None
    if top in getattr(sys, "stdlib_module_names", ()):
        return None
    location = getattr(module, "__file__", None)
    if not location:
        return None
    normalized = location.replace("\\", "/")
    if not any(f"/{d}/" in normalized for d in _THIRD_PARTY_DIRS):
        return None
    return top


def loaded_packages(modules: Mapping[str, Optional[ModuleType]]) -> Tuple[str, ...]:
    """Distinct third-party package names among ``modules``, sorted."""
    names = set()
    for name, module in list(modules.items()):
        package = package_name(name, module)
        if package:
            names.add(package)
    return tuple(sorted(names))


class PreloadDiagnostic:
    """
    One-shot record of the packages loaded before the agent.

    Usage:
        diagnostic = PreloadDiagnostic.capture()
        packages = diagnostic.consume()   # the list, once
        diagnostic.consume()              # [] from now on
    """

    def __init__(self, packages: Iterable[str] = ()) -> None:
        self._packages: Optional[List[str]] = sorted(set(packages))

    @classmethod
    def capture(cls, modules: Optional[Mapping[str, Optional[ModuleType]]] = None) -> "PreloadDiagnostic":
        return cls(loaded_packages(sys.modules if modules is None else modules))

    @property
    def consumed(self) -> bool:
        return self._packages is None

    def consume(self) -> List[str]:
        """Return the captured package names and discard them."""
        packages, self._packages = self._packages, None
        return packages or []

    def message(self, packages: List[str]) -> str:
        return (
            "TraceAgent#start: Tracing might not work as the following modules "
            f"were loaded before the trace agent was initialized: [{', '.join(packages)}]"
        )
