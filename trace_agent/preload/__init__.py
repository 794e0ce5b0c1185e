"""
trace-agent - Interpreter Preload Hook

Putting this directory on ``PYTHONPATH`` makes the interpreter import its
``sitecustomize`` module at startup, which imports and starts the agent
before the application's own imports run.
"""
import os
from pathlib import Path
from typing import Mapping, MutableMapping, Optional

PRELOAD_DIR = Path(__file__).resolve().parent


def preload_environment(
    environ: Mapping[str, str],
    extra: Optional[Mapping[str, str]] = None,
) -> MutableMapping[str, str]:
    """
    Copy of ``environ`` with the preload directory first on ``PYTHONPATH``.

    Args:
        environ: Base environment
        extra: Variables set on top of ``environ`` before the path is adjusted
    """
    env = dict(environ)
    if extra:
        env.update(extra)
    entries = [p for p in env.get("PYTHONPATH", "").split(os.pathsep) if p]
    preload = str(PRELOAD_DIR)
    if preload in entries:
        entries.remove(preload)
    env["PYTHONPATH"] = os.pathsep.join([preload, *entries])
    return env
