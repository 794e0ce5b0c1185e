"""
trace-agent - Subsystem Registry

Lazily constructed subsystem singletons and the process-wide agent slot.

Usage:
    from trace_agent.di.container import Subsystem, SubsystemHandle, SubsystemRegistry
"""
from trace_agent.di.container import (
    Subsystem,
    SubsystemHandle,
    SubsystemRegistry,
    publish_agent,
    published_agent,
    reset_published_agent,
)

__all__ = [
    "Subsystem",
    "SubsystemHandle",
    "SubsystemRegistry",
    "publish_agent",
    "published_agent",
    "reset_published_agent",
]
