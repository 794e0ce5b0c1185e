"""Starts the trace agent on interpreter startup. See ``trace_agent.preload``."""
import trace_agent  # noqa: F401
