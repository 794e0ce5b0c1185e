"""
trace-agent - Command Line Interface
"""
from trace_agent.cli.main import app, main

__all__ = ["app", "main"]
