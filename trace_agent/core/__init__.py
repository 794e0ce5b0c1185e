"""
trace-agent - Core

Configuration selection, error taxonomy and the lifecycle controller.
"""
