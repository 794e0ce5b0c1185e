"""
trace-agent - Observability Collaborators

Components:
- propagation: context propagation mechanisms
- writer: OpenTelemetry tracer provider and span export
- plugins: OpenTelemetry instrumentor activation
- tracing: the public agent handle
- logging: structlog loggers for agent messages
"""
