"""
trace-agent - Property-Based Testing Suite

Hypothesis tests for configuration resolution invariants.
"""
