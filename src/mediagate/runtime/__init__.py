"""Runtime - Execution flow, control, and monitoring.

Contains: concurrency, ratelimit, retry, operations, polling, dispatch, observability.
"""
