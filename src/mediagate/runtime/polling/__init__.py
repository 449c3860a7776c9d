"""Polling for asynchronous remote tasks."""

from .poller import (
    PollResult,
    PollState,
    PollStatus,
    estimate_max_poll_time_ms,
    poll,
    poll_with_settings,
)

__all__ = [
    "PollState",
    "PollStatus",
    "PollResult",
    "poll",
    "poll_with_settings",
    "estimate_max_poll_time_ms",
]
