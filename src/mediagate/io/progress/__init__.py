"""Progress reporting for long-running operations."""

from .progress import (
    ProgressNotification,
    ProgressReporter,
    ProgressSink,
    best_effort,
    create_progress_reporter,
    drain,
)

__all__ = [
    "ProgressNotification",
    "ProgressReporter",
    "ProgressSink",
    "create_progress_reporter",
    "best_effort",
    "drain",
]
