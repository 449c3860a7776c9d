"""Cooperative cancellation primitives for async operations.

Key Components:
    - CancellationToken: Explicit, linkable cancellation signal
    - sleep: Timer-backed delay interrupted by a token
    - wait_cancellable: Await a shared future without owning it
    - map_async: Parallel map with concurrency limit

Design:
    - Tokens are passed explicitly through every layer (limiter -> retry -> sleep)
    - A fired token releases pending timers instead of racing them
    - Pure asyncio, no threads
"""

from __future__ import annotations

from .cancel import CancellationToken, check
from .wait import map_async, sleep, wait_cancellable

__all__ = [
    "CancellationToken",
    "check",
    "sleep",
    "wait_cancellable",
    "map_async",
]
