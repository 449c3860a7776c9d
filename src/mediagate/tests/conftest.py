"""Shared fixtures: manual clock and global singleton resets."""

from __future__ import annotations

import pytest

from mediagate.foundation.config import clear_settings_cache
from mediagate.io.cache import reset_cache
from mediagate.runtime.dispatch import reset_dispatcher
from mediagate.runtime.observability import reset_logging
from mediagate.runtime.operations import reset_registry
from mediagate.runtime.ratelimit import reset_rate_limiter


class ManualClock:
    """Monotonic clock advanced explicitly by tests (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture(autouse=True)
def reset_globals() -> object:
    """Reset process-wide defaults before and after each test."""
    for reset in (clear_settings_cache, reset_cache, reset_rate_limiter, reset_registry, reset_dispatcher):
        reset()
    yield
    for reset in (clear_settings_cache, reset_cache, reset_rate_limiter, reset_registry, reset_dispatcher, reset_logging):
        reset()
