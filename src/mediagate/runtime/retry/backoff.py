"""Backoff strategies for retry and polling delays.

Provides pluggable delay calculation (milliseconds):
- ExponentialBackoff: Exponential growth with a cap
- ConstantBackoff: Fixed delay
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from mediagate.foundation.errors import ConfigurationError


@runtime_checkable
class Backoff(Protocol):
    """Protocol for backoff delay calculation.

    Attempt numbers are 0-indexed (delay before the first retry = attempt 0).
    """

    def delay(self, attempt: int) -> float:
        """Delay in milliseconds before the retry following `attempt`."""
        ...


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Capped exponential backoff.

    The first delay is initial_ms as given; every later one is the previous
    delay times multiplier, capped at max_ms. A multiplier >= 1 keeps the
    schedule non-decreasing from the second delay on.

    Attributes:
        initial_ms: First delay, >= 0 (default: 1000)
        max_ms: Cap for every delay after the first (default: 30000)
        multiplier: Growth factor, >= 1 (default: 2.0)
    """

    initial_ms: float = 1000.0
    max_ms: float = 30_000.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.initial_ms < 0:
            raise ConfigurationError("initial backoff delay must not be negative")
        if self.max_ms <= 0:
            raise ConfigurationError("max backoff delay must be positive")
        if self.multiplier < 1:
            raise ConfigurationError("backoff multiplier must be >= 1")

    def delay(self, attempt: int) -> float:
        d = self.initial_ms
        for _ in range(attempt):
            d = min(d * self.multiplier, self.max_ms)
            if d == self.max_ms:
                break
        return d


@dataclass(frozen=True, slots=True)
class ConstantBackoff:
    """Fixed delay between attempts.

    Simple strategy for rate-limited APIs with known cooldown.
    """

    delay_ms: float = 1000.0

    def __post_init__(self) -> None:
        if self.delay_ms < 0:
            raise ConfigurationError("backoff delay must not be negative")

    def delay(self, attempt: int) -> float:
        return self.delay_ms
