"""Bounded in-memory cache with LRU eviction and TTL expiry.

Prevents repeated (and possibly billed) calls to the remote API for
identical requests. Entries live in an access-ordered map: the head is the
least recently used entry, the tail the most recent one.

Expired entries are purged lazily on get() and explicitly by prune(), so
`size` is an upper bound on live entries rather than an exact count.

get_or_set() is single-flight: concurrent callers for the same missing key
share one pending computation instead of invoking the factory repeatedly.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import orjson

from mediagate.foundation.config import get_settings
from mediagate.foundation.errors import ConfigurationError, OperationCancelled
from mediagate.runtime.concurrency import CancellationToken, check, wait_cancellable

if TYPE_CHECKING:
    from pydantic import BaseModel

    from mediagate.foundation.config import CacheSettings

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]

_MISSING: Any = object()


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    """A cached value with optional expiry (monotonic seconds)."""
    value: V
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class BoundedCache(Generic[K, V]):
    """LRU + TTL cache.

    Args:
        max_size: Maximum entries before the least recently used is evicted
        ttl_ms: Default time-to-live in milliseconds (None = never expires)
        clock: Monotonic clock in seconds (injectable for tests)

    Example:
        >>> cache: BoundedCache[str, bytes] = BoundedCache(max_size=100, ttl_ms=15 * 60_000)
        >>> cache.set("img:abc", data)
        >>> cache.get("img:abc") is data
        True
    """

    __slots__ = ("max_size", "ttl_ms", "_clock", "_entries", "_inflight", "_hits", "_misses", "_evictions")

    def __init__(self, max_size: int, ttl_ms: float | None = None, *, clock: Clock = time.monotonic) -> None:
        if max_size <= 0:
            raise ConfigurationError("max_size must be positive")
        if ttl_ms is not None and ttl_ms <= 0:
            raise ConfigurationError("ttl_ms must be positive")

        self.max_size = max_size
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: OrderedDict[K, CacheEntry[V]] = OrderedDict()
        self._inflight: dict[K, asyncio.Future[V]] = {}
        self._hits = self._misses = self._evictions = 0

    @classmethod
    def from_settings(cls, settings: CacheSettings | None = None, *, clock: Clock = time.monotonic) -> BoundedCache[Any, Any]:
        settings = settings or get_settings().cache
        return cls(settings.max_size, settings.ttl_ms, clock=clock)

    def __repr__(self) -> str:
        return f"BoundedCache(max_size={self.max_size}, ttl_ms={self.ttl_ms}, size={len(self._entries)})"

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.has(key)  # type: ignore[arg-type]

    # ─────────────────────────────────────────────────────────────────────────
    # Core operations
    # ─────────────────────────────────────────────────────────────────────────

    def get(self, key: K, default: Any = None) -> V | Any:
        """Return the live value for key (refreshing its recency) or default."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return default
        if entry.expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            return default
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def set(self, key: K, value: V, ttl_ms: float | None = None) -> None:
        """Insert or replace key as most recently used, evicting LRU entries if full.

        Raises:
            ConfigurationError: If ttl_ms is given and not positive
        """
        expires_at = self._expires_at(ttl_ms)
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
            self._evictions += 1
        self._entries[key] = CacheEntry(value, expires_at)

    def has(self, key: K) -> bool:
        """Whether key holds a live entry. Does not touch recency or purge."""
        entry = self._entries.get(key)
        return entry is not None and not entry.expired(self._clock())

    def delete(self, key: K) -> bool:
        return self._entries.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        self._entries.clear()

    @property
    def size(self) -> int:
        """Stored entries, including expired ones not yet purged."""
        return len(self._entries)

    def keys(self) -> list[K]:
        return list(self._entries)

    def values(self) -> list[V]:
        return [e.value for e in self._entries.values()]

    def items(self) -> list[tuple[K, V]]:
        return [(k, e.value) for k, e in self._entries.items()]

    def prune(self) -> int:
        """Purge every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _expires_at(self, ttl_ms: float | None) -> float | None:
        if ttl_ms is not None and ttl_ms <= 0:
            raise ConfigurationError("ttl_ms override must be positive")
        ttl = ttl_ms if ttl_ms is not None else self.ttl_ms
        return None if ttl is None else self._clock() + ttl / 1000

    # ─────────────────────────────────────────────────────────────────────────
    # Read-through
    # ─────────────────────────────────────────────────────────────────────────

    def get_or_set_sync(self, key: K, factory: Callable[[], V], *, ttl_ms: float | None = None) -> V:
        """Return the cached value or compute, store and return factory()."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        self._expires_at(ttl_ms)
        value = factory()
        self.set(key, value, ttl_ms)
        return value

    async def get_or_set(
        self,
        key: K,
        factory: Callable[[], Awaitable[V]],
        *,
        ttl_ms: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> V:
        """Return the cached value or compute it once for all concurrent callers.

        The first caller for a missing key runs the factory; later callers
        await the same result. A factory failure reaches every waiter and
        nothing is cached. A follower whose token fires stops waiting but
        leaves the computation running. If the leading task or its token is
        cancelled, or the factory raises OperationCancelled, the factory is
        abandoned and a waiting follower takes over.

        Raises:
            OperationCancelled: If cancel_token fires before a result arrives
        """
        while True:
            check(cancel_token)
            value = self.get(key, _MISSING)
            if value is not _MISSING:
                return value

            pending = self._inflight.get(key)
            if pending is None:
                return await self._lead(key, factory, ttl_ms, cancel_token)

            try:
                return await wait_cancellable(pending, cancel_token)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    raise
                # Leader gave up: retry and possibly lead

    async def _lead(
        self,
        key: K,
        factory: Callable[[], Awaitable[V]],
        ttl_ms: float | None,
        cancel_token: CancellationToken | None,
    ) -> V:
        self._expires_at(ttl_ms)
        pending: asyncio.Future[V] = asyncio.get_running_loop().create_future()
        self._inflight[key] = pending
        work = asyncio.ensure_future(factory())
        try:
            value = await wait_cancellable(work, cancel_token)
        except (asyncio.CancelledError, OperationCancelled):
            # Followers see the cancelled future and retry
            work.cancel()
            work.add_done_callback(_consume)
            pending.cancel()
            raise
        except BaseException as e:
            pending.set_exception(e)
            pending.exception()  # followers still observe it; silence "never retrieved"
            raise
        else:
            self.set(key, value, ttl_ms)
            pending.set_result(value)
            return value
        finally:
            if self._inflight.get(key) is pending:
                del self._inflight[key]

    def stats(self) -> dict[str, int]:
        """Cache statistics for monitoring."""
        now = self._clock()
        expired = sum(1 for e in self._entries.values() if e.expired(now))
        return {
            "entries": len(self._entries),
            "expired": expired,
            "live": len(self._entries) - expired,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "in_flight": len(self._inflight),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Preset caches
# ═══════════════════════════════════════════════════════════════════════════════

# name -> (max_size, ttl_ms); "response" is built from CacheSettings
PRESETS: dict[str, tuple[int, float]] = {
    "model": (500, 60 * 60_000),
    "image": (100, 15 * 60_000),
}

_caches: dict[str, BoundedCache[Any, Any]] = {}


def get_cache(name: str = "response") -> BoundedCache[Any, Any]:
    """Get a named process-wide cache, creating it from its preset on first use.

    Presets: "model" (500 entries, 1 h), "image" (100, 15 min) and
    "response" (settings, default 50 entries, 30 s).

    Raises:
        KeyError: For unknown names that were never set with set_cache()
    """
    cache = _caches.get(name)
    if cache is None:
        if name == "response":
            cache = BoundedCache.from_settings()
        else:
            max_size, ttl_ms = PRESETS[name]
            cache = BoundedCache(max_size, ttl_ms)
        _caches[name] = cache
    return cache


def set_cache(name: str, cache: BoundedCache[Any, Any]) -> None:
    """Install a custom cache under name."""
    _caches[name] = cache


def reset_cache(name: str | None = None) -> None:
    """Clear and drop one named cache, or all of them (useful for testing)."""
    names = [name] if name is not None else list(_caches)
    for n in names:
        if (cache := _caches.pop(n, None)) is not None:
            cache.clear()


def make_key(namespace: str, params: BaseModel | dict[str, Any]) -> str:
    """Stable cache key from a namespace and request parameters.

    Key order does not matter: {"a": 1, "b": 2} and {"b": 2, "a": 1}
    produce the same key.
    """
    if hasattr(params, "model_dump"):
        params = params.model_dump(mode="json")  # type: ignore[union-attr]
    raw = orjson.dumps(params, option=orjson.OPT_SORT_KEYS, default=str)
    return f"{namespace}:{hashlib.md5(raw, usedforsecurity=False).hexdigest()[:12]}"


def _consume(task: asyncio.Future[Any]) -> None:
    if not task.cancelled():
        task.exception()
