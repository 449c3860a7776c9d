"""Bounded LRU/TTL caching.

Example:
    >>> from mediagate.io.cache import get_cache, make_key
    >>> cache = get_cache("model")
    >>> models = await cache.get_or_set(make_key("models", {"arch": "flux"}), fetch_models)
"""

from .cache import (
    PRESETS,
    BoundedCache,
    CacheEntry,
    get_cache,
    make_key,
    reset_cache,
    set_cache,
)

__all__ = [
    "BoundedCache",
    "CacheEntry",
    "PRESETS",
    "get_cache",
    "set_cache",
    "reset_cache",
    "make_key",
]
