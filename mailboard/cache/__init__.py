"""DuckDB-based cache module for Mailboard.

Provides the persistent namespaced cache with:
- Per-namespace TTL freshness checks
- Request-cursor keyed pagination pages
- Change notifications for the UI binding layer
"""

from .policy import CacheKey, Namespace, derive_key, is_fresh, split_key, ttl_for
from .schema import CacheSchema
from .store import CacheEntry, CacheStore

__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheSchema",
    "CacheStore",
    "Namespace",
    "derive_key",
    "is_fresh",
    "split_key",
    "ttl_for",
]
