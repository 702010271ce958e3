"""Cache policy: namespaces, freshness and cache-key derivation.

Everything here is pure; no I/O.
"""

import time
from datetime import timedelta
from enum import Enum
from typing import Optional, Tuple, Union


class Namespace(str, Enum):
    """Logical cache partitions. Each namespace has one TTL."""

    EMAILS = "emails"
    EMAIL_LISTS = "email_lists"
    MAILBOXES = "mailboxes"
    KANBAN_BOARDS = "kanban_boards"
    KANBAN_COLUMNS = "kanban_columns"


# (namespace, key) pair identifying one cache entry
CacheKey = Tuple[Namespace, str]

MAILBOXES_KEY = "mailboxes"
KANBAN_COLUMNS_KEY = "columns"
FIRST_PAGE = "first"


def _seconds(ttl: Union[timedelta, float]) -> float:
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


def is_fresh(
    cached_at: float,
    ttl: Union[timedelta, float],
    now: Optional[float] = None,
) -> bool:
    """Check if a cache entry is still fresh.

    Args:
        cached_at: Epoch seconds when the entry was written
        ttl: Time to live (timedelta or seconds)
        now: Current epoch seconds (defaults to time.time())

    Returns:
        True while now - cached_at < ttl
    """
    if now is None:
        now = time.time()
    return (now - cached_at) < _seconds(ttl)


def derive_key(resource_id: str, cursor: Optional[str] = None) -> str:
    """Build the cache key for a paginated resource.

    The cursor is the one used for the *request*, so the first page is
    always stored under ``<resource_id>:first``.
    """
    return f"{resource_id}:{cursor or FIRST_PAGE}"


def split_key(key: str) -> Tuple[str, Optional[str]]:
    """Inverse of derive_key.

    Returns:
        (resource_id, cursor) with cursor None for the first page
    """
    resource_id, _, cursor = key.rpartition(":")
    if not resource_id:
        return key, None
    return resource_id, None if cursor == FIRST_PAGE else cursor


def ttl_for(namespace: Namespace, cache_config) -> timedelta:
    """TTL of a namespace as configured in a CacheConfig."""
    return cache_config.ttl(namespace.value)
