"""Persistent cache store for Mailboard.

Namespaced key-value storage with timestamps, backed by DuckDB. The store is
best-effort: when the backend cannot be opened or an operation fails, the
failure is logged and the operation degrades to a miss / no-op.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import duckdb

from ..errors import CacheUnavailable
from .policy import Namespace
from .schema import CacheSchema

logger = logging.getLogger(__name__)

# listener(namespace, key, entry); key is None for a namespace clear and
# entry is None for deletes and clears
StoreListener = Callable[[Namespace, Optional[str], Optional["CacheEntry"]], None]


@dataclass(frozen=True)
class CacheEntry:
    """A single cached payload."""

    key: str
    namespace: Namespace
    payload: Any
    cached_at: float
    scope_id: Optional[str] = None


class CacheStore:
    """Async namespaced cache store on top of a DuckDB file.

    DuckDB calls are local and run on the event loop; the coroutine interface
    keeps callers independent of the backend.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize cache store.

        Args:
            db_path: Path to DuckDB file, or ":memory:"
            enabled: When False the store behaves as permanently unavailable
            clock: Source of epoch seconds used for cached_at
        """
        self.db_path = db_path or ":memory:"
        self._enabled = enabled
        self._clock = clock
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._unavailable_reason: Optional[str] = None if enabled else "disabled"
        self._listeners: List[StoreListener] = []

    # === Lifecycle ===

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create database connection.

        Raises:
            CacheUnavailable: If the backend cannot be opened
        """
        if self._unavailable_reason:
            raise CacheUnavailable(self._unavailable_reason)

        if self._conn is None:
            try:
                if self.db_path != ":memory:":
                    Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
                conn = duckdb.connect(self.db_path)
                if CacheSchema.needs_migration(conn):
                    CacheSchema.migrate(conn)
            except (duckdb.Error, OSError) as e:
                self._unavailable_reason = f"cannot open cache at {self.db_path}: {e}"
                logger.warning("Cache unavailable, running network-only: %s", e)
                raise CacheUnavailable(self._unavailable_reason) from e
            self._conn = conn
        return self._conn

    async def open(self) -> bool:
        """Open the backend eagerly.

        Returns:
            True if the cache is usable
        """
        try:
            self._get_connection()
            return True
        except CacheUnavailable:
            return False

    async def close(self) -> None:
        """Close database connection and drop listeners."""
        if self._conn is not None:
            try:
                self._conn.close()
            except duckdb.Error as e:
                logger.warning("Error closing cache: %s", e)
            self._conn = None
        self._listeners.clear()

    async def __aenter__(self) -> "CacheStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def available(self) -> bool:
        """Whether the backend is usable."""
        return self._unavailable_reason is None

    def _execute(self, operation: str, sql: str, params: Optional[list] = None):
        """Run a statement, converting backend errors to CacheUnavailable."""
        conn = self._get_connection()
        try:
            return conn.execute(sql, params or [])
        except duckdb.Error as e:
            logger.warning("Cache %s failed: %s", operation, e)
            raise CacheUnavailable(str(e)) from e

    # === Subscriptions ===

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener.

        Args:
            listener: Called after every successful set, delete and clear

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(
        self,
        namespace: Namespace,
        key: Optional[str],
        entry: Optional[CacheEntry],
    ) -> None:
        for listener in list(self._listeners):
            try:
                listener(namespace, key, entry)
            except Exception:
                logger.exception("Cache listener failed for %s/%s", namespace.value, key)

    # === Entry operations ===

    @staticmethod
    def _row_to_entry(namespace: Namespace, row) -> CacheEntry:
        return CacheEntry(
            key=row[0],
            namespace=namespace,
            scope_id=row[1],
            payload=json.loads(row[2]),
            cached_at=row[3],
        )

    async def get(self, namespace: Namespace, key: str) -> Optional[CacheEntry]:
        """Get a cached entry.

        Args:
            namespace: Cache namespace
            key: Entry key

        Returns:
            CacheEntry or None on miss or when the cache is unavailable
        """
        try:
            row = self._execute(
                "get",
                """
                SELECT cache_key, scope_id, payload, cached_at FROM cache_entries
                WHERE namespace = ? AND cache_key = ?
                """,
                [namespace.value, key],
            ).fetchone()
        except CacheUnavailable:
            return None

        if not row:
            return None
        try:
            return self._row_to_entry(namespace, row)
        except ValueError as e:
            logger.warning("Discarding unreadable cache entry %s/%s: %s", namespace.value, key, e)
            return None

    async def set(self, namespace: Namespace, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous value for its key.

        Args:
            namespace: Cache namespace
            entry: Entry to write (its payload must be JSON serializable)
        """
        if entry.namespace != namespace:
            entry = CacheEntry(
                key=entry.key,
                namespace=namespace,
                payload=entry.payload,
                cached_at=entry.cached_at,
                scope_id=entry.scope_id,
            )
        try:
            payload = json.dumps(entry.payload)
        except (TypeError, ValueError) as e:
            logger.warning("Refusing to cache non-JSON payload %s/%s: %s", namespace.value, entry.key, e)
            return

        try:
            self._execute(
                "set",
                """
                INSERT OR REPLACE INTO cache_entries
                (namespace, cache_key, scope_id, payload, cached_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [namespace.value, entry.key, entry.scope_id, payload, entry.cached_at],
            )
        except CacheUnavailable:
            return

        self._notify(namespace, entry.key, entry)

    async def put(
        self,
        namespace: Namespace,
        key: str,
        payload: Any,
        scope_id: Optional[str] = None,
    ) -> CacheEntry:
        """Build an entry stamped with the current time and store it.

        Returns:
            The entry that was written
        """
        entry = CacheEntry(
            key=key,
            namespace=namespace,
            payload=payload,
            cached_at=self._clock(),
            scope_id=scope_id,
        )
        await self.set(namespace, entry)
        return entry

    async def delete(self, namespace: Namespace, key: str) -> None:
        """Delete one entry (no-op if missing)."""
        try:
            self._execute(
                "delete",
                "DELETE FROM cache_entries WHERE namespace = ? AND cache_key = ?",
                [namespace.value, key],
            )
        except CacheUnavailable:
            return

        self._notify(namespace, key, None)

    async def clear(self, namespace: Namespace) -> None:
        """Delete every entry in a namespace."""
        try:
            self._execute(
                "clear",
                "DELETE FROM cache_entries WHERE namespace = ?",
                [namespace.value],
            )
        except CacheUnavailable:
            return

        self._notify(namespace, None, None)

    async def clear_all(self) -> None:
        """Clear every namespace (logout, account switch)."""
        for namespace in Namespace:
            await self.clear(namespace)

    async def get_all(self, namespace: Namespace) -> List[CacheEntry]:
        """Get every entry of a namespace, oldest first.

        Returns:
            List of entries (empty when the cache is unavailable)
        """
        try:
            rows = self._execute(
                "get_all",
                """
                SELECT cache_key, scope_id, payload, cached_at FROM cache_entries
                WHERE namespace = ?
                ORDER BY cached_at, cache_key
                """,
                [namespace.value],
            ).fetchall()
        except CacheUnavailable:
            return []

        entries = []
        for row in rows:
            try:
                entries.append(self._row_to_entry(namespace, row))
            except ValueError as e:
                logger.warning("Skipping unreadable cache entry %s/%s: %s", namespace.value, row[0], e)
        return entries

    async def prune(self, namespace: Namespace, ttl_seconds: float) -> int:
        """Delete entries older than the TTL to bound cache growth.

        Returns:
            Number of entries removed
        """
        cutoff = self._clock() - ttl_seconds
        try:
            count = self._execute(
                "prune",
                "SELECT COUNT(*) FROM cache_entries WHERE namespace = ? AND cached_at < ?",
                [namespace.value, cutoff],
            ).fetchone()[0]
            if count:
                self._execute(
                    "prune",
                    "DELETE FROM cache_entries WHERE namespace = ? AND cached_at < ?",
                    [namespace.value, cutoff],
                )
        except CacheUnavailable:
            return 0

        if count:
            self._notify(namespace, None, None)
        return count

    # === Diagnostics ===

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with per-namespace entry counts and file information
        """
        stats: Dict[str, Any] = {
            "available": self.available,
            "db_path": self.db_path,
            "namespaces": {ns.value: 0 for ns in Namespace},
            "oldest": None,
            "newest": None,
            "db_size_bytes": 0,
        }

        if self.db_path != ":memory:" and os.path.exists(self.db_path):
            stats["db_size_bytes"] = os.path.getsize(self.db_path)

        try:
            rows = self._execute(
                "stats",
                """
                SELECT namespace, COUNT(*), MIN(cached_at), MAX(cached_at)
                FROM cache_entries GROUP BY namespace
                """,
            ).fetchall()
        except CacheUnavailable:
            stats["available"] = False
            stats["reason"] = self._unavailable_reason
            return stats

        for namespace, count, oldest, newest in rows:
            stats["namespaces"][namespace] = count
            if oldest is not None and (stats["oldest"] is None or oldest < stats["oldest"]):
                stats["oldest"] = oldest
            if newest is not None and (stats["newest"] is None or newest > stats["newest"]):
                stats["newest"] = newest

        return stats
