"""Stale-while-revalidate fetch orchestrator.

Decides, per read, whether to answer from the cache store, the network, or
both:

- First pages and singleton resources are cache-first: a cached entry is
  returned immediately and a background fetch refreshes the store.
- Later pages are network-first: the cache is used directly only when
  fresh, and otherwise only as a fallback when the network fails. Pages are
  keyed by the request cursor, so replaying a stale later page could show
  earlier content under a different cursor.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Set, Tuple, Union

from ..cache.policy import CacheKey, Namespace, derive_key, is_fresh
from ..cache.store import CacheEntry, CacheStore
from ..errors import NetworkFailure

logger = logging.getLogger(__name__)

# Returns a JSON-serializable payload for the resource
Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class Resource:
    """Something the UI can read: a detail record, a summary or a page."""

    namespace: Namespace
    resource_id: str
    cursor: Optional[str] = None
    paginated: bool = False

    @property
    def key(self) -> str:
        """Cache key (request cursor for pages)."""
        if self.paginated:
            return derive_key(self.resource_id, self.cursor)
        return self.resource_id

    @property
    def cache_key(self) -> CacheKey:
        return (self.namespace, self.key)

    @property
    def is_first_page(self) -> bool:
        """True for singleton resources and the first page of a list."""
        return not self.paginated or self.cursor is None

    @property
    def scope_id(self) -> Optional[str]:
        return self.resource_id if self.paginated else None


class ReadSource(str, Enum):
    """Where a read result came from."""

    CACHE = "cache"
    NETWORK = "network"


@dataclass
class ReadResult:
    """Result of an orchestrated read."""

    payload: Any
    source: ReadSource
    is_fresh: bool
    cached_at: Optional[float] = None


class FetchOrchestrator:
    """Wraps remote reads with the cache store."""

    def __init__(
        self,
        store: CacheStore,
        ttls: Mapping[Namespace, Union[timedelta, float]],
        clock: Callable[[], float] = time.time,
    ):
        """Initialize orchestrator.

        Args:
            store: Injected cache store handle
            ttls: TTL per namespace
            clock: Source of epoch seconds for freshness checks
        """
        self.store = store
        self._ttls = dict(ttls)
        self._clock = clock
        self._in_flight: Dict[CacheKey, asyncio.Task] = {}
        self._paused: Dict[CacheKey, int] = {}
        # Bumped on cancel and pause; a fetch stores only if unchanged
        self._key_generations: Dict[CacheKey, int] = {}
        self._namespace_generations: Dict[Namespace, int] = {}

    def ttl(self, namespace: Namespace) -> Union[timedelta, float]:
        return self._ttls[namespace]

    def _fresh(self, entry: CacheEntry) -> bool:
        return is_fresh(entry.cached_at, self.ttl(entry.namespace), now=self._clock())

    # === Reads ===

    async def read(self, resource: Resource, fetcher: Fetcher) -> ReadResult:
        """Read a resource.

        Args:
            resource: What to read
            fetcher: Coroutine function performing the network fetch

        Returns:
            ReadResult with payload and provenance

        Raises:
            NetworkFailure: If the network fails and nothing is cached
        """
        cached = await self.store.get(resource.namespace, resource.key)

        if resource.is_first_page:
            if cached is not None:
                self._start_revalidation(resource, fetcher)
                return ReadResult(
                    payload=cached.payload,
                    source=ReadSource.CACHE,
                    is_fresh=self._fresh(cached),
                    cached_at=cached.cached_at,
                )
            return await self._fetch_and_store(resource, fetcher)

        # Later pages: network-first
        if cached is not None and self._fresh(cached):
            return ReadResult(
                payload=cached.payload,
                source=ReadSource.CACHE,
                is_fresh=True,
                cached_at=cached.cached_at,
            )

        try:
            return await self._fetch_and_store(resource, fetcher)
        except NetworkFailure as e:
            if cached is None:
                raise
            logger.info(
                "Network failed for %s/%s, serving stale page: %s",
                resource.namespace.value,
                resource.key,
                e,
            )
            return ReadResult(
                payload=cached.payload,
                source=ReadSource.CACHE,
                is_fresh=False,
                cached_at=cached.cached_at,
            )

    async def refresh(self, resource: Resource, fetcher: Fetcher) -> ReadResult:
        """Force a network read, bypassing the cache, and store the result."""
        await self.cancel([resource.cache_key])
        return await self._fetch_and_store(resource, fetcher)

    async def _fetch_and_store(self, resource: Resource, fetcher: Fetcher) -> ReadResult:
        key = resource.cache_key
        started = self._generation(key)
        payload = await fetcher()

        if key in self._paused or self._generation(key) != started:
            # A mutation or invalidation touched the key while the fetch ran
            logger.debug("Discarding fetch of %s/%s superseded by a write", key[0].value, key[1])
            current = await self.store.get(resource.namespace, resource.key)
            if current is not None:
                return ReadResult(
                    payload=current.payload,
                    source=ReadSource.CACHE,
                    is_fresh=self._fresh(current),
                    cached_at=current.cached_at,
                )
            return ReadResult(payload=payload, source=ReadSource.NETWORK, is_fresh=True)

        entry = await self.store.put(
            resource.namespace,
            resource.key,
            payload,
            scope_id=resource.scope_id,
        )
        return ReadResult(
            payload=payload,
            source=ReadSource.NETWORK,
            is_fresh=True,
            cached_at=entry.cached_at,
        )

    # === Background revalidation ===

    def _start_revalidation(self, resource: Resource, fetcher: Fetcher) -> None:
        key = resource.cache_key
        if key in self._paused:
            logger.debug("Skipping revalidation of %s/%s during mutation", key[0].value, key[1])
            return
        task = self._in_flight.get(key)
        if task is not None and not task.done():
            return

        task = asyncio.create_task(self._revalidate(resource, fetcher))
        self._in_flight[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))

    def _forget(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _revalidate(self, resource: Resource, fetcher: Fetcher) -> None:
        try:
            await self._fetch_and_store(resource, fetcher)
        except NetworkFailure as e:
            logger.warning(
                "Background refresh of %s/%s failed: %s",
                resource.namespace.value,
                resource.key,
                e,
            )
        except asyncio.CancelledError:
            logger.debug("Background refresh of %s/%s cancelled", resource.namespace.value, resource.key)
            raise
        except Exception:
            logger.exception(
                "Background refresh of %s/%s crashed", resource.namespace.value, resource.key
            )

    def in_flight(self) -> Set[CacheKey]:
        """Keys with a background fetch currently running."""
        return {key for key, task in self._in_flight.items() if not task.done()}

    def _generation(self, key: CacheKey) -> Tuple[int, int]:
        return (self._namespace_generations.get(key[0], 0), self._key_generations.get(key, 0))

    def _bump(self, keys: Iterable[CacheKey]) -> None:
        for key in keys:
            self._key_generations[key] = self._key_generations.get(key, 0) + 1

    async def cancel(self, keys: Iterable[CacheKey]) -> None:
        """Cancel fetches for keys and wait until background ones stopped.

        Foreground fetches already awaiting the network keep running, but
        their result is no longer written to the store.
        """
        keys = set(keys)
        self._bump(keys)
        tasks = []
        for key in keys:
            task = self._in_flight.pop(key, None)
            if task is not None and not task.done():
                task.cancel()
                tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def cancel_namespace(self, namespace: Namespace) -> None:
        """Cancel every fetch in a namespace."""
        self._namespace_generations[namespace] = self._namespace_generations.get(namespace, 0) + 1
        await self.cancel([key for key in self._in_flight if key[0] == namespace])

    async def cancel_all(self) -> None:
        for namespace in Namespace:
            self._namespace_generations[namespace] = self._namespace_generations.get(namespace, 0) + 1
        await self.cancel(list(self._in_flight))

    async def wait_idle(self) -> None:
        """Wait for all background fetches to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    # === Mutation guards ===

    def pause(self, keys: Iterable[CacheKey]) -> None:
        """Suppress refreshes of keys while a mutation is pending.

        No fetch result is stored for a paused key; fetches that started
        before the pause stay discarded after it ends.
        """
        keys = list(keys)
        self._bump(keys)
        for key in keys:
            self._paused[key] = self._paused.get(key, 0) + 1

    def resume(self, keys: Iterable[CacheKey]) -> None:
        for key in keys:
            count = self._paused.get(key, 0) - 1
            if count > 0:
                self._paused[key] = count
            else:
                self._paused.pop(key, None)
