"""Cursor-paginated reads and the infinite-scroll trigger policy."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..cache.policy import Namespace
from ..cache.store import CacheEntry
from .merge import Board, merge_board_pages, merge_list_pages
from .orchestrator import FetchOrchestrator, ReadResult, Resource

logger = logging.getLogger(__name__)

# fetch_page(cursor) -> page payload
PageFetcher = Callable[[Optional[str]], Awaitable[Dict[str, Any]]]


def page_item_count(page: Dict[str, Any]) -> int:
    """Number of items on a list or board page."""
    if isinstance(page.get("items"), list):
        return len(page["items"])
    return sum(len(items) for items in (page.get("columns") or {}).values())


class PageChain:
    """The pages fetched so far for one scope, keyed by request cursor.

    Pages are read through the orchestrator. When a background refresh
    rewrites one of them in the store, the chain picks up the new payload.
    """

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        namespace: Namespace,
        scope_id: str,
        fetch_page: PageFetcher,
    ):
        self.orchestrator = orchestrator
        self.namespace = namespace
        self.scope_id = scope_id
        self._fetch_page = fetch_page
        self.cursors: List[Optional[str]] = []
        self._pages: Dict[str, Dict[str, Any]] = {}
        self.is_fetching = False
        self._unsubscribe = orchestrator.store.subscribe(self._on_store_change)

    def _resource(self, cursor: Optional[str]) -> Resource:
        return Resource(self.namespace, self.scope_id, cursor=cursor, paginated=True)

    def _on_store_change(self, namespace: Namespace, key: Optional[str], entry: Optional[CacheEntry]) -> None:
        if namespace != self.namespace or key is None or entry is None:
            return
        if key in self._pages:
            self._pages[key] = entry.payload

    @property
    def pages(self) -> List[Dict[str, Any]]:
        """Page payloads in fetch order."""
        keys = [self._resource(cursor).key for cursor in self.cursors]
        return [self._pages[key] for key in keys if key in self._pages]

    @property
    def last_page(self) -> Optional[Dict[str, Any]]:
        pages = self.pages
        return pages[-1] if pages else None

    @property
    def next_cursor(self) -> Optional[str]:
        page = self.last_page
        if page is None:
            return None
        return (page.get("meta") or {}).get("next_cursor")

    @property
    def has_more(self) -> bool:
        if self.last_page is None:
            return True
        return self.next_cursor is not None

    async def _read(self, cursor: Optional[str], restart: bool = False, force: bool = False) -> ReadResult:
        resource = self._resource(cursor)
        fetcher = lambda: self._fetch_page(cursor)  # noqa: E731
        self.is_fetching = True
        try:
            if force:
                result = await self.orchestrator.refresh(resource, fetcher)
            else:
                result = await self.orchestrator.read(resource, fetcher)
        finally:
            self.is_fetching = False

        # Loaded pages survive a failed restart
        if restart:
            self.reset()
        if cursor not in self.cursors:
            self.cursors.append(cursor)
        self._pages[resource.key] = result.payload
        return result

    async def load_first(self, force: bool = False) -> ReadResult:
        """Start over from the first page.

        Args:
            force: Bypass the cache (used for polling)
        """
        return await self._read(None, restart=True, force=force)

    async def load_more(self) -> Optional[ReadResult]:
        """Read the page after the last one, if the server has more."""
        if not self.cursors:
            return await self.load_first()
        if not self.has_more:
            return None
        return await self._read(self.next_cursor)

    async def reload(self, force: bool = False) -> None:
        """Re-read as many pages as were loaded, following fresh cursors."""
        depth = max(len(self.cursors), 1)
        await self.load_first(force=force)
        while len(self.cursors) < depth and self.has_more:
            await self.load_more()

    def reset(self) -> None:
        self.cursors = []
        self._pages = {}

    def close(self) -> None:
        self._unsubscribe()

    def merged_items(self) -> List[Dict[str, Any]]:
        return merge_list_pages(self.pages)

    def merged_board(self, statuses: Optional[Sequence[str]] = None) -> Board:
        return merge_board_pages(self.pages, statuses)


class AutoPager:
    """Decides when scrolling to the bottom should load the next page.

    The server may return empty pages while it is still syncing from the
    provider; loading continues through at most ``max_empty_pages`` of them
    in a row.
    """

    def __init__(self, max_empty_pages: int = 3):
        self.max_empty_pages = max_empty_pages
        self.consecutive_empty = 0

    def record_page(self, item_count: int) -> None:
        """Count a fetched page; any item ends a run of empty pages."""
        if item_count > 0:
            self.consecutive_empty = 0
        else:
            self.consecutive_empty += 1

    def should_load(
        self,
        sentinel_visible: bool,
        has_next_page: bool,
        is_fetching: bool,
        filter_active: bool,
    ) -> bool:
        return (
            sentinel_visible
            and has_next_page
            and not is_fetching
            and not filter_active
            and self.consecutive_empty < self.max_empty_pages
        )

    async def maybe_load(
        self,
        chain: PageChain,
        sentinel_visible: bool = True,
        filter_active: bool = False,
    ) -> Optional[ReadResult]:
        """Load the next page of a chain when the policy allows it.

        Returns:
            The read result, or None when nothing was loaded
        """
        last_page = chain.last_page
        # The chain may have been reloaded with items since the last call
        if last_page is not None and page_item_count(last_page) > 0:
            self.consecutive_empty = 0

        if not self.should_load(sentinel_visible, chain.has_more, chain.is_fetching, filter_active):
            return None

        result = await chain.load_more()
        if result is not None:
            self.record_page(page_item_count(result.payload))
            if self.consecutive_empty:
                logger.debug(
                    "Loaded empty page %d/%d", self.consecutive_empty, self.max_empty_pages
                )
        return result
