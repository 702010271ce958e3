"""Kanban service: cached board pages, column config and board mutations."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from ..api.client import MailApiClient
from ..cache.policy import KANBAN_COLUMNS_KEY, Namespace
from ..errors import NetworkFailure
from ..models.kanban import DEFAULT_KANBAN_COLUMNS, KanbanColumn, KanbanItem
from ..sync.invalidation import EventKind, InvalidationCoordinator, InvalidationEvent, Region
from ..sync.merge import Board, BoardFilters, apply_board_view, flatten_board
from ..sync.mutations import (
    AffectedKeys,
    ErrorCallback,
    Mutation,
    MutationEngine,
    MutationResult,
    MutationSnapshot,
    SuccessCallback,
    move_mutation,
    snooze_mutation,
    summarize_mutation,
)
from ..sync.orchestrator import FetchOrchestrator, ReadResult, Resource
from ..sync.pagination import AutoPager, PageChain
from ..sync.snooze import SnoozeWatcher

logger = logging.getLogger(__name__)

ALL_LABELS = "all"

ModelBoard = Dict[str, List[KanbanItem]]


def board_scope(label: Optional[str] = None) -> str:
    """Cache scope id of a board (one per label filter)."""
    return label or ALL_LABELS


def to_models(board: Board) -> ModelBoard:
    return {status: [KanbanItem.model_validate(i) for i in items] for status, items in board.items()}


class KanbanService:
    """Entry points for the kanban board view."""

    def __init__(
        self,
        api: MailApiClient,
        orchestrator: FetchOrchestrator,
        engine: MutationEngine,
        coordinator: InvalidationCoordinator,
        page_size: int = 10,
        snooze_poll_seconds: float = 30.0,
        max_empty_pages: int = 3,
        max_auto_summarize: int = 12,
        on_notice: Optional[Callable[[str], None]] = None,
    ):
        """Initialize kanban service.

        Args:
            api: Remote API client
            orchestrator: Fetch orchestrator for cached reads
            engine: Mutation engine for optimistic writes
            coordinator: Invalidation coordinator to listen on
            page_size: Items per column per page
            snooze_poll_seconds: Board refresh interval while items are snoozed
            max_empty_pages: Consecutive empty pages the auto pager loads through
            max_auto_summarize: Cap on items summarized in one batch
            on_notice: Receives transient user-facing notices
        """
        self.api = api
        self.orchestrator = orchestrator
        self.engine = engine
        self.page_size = page_size
        self.max_empty_pages = max_empty_pages
        self.max_auto_summarize = max_auto_summarize
        self._columns: List[KanbanColumn] = list(DEFAULT_KANBAN_COLUMNS)
        self._chains: Dict[str, PageChain] = {}
        self._pagers: Dict[str, AutoPager] = {}
        self._active_label: Optional[str] = None
        self._summarize_requested: set = set()
        self.snooze = SnoozeWatcher(
            refresh=self._refresh_active_board,
            poll_seconds=snooze_poll_seconds,
            on_wake=on_notice,
        )
        self._remove_listener = coordinator.add_listener(self._on_invalidated)

    # === Columns ===

    @property
    def columns(self) -> List[KanbanColumn]:
        return sorted(self._columns, key=lambda c: c.order)

    @property
    def statuses(self) -> List[str]:
        """Column ids in display order."""
        return [c.id for c in self.columns]

    async def get_columns(self) -> List[KanbanColumn]:
        """Column configuration (cache-first, defaults when unreachable)."""

        async def fetch():
            columns = await self.api.get_kanban_columns()
            return {"columns": [c.model_dump(mode="json") for c in columns]}

        try:
            result = await self.orchestrator.read(Resource(Namespace.KANBAN_COLUMNS, KANBAN_COLUMNS_KEY), fetch)
        except NetworkFailure as e:
            logger.warning("Using default kanban columns: %s", e)
            return self.columns

        columns = [KanbanColumn.model_validate(c) for c in result.payload.get("columns", [])]
        if columns:
            self._columns = columns
        return self.columns

    async def update_columns(
        self,
        columns: List[KanbanColumn],
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        """Replace the column configuration."""
        columns_key = (Namespace.KANBAN_COLUMNS, KANBAN_COLUMNS_KEY)
        new_payload = {"columns": [c.model_dump(mode="json") for c in columns]}

        def patch(snapshot: MutationSnapshot):
            return {columns_key: new_payload}

        mutation = Mutation(
            kind=EventKind.UPDATE_COLUMNS,
            send=lambda: self.api.update_kanban_columns(columns),
            affected=AffectedKeys(keys=(columns_key,)),
            patch=patch,
            error_message="Failed to save columns",
        )
        result = await self.engine.execute(mutation, on_success, on_error)
        if result.ok:
            self._columns = list(result.data or columns)
        return result

    # === Board reads ===

    def _chain(self, label: Optional[str] = None) -> PageChain:
        scope = board_scope(label)
        chain = self._chains.get(scope)
        if chain is None:

            async def fetch_page(cursor: Optional[str]):
                page = await self.api.get_kanban_board(label=label, cursor=cursor, page_size=self.page_size)
                return page.model_dump(mode="json")

            chain = PageChain(self.orchestrator, Namespace.KANBAN_BOARDS, scope, fetch_page)
            self._chains[scope] = chain
            self._pagers[scope] = AutoPager(self.max_empty_pages)
        return chain

    def _merged(self, label: Optional[str] = None) -> Board:
        return self._chain(label).merged_board(self.statuses)

    async def get_board(self, label: Optional[str] = None) -> ModelBoard:
        """First board page (cache-first; refreshed in the background).

        Returns:
            Merged columns of the pages loaded so far
        """
        self._active_label = label
        result = await self._chain(label).load_first()
        self._adopt_column_config(result.payload)
        board = self._merged(label)
        self.snooze.observe_board(board)
        return to_models(board)

    def _adopt_column_config(self, payload) -> None:
        config = payload.get("column_config") if isinstance(payload, dict) else None
        if config:
            self._columns = [KanbanColumn.model_validate(c) for c in config]

    async def load_more(
        self,
        label: Optional[str] = None,
        filters: Optional[BoardFilters] = None,
        sentinel_visible: bool = True,
    ) -> Optional[ReadResult]:
        """Load the next board page when the auto pager allows it."""
        chain = self._chain(label)
        pager = self._pagers[board_scope(label)]
        result = await pager.maybe_load(
            chain,
            sentinel_visible=sentinel_visible,
            filter_active=bool(filters and filters.is_active),
        )
        if result is not None:
            self.snooze.observe_board(self._merged(label))
        return result

    def has_more(self, label: Optional[str] = None) -> bool:
        return self._chain(label).has_more

    def board_view(self, filters: Optional[BoardFilters] = None, label: Optional[str] = None) -> ModelBoard:
        """Merged board with client-side filters and sorting applied."""
        board = self._merged(label)
        return to_models(apply_board_view(board, filters or BoardFilters(), self.statuses))

    async def _refresh_active_board(self) -> Optional[Board]:
        chain = self._chain(self._active_label)
        await chain.reload(force=True)
        return self._merged(self._active_label)

    # === Board mutations ===

    async def move(
        self,
        message_id: str,
        to_status: str,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        """Move an item to another column (prepended)."""
        column = next((c for c in self._columns if c.id == to_status), None)
        gmail_label = column.gmail_label if column else None
        mutation = move_mutation(
            message_id,
            to_status,
            send=lambda: self.api.update_kanban_status(message_id, to_status, gmail_label),
        )
        return await self.engine.execute(mutation, on_success, on_error)

    async def snooze_item(
        self,
        message_id: str,
        until: Union[datetime, str],
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        """Snooze an item and watch for it to come back."""
        until_iso = until.isoformat() if isinstance(until, datetime) else until
        mutation = snooze_mutation(
            message_id,
            send=lambda: self.api.snooze_kanban_item(message_id, until_iso),
        )
        result = await self.engine.execute(mutation, on_success, on_error)
        if result.ok:
            self.snooze.track(message_id)
        return result

    async def summarize(
        self,
        message_id: str,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        """Request an AI summary for an item."""
        self._summarize_requested.add(message_id)
        mutation = summarize_mutation(message_id, send=lambda: self.api.summarize_kanban_item(message_id))
        result = await self.engine.execute(mutation, on_success, on_error)
        if not result.ok:
            self._summarize_requested.discard(message_id)
        return result

    def auto_summarize_candidates(self, label: Optional[str] = None) -> List[KanbanItem]:
        """Loaded items without a summary that were not requested yet."""
        items = flatten_board(self._merged(label), self.statuses)
        need = [
            i
            for i in items
            if not i.get("summary") and i.get("message_id") not in self._summarize_requested
        ]
        return [KanbanItem.model_validate(i) for i in need[: self.max_auto_summarize]]

    async def auto_summarize(self, label: Optional[str] = None) -> List[MutationResult]:
        """Summarize the current candidates concurrently."""
        candidates = self.auto_summarize_candidates(label)
        return list(await asyncio.gather(*(self.summarize(i.message_id) for i in candidates)))

    # === Uncached ===

    async def search(self, query: str) -> List[KanbanItem]:
        return await self.api.search_kanban(query)

    async def semantic_search(self, query: str, limit: Optional[int] = None) -> List[KanbanItem]:
        return await self.api.semantic_search_kanban(query, limit=limit)

    # === Invalidation ===

    async def _on_invalidated(self, event: InvalidationEvent, regions: List[Region]) -> None:
        if event.kind is EventKind.LOGOUT:
            self.close_chains()
            return
        if not any(r.namespace == Namespace.KANBAN_BOARDS for r in regions):
            return

        for scope, chain in list(self._chains.items()):
            if not chain.cursors:
                continue
            try:
                await chain.reload()
            except NetworkFailure as e:
                logger.warning("Could not refetch board %s after %s: %s", scope, event.kind.value, e)
                continue
            self.snooze.observe_board(chain.merged_board(self.statuses))

    def close_chains(self) -> None:
        for chain in self._chains.values():
            chain.close()
        self._chains.clear()
        self._pagers.clear()

    async def close(self) -> None:
        await self.snooze.close()
        self.close_chains()
        self._remove_listener()
