"""Invalidation coordinator.

Maps events (mutation settles, push notifications, logout) to the cache
regions they make stale through one declarative table, and clears them
through a single entry point.
"""

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..cache.policy import Namespace
from ..cache.store import CacheStore

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Things that make cached data stale."""

    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    STAR = "star"
    UNSTAR = "unstar"
    DELETE = "delete"
    MOVE_COLUMN = "move_column"
    SNOOZE = "snooze"
    SUMMARIZE = "summarize"
    SEND = "send"
    REPLY = "reply"
    FORWARD = "forward"
    UPDATE_COLUMNS = "update_columns"
    # Provider push changes
    MESSAGE_ADDED = "messageAdded"
    MESSAGE_DELETED = "messageDeleted"
    LABEL_ADDED = "labelAdded"
    LABEL_REMOVED = "labelRemoved"
    PUSH_UPDATE = "gmail_update"
    LOGOUT = "logout"


class Granularity(str, Enum):
    ITEM = "item"
    NAMESPACE = "namespace"


@dataclass(frozen=True)
class Region:
    """A namespace, or the single key an event names within it."""

    namespace: Namespace
    granularity: Granularity = Granularity.NAMESPACE


@dataclass(frozen=True)
class InvalidationEvent:
    kind: EventKind
    item_id: Optional[str] = None


DETAIL = Region(Namespace.EMAILS, Granularity.ITEM)
LISTS = Region(Namespace.EMAIL_LISTS)
MAILBOXES = Region(Namespace.MAILBOXES)
BOARDS = Region(Namespace.KANBAN_BOARDS)
COLUMNS = Region(Namespace.KANBAN_COLUMNS)

_PUSH_REGIONS = (DETAIL, LISTS, MAILBOXES, BOARDS)

INVALIDATION_RULES: Dict[EventKind, Tuple[Region, ...]] = {
    EventKind.MARK_READ: (DETAIL, LISTS, MAILBOXES, BOARDS),
    EventKind.MARK_UNREAD: (DETAIL, LISTS, MAILBOXES, BOARDS),
    EventKind.STAR: (DETAIL, LISTS, BOARDS),
    EventKind.UNSTAR: (DETAIL, LISTS, BOARDS),
    EventKind.DELETE: (DETAIL, LISTS, MAILBOXES, BOARDS),
    EventKind.MOVE_COLUMN: (BOARDS,),
    EventKind.SNOOZE: (BOARDS,),
    EventKind.SUMMARIZE: (BOARDS,),
    EventKind.SEND: (LISTS,),
    EventKind.REPLY: (DETAIL, LISTS),
    EventKind.FORWARD: (LISTS,),
    EventKind.UPDATE_COLUMNS: (COLUMNS, BOARDS),
    EventKind.MESSAGE_ADDED: _PUSH_REGIONS,
    EventKind.MESSAGE_DELETED: _PUSH_REGIONS,
    EventKind.LABEL_ADDED: _PUSH_REGIONS,
    EventKind.LABEL_REMOVED: _PUSH_REGIONS,
    EventKind.PUSH_UPDATE: _PUSH_REGIONS,
    EventKind.LOGOUT: tuple(Region(ns) for ns in Namespace),
}

# listener(event, cleared_regions); may return an awaitable
InvalidationListener = Callable[[InvalidationEvent, List[Region]], Any]


class InvalidationCoordinator:
    """Clears the cache regions an event makes stale."""

    def __init__(self, store: CacheStore, orchestrator=None):
        """Initialize coordinator.

        Args:
            store: Injected cache store handle
            orchestrator: Optional FetchOrchestrator whose background fetches
                into cleared namespaces are cancelled first
        """
        self.store = store
        self.orchestrator = orchestrator
        self._listeners: List[InvalidationListener] = []

    def add_listener(self, listener: InvalidationListener) -> Callable[[], None]:
        """Register a listener told which regions were cleared.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @staticmethod
    def regions_for(event: InvalidationEvent) -> List[Region]:
        """Regions an event affects; item regions need the event's item id."""
        return [
            region
            for region in INVALIDATION_RULES.get(event.kind, ())
            if region.granularity is Granularity.NAMESPACE or event.item_id
        ]

    async def invalidate(self, event: InvalidationEvent) -> List[Region]:
        """Clear every region affected by an event.

        Args:
            event: What happened

        Returns:
            The regions that were cleared
        """
        regions = self.regions_for(event)
        logger.debug(
            "Invalidating %s for %s(%s)",
            ", ".join(f"{r.namespace.value}/{r.granularity.value}" for r in regions),
            event.kind.value,
            event.item_id or "",
        )

        for region in regions:
            if region.granularity is Granularity.ITEM:
                key = event.item_id
                if self.orchestrator is not None:
                    await self.orchestrator.cancel([(region.namespace, key)])
                await self.store.delete(region.namespace, key)
            else:
                if self.orchestrator is not None:
                    await self.orchestrator.cancel_namespace(region.namespace)
                await self.store.clear(region.namespace)

        for listener in list(self._listeners):
            try:
                result = listener(event, regions)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Invalidation listener failed for %s", event.kind.value)

        return regions
