"""Synchronization core: reads, optimistic writes, merging and invalidation."""

from .invalidation import (
    INVALIDATION_RULES,
    EventKind,
    Granularity,
    InvalidationCoordinator,
    InvalidationEvent,
    Region,
)
from .merge import (
    BoardFilters,
    SortField,
    apply_board_view,
    apply_list_view,
    flatten_board,
    merge_board_pages,
    merge_list_pages,
)
from .mutations import (
    AffectedKeys,
    Mutation,
    MutationEngine,
    MutationResult,
    MutationSnapshot,
    MutationState,
)
from .orchestrator import FetchOrchestrator, ReadResult, ReadSource, Resource
from .pagination import AutoPager, PageChain
from .push import GmailChange, GmailNotification, PushListener
from .snooze import SnoozeWatcher

__all__ = [
    "AffectedKeys",
    "AutoPager",
    "BoardFilters",
    "EventKind",
    "FetchOrchestrator",
    "GmailChange",
    "GmailNotification",
    "Granularity",
    "INVALIDATION_RULES",
    "InvalidationCoordinator",
    "InvalidationEvent",
    "Mutation",
    "MutationEngine",
    "MutationResult",
    "MutationSnapshot",
    "MutationState",
    "PageChain",
    "PushListener",
    "ReadResult",
    "ReadSource",
    "Region",
    "Resource",
    "SnoozeWatcher",
    "SortField",
    "apply_board_view",
    "apply_list_view",
    "flatten_board",
    "merge_board_pages",
    "merge_list_pages",
]
