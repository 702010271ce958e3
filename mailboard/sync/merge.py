"""Reconciliation of fetched pages into one display list.

Pages are merged in fetch order with a seen-id set per column, so an item
that shows up on a later page (because new mail shifted the server's
ordering) is never duplicated. Filters and sorting run on the merged result
and never trigger fetches.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..models.kanban import EmailStatus
from .patches import Item, item_id

Board = Dict[str, List[Item]]


def _dedupe_into(target: List[Item], seen: set, items: Iterable[Item]) -> None:
    for item in items:
        key = item_id(item)
        if key in seen:
            continue
        seen.add(key)
        target.append(item)


def merge_board_pages(pages: Sequence[Dict[str, Any]], statuses: Optional[Sequence[str]] = None) -> Board:
    """Merge board pages into one item list per column.

    Args:
        pages: Board page payloads in the order they were fetched
        statuses: Columns to produce; defaults to every column seen, in order

    Returns:
        Mapping of status to items, first occurrence wins
    """
    if statuses is None:
        ordered: Dict[str, None] = {}
        for page in pages:
            for status in (page.get("columns") or {}):
                ordered.setdefault(status, None)
        statuses = list(ordered)

    board: Board = {status: [] for status in statuses}
    seen: Dict[str, set] = {status: set() for status in statuses}
    for page in pages:
        columns = page.get("columns") or {}
        for status in statuses:
            _dedupe_into(board[status], seen[status], columns.get(status) or [])
    return board


def merge_list_pages(pages: Sequence[Dict[str, Any]]) -> List[Item]:
    """Merge linear list pages, first occurrence wins."""
    merged: List[Item] = []
    seen: set = set()
    for page in pages:
        _dedupe_into(merged, seen, page.get("items") or [])
    return merged


def flatten_board(board: Board, statuses: Optional[Sequence[str]] = None) -> List[Item]:
    """All items of a board, column by column."""
    if statuses is None:
        statuses = list(board)
    return [item for status in statuses for item in board.get(status, [])]


# === Client-side view ===


class SortField(str, Enum):
    DATE = "date"
    SENDER = "sender"


@dataclass(frozen=True)
class BoardFilters:
    """Client-side filters and sort order for a board or list."""

    unread_only: bool = False
    has_attachments: bool = False
    sender: str = ""
    sort_by: SortField = SortField.DATE
    descending: bool = True

    @property
    def is_active(self) -> bool:
        """Whether any filter narrows the items (sorting does not count)."""
        return self.unread_only or self.has_attachments or bool(self.sender.strip())


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return _EPOCH
    else:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _item_time(item: Item) -> datetime:
    return _parse_time(item.get("created_at") or item.get("updated_at") or item.get("timestamp"))


def _is_unread(item: Item) -> bool:
    if item.get("unread") is not None:
        return bool(item["unread"])
    return item.get("status") == EmailStatus.INBOX


def _matches(item: Item, filters: BoardFilters) -> bool:
    if filters.unread_only and not _is_unread(item):
        return False
    if filters.has_attachments and item.get("has_attachments") is not True:
        return False
    term = filters.sender.strip().lower()
    if term:
        name = (item.get("sender_name") or "").lower()
        email = (item.get("sender_email") or "").lower()
        if term not in name and term not in email:
            return False
    return True


def _sorted(items: List[Item], filters: BoardFilters) -> List[Item]:
    if filters.sort_by is SortField.SENDER:
        key = lambda i: (i.get("sender_name") or i.get("sender_email") or "").lower()  # noqa: E731
    else:
        key = _item_time
    # sorted() is stable with reverse=True as well
    return sorted(items, key=key, reverse=filters.descending)


def apply_list_view(items: List[Item], filters: BoardFilters) -> List[Item]:
    """Filter and sort a merged list."""
    return _sorted([i for i in items if _matches(i, filters)], filters)


def apply_board_view(board: Board, filters: BoardFilters, statuses: Optional[Sequence[str]] = None) -> Board:
    """Filter and sort each column of a merged board."""
    if statuses is None:
        statuses = list(board)
    return {status: apply_list_view(board.get(status, []), filters) for status in statuses}
