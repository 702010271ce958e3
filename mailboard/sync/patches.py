"""Pure patch functions over cached payloads.

Cached payloads are JSON dicts in one of these shapes:

- list page: ``{"items": [...], "meta": {...}}``
- board page: ``{"columns": {status: [...]}, "meta": {...}, ...}``
- detail: a single item dict
- mailboxes: ``{"mailboxes": [{"id", "name", "unread"}]}``

Every function returns a new payload and never mutates its input.
"""

import copy
from typing import Any, Callable, Dict, Iterator, Optional

Item = Dict[str, Any]


def item_id(item: Item) -> Optional[str]:
    """Id of a list item, detail or board item."""
    return item.get("message_id") or item.get("id")


def _is_item(payload: Any) -> bool:
    return isinstance(payload, dict) and "items" not in payload and "columns" not in payload


def iter_items(payload: Any) -> Iterator[Item]:
    """Yield every item held by a payload, whatever its shape."""
    if not isinstance(payload, dict):
        return
    if isinstance(payload.get("items"), list):
        yield from payload["items"]
    elif isinstance(payload.get("columns"), dict):
        for items in payload["columns"].values():
            yield from items
    elif _is_item(payload) and item_id(payload):
        yield payload


def find_item(payload: Any, target_id: str) -> Optional[Item]:
    for item in iter_items(payload):
        if item_id(item) == target_id:
            return item
    return None


def contains_item(payload: Any, target_id: str) -> bool:
    return find_item(payload, target_id) is not None


def map_item(payload: Any, target_id: str, fn: Callable[[Item], Item]) -> Any:
    """Replace the matching item with ``fn(item)`` in a copy of the payload."""
    result = copy.deepcopy(payload)
    if not isinstance(result, dict):
        return result

    if isinstance(result.get("items"), list):
        result["items"] = [fn(i) if item_id(i) == target_id else i for i in result["items"]]
    elif isinstance(result.get("columns"), dict):
        result["columns"] = {
            status: [fn(i) if item_id(i) == target_id else i for i in items]
            for status, items in result["columns"].items()
        }
    elif _is_item(result) and item_id(result) == target_id:
        result = fn(result)
    return result


def set_item_field(payload: Any, target_id: str, field: str, value: Any) -> Any:
    """Set one field on the matching item (read state, star, summary)."""

    def _set(item: Item) -> Item:
        item[field] = value
        return item

    return map_item(payload, target_id, _set)


def remove_item(payload: Any, target_id: str) -> Any:
    """Drop the matching item from a list or board page.

    Detail payloads are returned unchanged.
    """
    result = copy.deepcopy(payload)
    if not isinstance(result, dict):
        return result

    if isinstance(result.get("items"), list):
        result["items"] = [i for i in result["items"] if item_id(i) != target_id]
    elif isinstance(result.get("columns"), dict):
        result["columns"] = {
            status: [i for i in items if item_id(i) != target_id]
            for status, items in result["columns"].items()
        }
    return result


def move_item(payload: Any, target_id: str, to_status: str) -> Any:
    """Move a board item to the front of another column.

    The item leaves whichever column holds it and is prepended to the
    destination with its ``status`` updated. Pages that do not hold the item
    come back unchanged.
    """
    result = copy.deepcopy(payload)
    if not isinstance(result, dict) or not isinstance(result.get("columns"), dict):
        return result

    moved = None
    columns = {}
    for status, items in result["columns"].items():
        kept = []
        for item in items:
            if moved is None and item_id(item) == target_id:
                moved = item
            else:
                kept.append(item)
        columns[status] = kept

    if moved is None:
        return result

    moved["status"] = to_status
    columns[to_status] = [moved] + columns.get(to_status, [])
    result["columns"] = columns
    return result


def adjust_unread(payload: Any, mailbox_id: str, delta: int) -> Any:
    """Shift a mailbox unread counter, never below zero."""
    result = copy.deepcopy(payload)
    if not isinstance(result, dict) or not isinstance(result.get("mailboxes"), list):
        return result

    for mailbox in result["mailboxes"]:
        if mailbox.get("id") == mailbox_id:
            mailbox["unread"] = max(0, (mailbox.get("unread") or 0) + delta)
    return result
