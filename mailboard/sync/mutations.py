"""Optimistic mutation engine.

Every write goes through one lifecycle:

1. ``on_mutate``: cancel background fetches for the keys the mutation will
   touch, snapshot them, apply the pure patch and write the result.
2. ``on_error``: restore the patched keys from the snapshot.
3. ``on_settled``: invalidate the affected regions so server truth
   resynchronizes derived fields such as unread counters.

Mutation kinds only differ in which keys they touch and how they patch them;
the builders at the bottom of this module describe each kind.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..cache.policy import MAILBOXES_KEY, CacheKey, Namespace
from ..cache.store import CacheEntry, CacheStore
from ..errors import MailboardError, MutationFailed
from .invalidation import EventKind, InvalidationEvent
from .orchestrator import FetchOrchestrator
from .patches import adjust_unread, contains_item, find_item, move_item, remove_item, set_item_field

logger = logging.getLogger(__name__)


class MutationState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class AffectedKeys:
    """Keys a mutation touches.

    Explicit keys are always included; every entry of a scanned namespace is
    included when its payload holds ``item_id``.
    """

    keys: Tuple[CacheKey, ...] = ()
    scan: Tuple[Namespace, ...] = ()
    item_id: Optional[str] = None


@dataclass
class MutationSnapshot:
    """Pre-mutation values of the affected keys (None when absent)."""

    affected_keys: List[CacheKey]
    prior_values: Dict[CacheKey, Optional[CacheEntry]]
    patched_keys: List[CacheKey] = field(default_factory=list)
    consumed: bool = False

    def payload(self, key: CacheKey) -> Any:
        entry = self.prior_values.get(key)
        return entry.payload if entry is not None else None


# Computes the patched payload for each key that changes
PatchFn = Callable[[MutationSnapshot], Dict[CacheKey, Any]]
# Derives a payload transform from the server response, applied on success
ConfirmFn = Callable[[Any], Optional[Callable[[Any], Any]]]


@dataclass
class Mutation:
    """Description of one optimistic write."""

    kind: EventKind
    send: Callable[[], Awaitable[Any]]
    affected: AffectedKeys = field(default_factory=AffectedKeys)
    patch: Optional[PatchFn] = None
    confirm: Optional[ConfirmFn] = None
    item_id: Optional[str] = None
    error_message: str = "Something went wrong"


@dataclass
class MutationResult:
    kind: EventKind
    state: MutationState
    data: Any = None
    error: Optional[MutationFailed] = None

    @property
    def ok(self) -> bool:
        return self.state is MutationState.SUCCESS

    @property
    def message(self) -> Optional[str]:
        return self.error.user_message if self.error else None


SuccessCallback = Callable[[MutationResult], None]
ErrorCallback = Callable[[MutationFailed], None]


class MutationEngine:
    """Runs mutations against the cache store with snapshot and rollback."""

    def __init__(self, store: CacheStore, orchestrator: FetchOrchestrator, coordinator):
        """Initialize engine.

        Args:
            store: Injected cache store handle
            orchestrator: Fetch orchestrator whose background fetches are cancelled
            coordinator: Object with ``async invalidate(event)``
        """
        self.store = store
        self.orchestrator = orchestrator
        self.coordinator = coordinator
        self._begin_lock = asyncio.Lock()

    async def resolve_keys(self, affected: AffectedKeys) -> List[CacheKey]:
        """Expand AffectedKeys into concrete cache keys, in a stable order."""
        keys: List[CacheKey] = list(affected.keys)
        if affected.item_id:
            for namespace in affected.scan:
                for entry in await self.store.get_all(namespace):
                    if contains_item(entry.payload, affected.item_id):
                        keys.append((namespace, entry.key))
        return list(dict.fromkeys(keys))

    async def on_mutate(self, mutation: Mutation) -> MutationSnapshot:
        """Cancel in-flight fetches, snapshot and apply the optimistic patch.

        Returns:
            Snapshot to roll back from
        """
        async with self._begin_lock:
            affected = mutation.affected
            await self.orchestrator.cancel(affected.keys)
            for namespace in affected.scan:
                await self.orchestrator.cancel_namespace(namespace)

            keys = await self.resolve_keys(affected)
            self.orchestrator.pause(keys)
            try:
                return await self._apply_patch(mutation, keys)
            except BaseException:
                self.orchestrator.resume(keys)
                raise

    async def _apply_patch(self, mutation: Mutation, keys: List[CacheKey]) -> MutationSnapshot:
        prior: Dict[CacheKey, Optional[CacheEntry]] = {}
        for namespace, key in keys:
            prior[(namespace, key)] = await self.store.get(namespace, key)
        snapshot = MutationSnapshot(affected_keys=keys, prior_values=prior)

        if mutation.patch is None:
            return snapshot

        try:
            for cache_key, payload in mutation.patch(snapshot).items():
                entry = prior.get(cache_key)
                if entry is None or payload == entry.payload:
                    continue
                namespace, key = cache_key
                # Keep the original timestamp so a patch never refreshes staleness
                await self.store.set(
                    namespace,
                    CacheEntry(
                        key=key,
                        namespace=namespace,
                        payload=payload,
                        cached_at=entry.cached_at,
                        scope_id=entry.scope_id,
                    ),
                )
                snapshot.patched_keys.append(cache_key)
        except BaseException:
            await self.on_error(snapshot)
            raise

        logger.debug(
            "Applied %s optimistically to %d key(s)",
            mutation.kind.value,
            len(snapshot.patched_keys),
        )
        return snapshot

    async def on_error(self, snapshot: MutationSnapshot) -> None:
        """Restore every key this mutation patched, at most once."""
        if snapshot.consumed:
            return
        snapshot.consumed = True

        for namespace, key in snapshot.patched_keys:
            prior = snapshot.prior_values.get((namespace, key))
            if prior is None:
                await self.store.delete(namespace, key)
            else:
                await self.store.set(namespace, prior)

    async def on_settled(self, mutation: Mutation, snapshot: MutationSnapshot) -> None:
        """Invalidate the regions the mutation affected."""
        snapshot.consumed = True
        self.orchestrator.resume(snapshot.affected_keys)
        await self.coordinator.invalidate(InvalidationEvent(mutation.kind, mutation.item_id))

    async def _apply_confirmed(
        self,
        transform: Callable[[Any], Any],
        snapshot: MutationSnapshot,
    ) -> None:
        for namespace, key in snapshot.affected_keys:
            current = await self.store.get(namespace, key)
            if current is None:
                continue
            payload = transform(current.payload)
            if payload != current.payload:
                await self.store.set(
                    namespace,
                    CacheEntry(
                        key=key,
                        namespace=namespace,
                        payload=payload,
                        cached_at=current.cached_at,
                        scope_id=current.scope_id,
                    ),
                )

    async def execute(
        self,
        mutation: Mutation,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        """Run a mutation through its full lifecycle.

        Failures of the remote call are rolled back and reported in the
        result; they are not raised.

        Args:
            mutation: What to run
            on_success: Called with the result after a confirmed write
            on_error: Called with the MutationFailed after a rollback

        Returns:
            MutationResult in SUCCESS or FAILURE state
        """
        snapshot = await self.on_mutate(mutation)
        try:
            try:
                data = await mutation.send()
            except MailboardError as e:
                await self.on_error(snapshot)
                logger.warning("%s failed, rolled back: %s", mutation.kind.value, e)
                result = MutationResult(
                    kind=mutation.kind,
                    state=MutationState.FAILURE,
                    error=MutationFailed(mutation.error_message, cause=e),
                )
            except asyncio.CancelledError:
                await self.on_error(snapshot)
                raise
            except Exception:
                await self.on_error(snapshot)
                logger.exception("%s crashed, rolled back", mutation.kind.value)
                raise
            else:
                if mutation.confirm is not None:
                    transform = mutation.confirm(data)
                    if transform is not None:
                        await self._apply_confirmed(transform, snapshot)
                result = MutationResult(kind=mutation.kind, state=MutationState.SUCCESS, data=data)
        finally:
            await self.on_settled(mutation, snapshot)

        if result.ok and on_success is not None:
            on_success(result)
        elif not result.ok and on_error is not None:
            on_error(result.error)
        return result


# === Mutation kinds ===

_PAGE_NAMESPACES = (Namespace.EMAIL_LISTS, Namespace.KANBAN_BOARDS)


def last_known_unread(snapshot: MutationSnapshot, target_id: str) -> Optional[bool]:
    """Read state of an item before the mutation: detail entry first, then pages."""
    detail = snapshot.payload((Namespace.EMAILS, target_id))
    if isinstance(detail, dict) and detail.get("unread") is not None:
        return detail["unread"]

    for key in snapshot.affected_keys:
        if key[0] not in _PAGE_NAMESPACES:
            continue
        item = find_item(snapshot.payload(key), target_id)
        if item is not None and item.get("unread") is not None:
            return item["unread"]
    return None


def _mailbox_of(snapshot: MutationSnapshot, target_id: str) -> Optional[str]:
    for key in snapshot.affected_keys:
        item = find_item(snapshot.payload(key), target_id)
        if item is not None and item.get("mailbox_id"):
            return item["mailbox_id"]
    return None


def _set_field_everywhere(snapshot: MutationSnapshot, target_id: str, name: str, value) -> Dict[CacheKey, Any]:
    changes = {}
    for key in snapshot.affected_keys:
        if key[0] == Namespace.MAILBOXES:
            continue
        payload = snapshot.payload(key)
        if payload is not None:
            changes[key] = set_item_field(payload, target_id, name, value)
    return changes


def read_state_mutation(
    email_id: str,
    unread: bool,
    send: Callable[[], Awaitable[Any]],
    mailbox_id: Optional[str] = None,
) -> Mutation:
    """Mark an email read (``unread=False``) or unread.

    The mailbox counter moves by one only when the last known local read
    state differs from the target, so repeating a mutation never double
    counts.
    """
    counter_key = (Namespace.MAILBOXES, MAILBOXES_KEY)

    def patch(snapshot: MutationSnapshot) -> Dict[CacheKey, Any]:
        changes = _set_field_everywhere(snapshot, email_id, "unread", unread)

        prior = last_known_unread(snapshot, email_id)
        scope = mailbox_id or _mailbox_of(snapshot, email_id)
        counter = snapshot.payload(counter_key)
        if prior is not None and prior != unread and scope and counter is not None:
            changes[counter_key] = adjust_unread(counter, scope, 1 if unread else -1)
        return changes

    return Mutation(
        kind=EventKind.MARK_UNREAD if unread else EventKind.MARK_READ,
        send=send,
        affected=AffectedKeys(
            keys=((Namespace.EMAILS, email_id), counter_key),
            scan=_PAGE_NAMESPACES,
            item_id=email_id,
        ),
        patch=patch,
        item_id=email_id,
        error_message="Failed to modify email",
    )


def starred_mutation(email_id: str, starred: bool, send: Callable[[], Awaitable[Any]]) -> Mutation:
    """Star or unstar an email."""

    def patch(snapshot: MutationSnapshot) -> Dict[CacheKey, Any]:
        return _set_field_everywhere(snapshot, email_id, "starred", starred)

    return Mutation(
        kind=EventKind.STAR if starred else EventKind.UNSTAR,
        send=send,
        affected=AffectedKeys(
            keys=((Namespace.EMAILS, email_id),),
            scan=_PAGE_NAMESPACES,
            item_id=email_id,
        ),
        patch=patch,
        item_id=email_id,
        error_message="Failed to modify email",
    )


def delete_mutation(email_id: str, send: Callable[[], Awaitable[Any]]) -> Mutation:
    """Delete an email from every cached page; its detail entry is left for invalidation."""

    def patch(snapshot: MutationSnapshot) -> Dict[CacheKey, Any]:
        return {key: remove_item(snapshot.payload(key), email_id) for key in snapshot.affected_keys}

    return Mutation(
        kind=EventKind.DELETE,
        send=send,
        affected=AffectedKeys(scan=_PAGE_NAMESPACES, item_id=email_id),
        patch=patch,
        item_id=email_id,
        error_message="Failed to delete email",
    )


def move_mutation(message_id: str, to_status: str, send: Callable[[], Awaitable[Any]]) -> Mutation:
    """Move a board item to the front of another column."""

    def patch(snapshot: MutationSnapshot) -> Dict[CacheKey, Any]:
        return {key: move_item(snapshot.payload(key), message_id, to_status) for key in snapshot.affected_keys}

    return Mutation(
        kind=EventKind.MOVE_COLUMN,
        send=send,
        affected=AffectedKeys(scan=(Namespace.KANBAN_BOARDS,), item_id=message_id),
        patch=patch,
        item_id=message_id,
        error_message="Failed to update status",
    )


def summarize_mutation(message_id: str, send: Callable[[], Awaitable[str]]) -> Mutation:
    """Request an AI summary; the text is patched in once the server returns it."""

    def confirm(summary: str) -> Optional[Callable[[Any], Any]]:
        if not summary:
            return None
        return lambda payload: set_item_field(payload, message_id, "summary", summary)

    return Mutation(
        kind=EventKind.SUMMARIZE,
        send=send,
        affected=AffectedKeys(scan=(Namespace.KANBAN_BOARDS,), item_id=message_id),
        confirm=confirm,
        item_id=message_id,
        error_message="Failed to summarize email",
    )


def snooze_mutation(message_id: str, send: Callable[[], Awaitable[Any]]) -> Mutation:
    """Snooze a board item; the server decides where it goes."""
    return Mutation(
        kind=EventKind.SNOOZE,
        send=send,
        item_id=message_id,
        error_message="Failed to snooze email",
    )


def compose_mutation(
    kind: EventKind,
    send: Callable[[], Awaitable[Any]],
    email_id: Optional[str] = None,
) -> Mutation:
    """Send, reply or forward; nothing is patched, lists are invalidated."""
    messages = {
        EventKind.SEND: "Failed to send email",
        EventKind.REPLY: "Failed to send reply",
        EventKind.FORWARD: "Failed to forward email",
    }
    return Mutation(
        kind=kind,
        send=send,
        item_id=email_id,
        error_message=messages.get(kind, "Failed to send email"),
    )
