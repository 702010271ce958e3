"""Tests for the invalidation coordinator and push adapter."""

import asyncio

import pytest

from mailboard.cache.policy import MAILBOXES_KEY, Namespace
from mailboard.sync.invalidation import (
    BOARDS,
    COLUMNS,
    DETAIL,
    LISTS,
    MAILBOXES,
    EventKind,
    InvalidationCoordinator,
    InvalidationEvent,
)
from mailboard.sync.orchestrator import Resource
from mailboard.sync.push import PushListener

from .fakes import RecordingCoordinator, board_item, board_page, list_item, list_page


async def fill(store):
    await store.put(Namespace.EMAILS, "e1", list_item("e1"))
    await store.put(Namespace.EMAILS, "e2", list_item("e2"))
    await store.put(Namespace.EMAIL_LISTS, "INBOX:first", list_page([list_item("e1")]))
    await store.put(Namespace.MAILBOXES, MAILBOXES_KEY, {"mailboxes": []})
    await store.put(Namespace.KANBAN_BOARDS, "all:first", board_page({"INBOX": [board_item("m1")]}))
    await store.put(Namespace.KANBAN_COLUMNS, "columns", {"columns": []})


async def present(store):
    return {ns for ns in Namespace if await store.get_all(ns)}


class TestRules:
    def test_read_state_regions(self):
        for kind in (EventKind.MARK_READ, EventKind.MARK_UNREAD):
            regions = InvalidationCoordinator.regions_for(InvalidationEvent(kind, "e1"))
            assert regions == [DETAIL, LISTS, MAILBOXES, BOARDS]

    def test_item_region_needs_item_id(self):
        regions = InvalidationCoordinator.regions_for(InvalidationEvent(EventKind.MARK_READ))
        assert regions == [LISTS, MAILBOXES, BOARDS]

    def test_star_and_delete_reach_board_pages(self):
        for kind in (EventKind.STAR, EventKind.UNSTAR):
            assert InvalidationCoordinator.regions_for(InvalidationEvent(kind, "e1")) == [DETAIL, LISTS, BOARDS]
        regions = InvalidationCoordinator.regions_for(InvalidationEvent(EventKind.DELETE, "e1"))
        assert regions == [DETAIL, LISTS, MAILBOXES, BOARDS]

    def test_board_kinds(self):
        for kind in (EventKind.MOVE_COLUMN, EventKind.SNOOZE, EventKind.SUMMARIZE):
            assert InvalidationCoordinator.regions_for(InvalidationEvent(kind, "m1")) == [BOARDS]

    def test_update_columns(self):
        assert InvalidationCoordinator.regions_for(InvalidationEvent(EventKind.UPDATE_COLUMNS)) == [COLUMNS, BOARDS]

    def test_logout_covers_every_namespace(self):
        regions = InvalidationCoordinator.regions_for(InvalidationEvent(EventKind.LOGOUT))
        assert {r.namespace for r in regions} == set(Namespace)


class TestCoordinator:
    @pytest.mark.asyncio
    async def test_mark_read_clears_detail_key_only(self, store, coordinator):
        await fill(store)

        await coordinator.invalidate(InvalidationEvent(EventKind.MARK_READ, "e1"))

        assert await store.get(Namespace.EMAILS, "e1") is None
        assert await store.get(Namespace.EMAILS, "e2") is not None
        assert await present(store) == {Namespace.EMAILS, Namespace.KANBAN_COLUMNS}

    @pytest.mark.asyncio
    async def test_move_leaves_inbox_regions(self, store, coordinator):
        await fill(store)

        await coordinator.invalidate(InvalidationEvent(EventKind.MOVE_COLUMN, "m1"))

        assert Namespace.KANBAN_BOARDS not in await present(store)
        assert Namespace.EMAIL_LISTS in await present(store)

    @pytest.mark.asyncio
    async def test_logout_clears_everything(self, store, coordinator):
        await fill(store)

        await coordinator.invalidate(InvalidationEvent(EventKind.LOGOUT))

        assert await present(store) == set()

    @pytest.mark.asyncio
    async def test_cancels_background_fetch_before_clearing(self, store, orchestrator, coordinator):
        await store.put(Namespace.EMAIL_LISTS, "INBOX:first", list_page([]), scope_id="INBOX")
        gate = asyncio.Event()

        async def slow_fetch():
            await gate.wait()
            return list_page([list_item("late")])

        await orchestrator.read(Resource(Namespace.EMAIL_LISTS, "INBOX", paginated=True), slow_fetch)
        await coordinator.invalidate(InvalidationEvent(EventKind.SEND))
        gate.set()
        await orchestrator.wait_idle()

        assert await store.get_all(Namespace.EMAIL_LISTS) == []

    @pytest.mark.asyncio
    async def test_listeners_sync_and_async(self, coordinator):
        seen = []

        def sync_listener(event, regions):
            seen.append(("sync", event.kind))

        async def async_listener(event, regions):
            seen.append(("async", [r.namespace for r in regions]))

        coordinator.add_listener(sync_listener)
        remove = coordinator.add_listener(async_listener)

        await coordinator.invalidate(InvalidationEvent(EventKind.SEND))
        remove()
        await coordinator.invalidate(InvalidationEvent(EventKind.FORWARD))

        assert seen == [
            ("sync", EventKind.SEND),
            ("async", [Namespace.EMAIL_LISTS]),
            ("sync", EventKind.FORWARD),
        ]

    @pytest.mark.asyncio
    async def test_failing_listener_is_isolated(self, store, coordinator):
        seen = []

        def broken(event, regions):
            raise RuntimeError("boom")

        coordinator.add_listener(broken)
        coordinator.add_listener(lambda event, regions: seen.append(event))

        regions = await coordinator.invalidate(InvalidationEvent(EventKind.SEND))

        assert regions == [LISTS]
        assert len(seen) == 1


class TestPushListener:
    @pytest.mark.asyncio
    async def test_changes_become_events(self):
        recorder = RecordingCoordinator()
        listener = PushListener(recorder)

        events = await listener.handle(
            {
                "type": "gmail_update",
                "historyId": "9001",
                "changes": [
                    {"type": "messageAdded", "messageId": "m1", "threadId": "t1"},
                    {"type": "labelRemoved", "messageId": "m2", "labelIds": ["UNREAD"]},
                    {"type": "messageAdded", "messageId": "m1"},
                ],
            }
        )

        assert events == [
            InvalidationEvent(EventKind.MESSAGE_ADDED, "m1"),
            InvalidationEvent(EventKind.LABEL_REMOVED, "m2"),
        ]
        assert recorder.events == events
        assert listener.last_history_id == "9001"

    @pytest.mark.asyncio
    async def test_notification_without_changes(self):
        recorder = RecordingCoordinator()

        events = await PushListener(recorder).handle({"type": "gmail_update", "changes": []})

        assert events == [InvalidationEvent(EventKind.PUSH_UPDATE)]

    @pytest.mark.asyncio
    async def test_malformed_payload_ignored(self):
        recorder = RecordingCoordinator()
        listener = PushListener(recorder)

        assert await listener.handle({"type": "gmail_update", "changes": [{"type": "exploded"}]}) == []
        assert await listener.handle("not a dict") == []
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_push_clears_inbox_and_board(self, store, coordinator):
        await fill(store)

        await PushListener(coordinator).handle({"type": "gmail_update", "changes": [{"type": "messageDeleted", "messageId": "e1"}]})

        assert await present(store) == {Namespace.EMAILS, Namespace.KANBAN_COLUMNS}
        assert await store.get(Namespace.EMAILS, "e1") is None
