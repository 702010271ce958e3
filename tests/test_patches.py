"""Tests for pure payload patch functions."""

import copy

from mailboard.sync.patches import (
    adjust_unread,
    contains_item,
    find_item,
    item_id,
    move_item,
    remove_item,
    set_item_field,
)

from .fakes import board_item, board_page, list_item, list_page


class TestItemLookup:
    def test_item_id_prefers_message_id(self):
        assert item_id({"message_id": "m1", "id": "x"}) == "m1"
        assert item_id({"id": "e1"}) == "e1"

    def test_find_in_each_shape(self):
        page = list_page([list_item("e1"), list_item("e2")])
        board = board_page({"INBOX": [board_item("m1")], "TODO": [board_item("m2", "TODO")]})
        detail = list_item("e9")

        assert find_item(page, "e2")["id"] == "e2"
        assert find_item(board, "m2")["status"] == "TODO"
        assert find_item(detail, "e9") is not None
        assert not contains_item(page, "zzz")

    def test_mailbox_summary_holds_no_items(self):
        assert not contains_item({"mailboxes": [{"id": "INBOX", "name": "Inbox", "unread": 3}]}, "INBOX")


class TestSetItemField:
    def test_list_page(self):
        page = list_page([list_item("e1", unread=True), list_item("e2", unread=True)])
        before = copy.deepcopy(page)

        patched = set_item_field(page, "e1", "unread", False)

        assert [i["unread"] for i in patched["items"]] == [False, True]
        assert page == before

    def test_board_page(self):
        board = board_page({"INBOX": [board_item("m1")], "TODO": [board_item("m2", "TODO")]})

        patched = set_item_field(board, "m2", "summary", "tl;dr")

        assert patched["columns"]["TODO"][0]["summary"] == "tl;dr"
        assert patched["columns"]["INBOX"][0]["summary"] is None
        assert board["columns"]["TODO"][0]["summary"] is None

    def test_detail(self):
        detail = list_item("e1", unread=False)

        assert set_item_field(detail, "e1", "starred", True)["starred"] is True
        assert set_item_field(detail, "other", "starred", True) == detail

    def test_deterministic(self):
        page = list_page([list_item("e1")])
        assert set_item_field(page, "e1", "unread", True) == set_item_field(page, "e1", "unread", True)


class TestRemoveItem:
    def test_removes_from_list(self):
        page = list_page([list_item("e1"), list_item("e2")])

        patched = remove_item(page, "e1")

        assert [i["id"] for i in patched["items"]] == ["e2"]
        assert len(page["items"]) == 2

    def test_removes_from_every_column(self):
        board = board_page({"INBOX": [board_item("m1")], "TODO": [board_item("m2", "TODO")]})

        patched = remove_item(board, "m1")

        assert patched["columns"]["INBOX"] == []
        assert len(patched["columns"]["TODO"]) == 1

    def test_detail_untouched(self):
        detail = list_item("e1")
        assert remove_item(detail, "e1") == detail


class TestMoveItem:
    def _board(self):
        return board_page(
            {
                "INBOX": [board_item("a"), board_item("b")],
                "TODO": [board_item("c", "TODO")],
                "DONE": [],
            }
        )

    def test_prepends_to_destination(self):
        patched = move_item(self._board(), "b", "TODO")

        assert [i["message_id"] for i in patched["columns"]["TODO"]] == ["b", "c"]
        assert patched["columns"]["TODO"][0]["status"] == "TODO"
        assert [i["message_id"] for i in patched["columns"]["INBOX"]] == ["a"]

    def test_column_conservation(self):
        board = self._board()
        patched = move_item(board, "a", "DONE")

        def count(b):
            return sum(len(items) for items in b["columns"].values())

        def where(b, target):
            return [s for s, items in b["columns"].items() if any(i["message_id"] == target for i in items)]

        assert count(patched) == count(board)
        assert where(patched, "a") == ["DONE"]

    def test_creates_missing_destination(self):
        patched = move_item(self._board(), "a", "IN_PROGRESS")
        assert [i["message_id"] for i in patched["columns"]["IN_PROGRESS"]] == ["a"]

    def test_page_without_item_unchanged(self):
        board = self._board()
        assert move_item(board, "zzz", "DONE") == board

    def test_input_not_mutated(self):
        board = self._board()
        before = copy.deepcopy(board)
        move_item(board, "a", "DONE")
        assert board == before


class TestAdjustUnread:
    def test_increment_and_decrement(self):
        summary = {"mailboxes": [{"id": "INBOX", "name": "Inbox", "unread": 5}, {"id": "SENT", "name": "Sent", "unread": 0}]}

        assert adjust_unread(summary, "INBOX", 1)["mailboxes"][0]["unread"] == 6
        assert adjust_unread(summary, "INBOX", -1)["mailboxes"][0]["unread"] == 4
        assert summary["mailboxes"][0]["unread"] == 5

    def test_never_negative(self):
        summary = {"mailboxes": [{"id": "SENT", "name": "Sent", "unread": 0}]}
        assert adjust_unread(summary, "SENT", -1)["mailboxes"][0]["unread"] == 0
