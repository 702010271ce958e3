"""Tests for page chains and the auto-load policy."""

import pytest

from mailboard.cache.policy import Namespace
from mailboard.errors import NetworkFailure
from mailboard.sync.pagination import AutoPager, PageChain, page_item_count

from .fakes import board_item, board_page, list_item, list_page


class PagedServer:
    """Serves list pages by cursor and counts requests."""

    def __init__(self, pages):
        self.pages = pages
        self.requests = []
        self.fail = False

    async def __call__(self, cursor):
        self.requests.append(cursor)
        if self.fail:
            raise NetworkFailure("offline")
        return self.pages[cursor]


def three_pages():
    return {
        None: list_page([list_item("a"), list_item("b")], next_cursor="t2"),
        "t2": list_page([list_item("b"), list_item("c")], next_cursor="t3"),
        "t3": list_page([list_item("d")]),
    }


class TestPageChain:
    @pytest.mark.asyncio
    async def test_walks_cursors_until_exhausted(self, orchestrator):
        server = PagedServer(three_pages())
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", server)

        assert chain.has_more
        await chain.load_first()
        await chain.load_more()
        await chain.load_more()

        assert server.requests == [None, "t2", "t3"]
        assert not chain.has_more
        assert await chain.load_more() is None
        assert [i["id"] for i in chain.merged_items()] == ["a", "b", "c", "d"]

    @pytest.mark.asyncio
    async def test_pages_cached_under_request_cursor(self, orchestrator, store):
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", PagedServer(three_pages()))

        await chain.load_first()
        await chain.load_more()

        keys = sorted(e.key for e in await store.get_all(Namespace.EMAIL_LISTS))
        assert keys == ["INBOX:first", "INBOX:t2"]

    @pytest.mark.asyncio
    async def test_load_more_without_pages_loads_first(self, orchestrator):
        server = PagedServer(three_pages())
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", server)

        await chain.load_more()

        assert server.requests == [None]

    @pytest.mark.asyncio
    async def test_store_writes_update_loaded_pages(self, orchestrator, store):
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", PagedServer(three_pages()))
        await chain.load_first()

        await store.put(Namespace.EMAIL_LISTS, "INBOX:first", list_page([list_item("z")]), scope_id="INBOX")
        await store.put(Namespace.EMAIL_LISTS, "SENT:first", list_page([list_item("s")]), scope_id="SENT")

        assert [i["id"] for i in chain.merged_items()] == ["z"]

    @pytest.mark.asyncio
    async def test_closed_chain_stops_following_store(self, orchestrator, store):
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", PagedServer(three_pages()))
        await chain.load_first()
        chain.close()

        await store.put(Namespace.EMAIL_LISTS, "INBOX:first", list_page([]), scope_id="INBOX")

        assert [i["id"] for i in chain.merged_items()] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_reload_keeps_depth(self, orchestrator, store):
        server = PagedServer(three_pages())
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", server)
        await chain.load_first()
        await chain.load_more()
        await store.clear(Namespace.EMAIL_LISTS)

        await chain.reload()

        assert chain.cursors == [None, "t2"]
        assert server.requests == [None, "t2", None, "t2"]

    @pytest.mark.asyncio
    async def test_failed_restart_keeps_pages(self, orchestrator, store):
        server = PagedServer(three_pages())
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", server)
        await chain.load_first()
        await store.clear(Namespace.EMAIL_LISTS)
        server.fail = True

        with pytest.raises(NetworkFailure):
            await chain.load_first()

        assert [i["id"] for i in chain.merged_items()] == ["a", "b"]
        assert not chain.is_fetching

    @pytest.mark.asyncio
    async def test_merged_board(self, orchestrator):
        pages = {
            None: board_page({"INBOX": [board_item("a")], "TODO": []}, next_cursor="t2"),
            "t2": board_page({"INBOX": [board_item("a")], "TODO": [board_item("b", "TODO")]}),
        }
        chain = PageChain(orchestrator, Namespace.KANBAN_BOARDS, "all", PagedServer(pages))
        await chain.load_first()
        await chain.load_more()

        board = chain.merged_board(["INBOX", "TODO", "DONE"])

        assert [i["message_id"] for i in board["INBOX"]] == ["a"]
        assert [i["message_id"] for i in board["TODO"]] == ["b"]
        assert board["DONE"] == []


class TestPageItemCount:
    def test_list_and_board(self):
        assert page_item_count(list_page([list_item("a"), list_item("b")])) == 2
        assert page_item_count(board_page({"INBOX": [board_item("a")], "TODO": [board_item("b"), board_item("c")]})) == 3
        assert page_item_count(board_page({})) == 0


class TestAutoPager:
    def test_should_load_requires_every_condition(self):
        pager = AutoPager()

        assert pager.should_load(True, True, False, False)
        assert not pager.should_load(False, True, False, False)
        assert not pager.should_load(True, False, False, False)
        assert not pager.should_load(True, True, True, False)
        assert not pager.should_load(True, True, False, True)

    def test_empty_page_limit(self):
        pager = AutoPager(max_empty_pages=3)
        for _ in range(3):
            pager.record_page(0)

        assert pager.consecutive_empty == 3
        assert not pager.should_load(True, True, False, False)

        pager.record_page(4)
        assert pager.consecutive_empty == 0
        assert pager.should_load(True, True, False, False)

    @pytest.mark.asyncio
    async def test_stops_after_run_of_empty_pages(self, orchestrator):
        pages = {None: list_page([list_item("a")], next_cursor="e1")}
        for n in range(1, 10):
            pages[f"e{n}"] = list_page([], next_cursor=f"e{n + 1}")
        server = PagedServer(pages)
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", server)
        pager = AutoPager(max_empty_pages=3)
        await chain.load_first()

        loaded = 0
        while await pager.maybe_load(chain) is not None:
            loaded += 1

        assert loaded == 3
        assert server.requests == [None, "e1", "e2", "e3"]
        assert pager.consecutive_empty == 3
        assert chain.has_more

    @pytest.mark.asyncio
    async def test_items_after_empty_pages_reset_the_run(self, orchestrator):
        pages = {
            None: list_page([list_item("a")], next_cursor="e1"),
            "e1": list_page([], next_cursor="e2"),
            "e2": list_page([], next_cursor="p3"),
            "p3": list_page([list_item("b")], next_cursor="e4"),
            "e4": list_page([], next_cursor="e5"),
            "e5": list_page([]),
        }
        server = PagedServer(pages)
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", server)
        pager = AutoPager(max_empty_pages=3)
        await chain.load_first()

        while await pager.maybe_load(chain) is not None:
            pass

        assert server.requests == [None, "e1", "e2", "p3", "e4", "e5"]
        assert pager.consecutive_empty == 2
        assert not chain.has_more

    @pytest.mark.asyncio
    async def test_filter_blocks_loading(self, orchestrator):
        server = PagedServer(three_pages())
        chain = PageChain(orchestrator, Namespace.EMAIL_LISTS, "INBOX", server)
        await chain.load_first()

        assert await AutoPager().maybe_load(chain, filter_active=True) is None
        assert await AutoPager().maybe_load(chain, sentinel_visible=False) is None
        assert server.requests == [None]
