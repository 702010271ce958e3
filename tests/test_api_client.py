"""Tests for MailApiClient against a mocked transport."""

import json

import httpx
import pytest

from mailboard.api.client import MailApiClient
from mailboard.errors import NetworkFailure
from mailboard.models.email import ModifyEmailData


class Backend:
    """Routes requests to canned responses and keeps them for inspection."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"status": "error", "message": "not found"})
        if isinstance(route, httpx.Response):
            return route
        return httpx.Response(200, json=route)


def make_client(routes, token="tok-123"):
    backend = Backend(routes)
    client = MailApiClient(
        "http://api.test/",
        token_provider=lambda: token,
        transport=httpx.MockTransport(backend),
    )
    return client, backend


class TestEnvelopes:
    @pytest.mark.asyncio
    async def test_mailboxes(self):
        client, backend = make_client(
            {
                ("GET", "/api/mailboxes"): {
                    "status": "success",
                    "data": {"mailboxes": [{"id": "INBOX", "name": "Inbox", "unread": 4}]},
                }
            }
        )

        mailboxes = await client.get_mailboxes()
        await client.close()

        assert [(m.id, m.unread) for m in mailboxes] == [("INBOX", 4)]
        assert backend.requests[0].headers["Authorization"] == "Bearer tok-123"

    @pytest.mark.asyncio
    async def test_email_page_with_cursor(self):
        client, backend = make_client(
            {
                ("GET", "/api/mailboxes/INBOX/emails"): {
                    "status": "success",
                    "data": {
                        "data": [
                            {"id": "INBOX|1", "mailboxId": "INBOX", "senderName": "Ann", "unread": True},
                        ],
                        "meta": {"nextPageToken": "tok2", "hasMore": True},
                    },
                }
            }
        )

        page = await client.get_mailbox_emails("INBOX", cursor="tok1", page_size=10)
        await client.close()

        assert page.items[0].sender_name == "Ann"
        assert page.items[0].unread is True
        assert page.meta.next_cursor == "tok2"
        assert backend.requests[0].url.params["pageToken"] == "tok1"
        assert backend.requests[0].url.params["limit"] == "10"

    @pytest.mark.asyncio
    async def test_none_params_are_dropped(self):
        client, backend = make_client(
            {("GET", "/api/mailboxes/INBOX/emails"): {"status": "success", "data": {"data": []}}}
        )

        await client.get_mailbox_emails("INBOX")
        await client.close()

        assert "pageToken" not in backend.requests[0].url.params

    @pytest.mark.asyncio
    async def test_board_columns_and_config(self):
        client, _ = make_client(
            {
                ("GET", "/api/kanban/board"): {
                    "status": "success",
                    "data": {
                        "INBOX": [{"messageId": "m1", "status": "INBOX"}],
                        "TODO": [],
                    },
                    "meta": {"nextPageToken": None, "hasMore": False},
                    "columns": [{"id": "TODO", "name": "To Do", "order": 1}],
                }
            }
        )

        board = await client.get_kanban_board()
        await client.close()

        assert list(board.columns) == ["INBOX", "TODO"]
        assert board.columns["INBOX"][0].message_id == "m1"
        assert board.column_config[0].name == "To Do"

    @pytest.mark.asyncio
    async def test_modify_posts_camel_case(self):
        client, backend = make_client(
            {("POST", "/api/emails/INBOX|1/modify"): httpx.Response(204)}
        )

        await client.modify_email("INBOX|1", ModifyEmailData(mark_read=True))
        await client.close()

        body = json.loads(backend.requests[0].content)
        assert body["markRead"] is True
        assert body["delete"] is False

    @pytest.mark.asyncio
    async def test_summary_text(self):
        client, _ = make_client(
            {("POST", "/api/kanban/items/m1/summarize"): {"status": "success", "data": {"summary": "tl;dr"}}}
        )

        assert await client.summarize_kanban_item("m1") == "tl;dr"
        await client.close()


class TestErrors:
    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client, _ = make_client({("GET", "/api/mailboxes"): httpx.Response(401)})

        with pytest.raises(NetworkFailure) as excinfo:
            await client.get_mailboxes()
        await client.close()

        assert excinfo.value.status_code == 401

    @pytest.mark.asyncio
    async def test_error_envelope(self):
        client, _ = make_client(
            {("GET", "/api/mailboxes"): {"status": "error", "message": "quota exceeded"}}
        )

        with pytest.raises(NetworkFailure, match="quota exceeded"):
            await client.get_mailboxes()
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def broken(request):
            raise httpx.ConnectError("refused", request=request)

        client = MailApiClient("http://api.test", transport=httpx.MockTransport(broken))

        with pytest.raises(NetworkFailure) as excinfo:
            await client.get_mailboxes()
        await client.close()

        assert excinfo.value.status_code is None

    @pytest.mark.asyncio
    async def test_malformed_item(self):
        client, _ = make_client(
            {("GET", "/api/emails/e1"): {"status": "success", "data": {"subject": "no id"}}}
        )

        with pytest.raises(NetworkFailure, match="Malformed email detail"):
            await client.get_email_detail("e1")
        await client.close()

    @pytest.mark.asyncio
    async def test_no_token_no_header(self):
        client, backend = make_client(
            {("GET", "/api/kanban/columns"): {"status": "success", "data": {"columns": []}}},
            token=None,
        )

        assert await client.get_kanban_columns() == []
        await client.close()

        assert "Authorization" not in backend.requests[0].headers
