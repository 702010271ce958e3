"""HTTP client for the Mailboard backend API.

Every endpoint returns an envelope ``{status, data, meta?}``. Transport and
HTTP errors are converted to :class:`NetworkFailure`; timeouts are left to
httpx and surface the same way.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..errors import NetworkFailure
from ..models.email import (
    EmailDetail,
    EmailListItem,
    EmailListPage,
    Mailbox,
    ModifyEmailData,
    PageMeta,
    ReplyEmailData,
    SendEmailData,
)
from ..models.kanban import BoardPage, KanbanColumn, KanbanItem

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


def _safe_id(value: str) -> str:
    return quote(value, safe="")


class MailApiClient:
    """Async client for the mail and kanban endpoints."""

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize API client.

        Args:
            base_url: Backend base URL
            token_provider: Returns the current bearer token (auth is external)
            timeout: Transport timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token_provider = token_provider
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a request and return the decoded envelope.

        Raises:
            NetworkFailure: On transport errors, HTTP errors or error envelopes
        """
        client = await self._get_client()
        headers = {}
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await client.request(method, path, params=params, json=json, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.debug("%s %s failed with HTTP %s", method, path, status)
            raise NetworkFailure(f"{method} {path} returned HTTP {status}", status_code=status) from e
        except httpx.HTTPError as e:
            logger.debug("%s %s failed: %s", method, path, e)
            raise NetworkFailure(f"{method} {path} failed: {e}") from e

        if not response.content:
            return {"status": "success", "data": None}

        try:
            envelope = response.json()
        except ValueError as e:
            raise NetworkFailure(f"{method} {path} returned invalid JSON") from e

        if not isinstance(envelope, dict):
            raise NetworkFailure(f"{method} {path} returned an unexpected body")
        if envelope.get("status", "success") != "success":
            message = envelope.get("message") or "request rejected"
            raise NetworkFailure(f"{method} {path}: {message}", status_code=response.status_code)
        return envelope

    @staticmethod
    def _parse(model, data: Any, what: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise NetworkFailure(f"Malformed {what} in response: {e.error_count()} error(s)") from e

    # === Mailboxes & emails ===

    async def get_mailboxes(self) -> List[Mailbox]:
        """Fetch all mailboxes (labels) with unread counters."""
        envelope = await self._request("GET", "/api/mailboxes")
        mailboxes = (envelope.get("data") or {}).get("mailboxes", [])
        return [self._parse(Mailbox, m, "mailbox") for m in mailboxes]

    def _parse_email_page(self, envelope: Dict[str, Any]) -> EmailListPage:
        data = envelope.get("data") or {}
        items = [self._parse(EmailListItem, i, "email") for i in data.get("data", [])]
        meta = self._parse(PageMeta, data.get("meta") or envelope.get("meta") or {}, "page meta")
        return EmailListPage(items=items, meta=meta)

    async def get_mailbox_emails(
        self,
        mailbox_id: str,
        cursor: Optional[str] = None,
        page_size: int = 20,
    ) -> EmailListPage:
        """Fetch one page of a mailbox using token pagination.

        Args:
            mailbox_id: Gmail label id (e.g. "INBOX")
            cursor: Token from the previous page (None for the first page)
            page_size: Number of emails per request
        """
        envelope = await self._request(
            "GET",
            f"/api/mailboxes/{_safe_id(mailbox_id)}/emails",
            params={"pageToken": cursor, "limit": page_size},
        )
        return self._parse_email_page(envelope)

    async def get_email_detail(self, email_id: str) -> EmailDetail:
        """Fetch the full email, including body and attachment metadata."""
        envelope = await self._request("GET", f"/api/emails/{_safe_id(email_id)}")
        return self._parse(EmailDetail, envelope.get("data"), "email detail")

    async def search_emails(
        self,
        query: str,
        cursor: Optional[str] = None,
        page_size: int = 20,
    ) -> EmailListPage:
        """Search across all labels with Gmail query syntax."""
        envelope = await self._request(
            "GET",
            "/api/emails/search",
            params={"q": query, "pageToken": cursor, "limit": page_size},
        )
        return self._parse_email_page(envelope)

    async def send_email(self, data: SendEmailData) -> str:
        """Send a new email.

        Returns:
            Id of the sent message
        """
        envelope = await self._request(
            "POST", "/api/emails/send", json=data.model_dump(by_alias=True)
        )
        return (envelope.get("data") or {}).get("messageId", "")

    async def reply_email(self, email_id: str, data: ReplyEmailData) -> str:
        """Reply to an email.

        Returns:
            Id of the reply message
        """
        envelope = await self._request(
            "POST",
            f"/api/emails/{_safe_id(email_id)}/reply",
            json=data.model_dump(by_alias=True),
        )
        return (envelope.get("data") or {}).get("messageId", "")

    async def forward_email(self, email_id: str, data: SendEmailData) -> str:
        """Forward an email.

        Returns:
            Id of the forwarded message
        """
        envelope = await self._request(
            "POST",
            f"/api/emails/{_safe_id(email_id)}/forward",
            json=data.model_dump(by_alias=True),
        )
        return (envelope.get("data") or {}).get("messageId", "")

    async def modify_email(self, email_id: str, actions: ModifyEmailData) -> None:
        """Mark read/unread, star/unstar or delete an email."""
        await self._request(
            "POST",
            f"/api/emails/{_safe_id(email_id)}/modify",
            json=actions.model_dump(by_alias=True),
        )

    async def start_watch(self) -> Tuple[str, str]:
        """Start provider push notifications.

        Returns:
            (history_id, expiration)
        """
        envelope = await self._request("POST", "/api/gmail/watch/start")
        data = envelope.get("data") or {}
        return data.get("historyId", ""), data.get("expiration", "")

    async def stop_watch(self) -> None:
        """Stop provider push notifications."""
        await self._request("POST", "/api/gmail/watch/stop")

    # === Kanban ===

    async def get_kanban_board(
        self,
        label: Optional[str] = None,
        cursor: Optional[str] = None,
        page_size: int = 20,
    ) -> BoardPage:
        """Fetch one page of the kanban board.

        Args:
            label: Optional label scope
            cursor: Token from the previous page
            page_size: Items per column per request
        """
        envelope = await self._request(
            "GET",
            "/api/kanban/board",
            params={"label": label, "pageToken": cursor, "limit": page_size},
        )
        data = envelope.get("data") or {}
        meta = envelope.get("meta")
        columns_config = envelope.get("columns")

        # Some deployments nest the board one level deeper
        if isinstance(data.get("data"), dict):
            meta = data.get("meta", meta)
            columns_config = data.get("columns", columns_config)
            data = data["data"]

        columns = {
            status: [self._parse(KanbanItem, i, "kanban item") for i in items]
            for status, items in data.items()
            if isinstance(items, list)
        }
        return BoardPage(
            columns=columns,
            meta=self._parse(PageMeta, meta or {}, "page meta"),
            column_config=(
                [self._parse(KanbanColumn, c, "kanban column") for c in columns_config]
                if columns_config
                else None
            ),
        )

    async def update_kanban_status(
        self,
        message_id: str,
        status: str,
        gmail_label: Optional[str] = None,
    ) -> Optional[KanbanItem]:
        """Move an item to another column on the server."""
        envelope = await self._request(
            "PATCH",
            f"/api/kanban/items/{_safe_id(message_id)}/status",
            json={"status": status, "gmailLabel": gmail_label},
        )
        data = envelope.get("data")
        return self._parse(KanbanItem, data, "kanban item") if data else None

    async def snooze_kanban_item(self, message_id: str, until: str) -> Optional[KanbanItem]:
        """Snooze an item until an ISO timestamp."""
        envelope = await self._request(
            "POST",
            f"/api/kanban/items/{_safe_id(message_id)}/snooze",
            json={"until": until},
        )
        data = envelope.get("data")
        return self._parse(KanbanItem, data, "kanban item") if data else None

    async def summarize_kanban_item(self, message_id: str) -> str:
        """Ask the backend for an AI summary.

        Returns:
            Summary text (empty when the backend produced none)
        """
        envelope = await self._request(
            "POST", f"/api/kanban/items/{_safe_id(message_id)}/summarize"
        )
        data = envelope.get("data") or {}
        return data.get("summary") or envelope.get("summary") or ""

    async def search_kanban(self, query: str) -> List[KanbanItem]:
        """Keyword search over board items."""
        envelope = await self._request("GET", "/api/kanban/search", params={"q": query})
        return [self._parse(KanbanItem, i, "kanban item") for i in envelope.get("data") or []]

    async def semantic_search_kanban(self, query: str, limit: Optional[int] = None) -> List[KanbanItem]:
        """Semantic search over board items."""
        envelope = await self._request(
            "POST",
            "/api/kanban/search/semantic",
            json={"query": query, "limit": limit},
        )
        return [self._parse(KanbanItem, i, "kanban item") for i in envelope.get("data") or []]

    async def get_kanban_columns(self) -> List[KanbanColumn]:
        """Fetch the user's column configuration."""
        envelope = await self._request("GET", "/api/kanban/columns")
        columns = (envelope.get("data") or {}).get("columns", [])
        return [self._parse(KanbanColumn, c, "kanban column") for c in columns]

    async def update_kanban_columns(self, columns: List[KanbanColumn]) -> List[KanbanColumn]:
        """Replace the user's column configuration."""
        envelope = await self._request(
            "POST",
            "/api/kanban/columns",
            json={"columns": [c.model_dump(by_alias=True) for c in columns]},
        )
        saved = (envelope.get("data") or {}).get("columns", [])
        return [self._parse(KanbanColumn, c, "kanban column") for c in saved]
