"""Inbox service: cached mailbox lists, email details and email mutations."""

import logging
from typing import Dict, List, Optional

from ..api.client import MailApiClient
from ..cache.policy import MAILBOXES_KEY, Namespace
from ..errors import NetworkFailure
from ..models.email import (
    EmailDetail,
    EmailListItem,
    EmailListPage,
    Mailbox,
    ModifyEmailData,
    ReplyEmailData,
    SendEmailData,
)
from ..sync.invalidation import EventKind, InvalidationCoordinator, InvalidationEvent, Region
from ..sync.merge import BoardFilters, apply_list_view
from ..sync.mutations import (
    ErrorCallback,
    MutationEngine,
    MutationResult,
    SuccessCallback,
    compose_mutation,
    delete_mutation,
    read_state_mutation,
    starred_mutation,
)
from ..sync.orchestrator import FetchOrchestrator, ReadResult, Resource
from ..sync.pagination import PageChain

logger = logging.getLogger(__name__)


class InboxService:
    """Entry points for the traditional inbox view."""

    def __init__(
        self,
        api: MailApiClient,
        orchestrator: FetchOrchestrator,
        engine: MutationEngine,
        coordinator: InvalidationCoordinator,
        page_size: int = 10,
    ):
        self.api = api
        self.orchestrator = orchestrator
        self.engine = engine
        self.page_size = page_size
        self._chains: Dict[str, PageChain] = {}
        self._remove_listener = coordinator.add_listener(self._on_invalidated)

    # === Reads ===

    async def get_mailboxes(self) -> List[Mailbox]:
        """Mailboxes with their unread counters (cache-first)."""

        async def fetch():
            mailboxes = await self.api.get_mailboxes()
            return {"mailboxes": [m.model_dump(mode="json") for m in mailboxes]}

        result = await self.orchestrator.read(Resource(Namespace.MAILBOXES, MAILBOXES_KEY), fetch)
        return [Mailbox.model_validate(m) for m in result.payload.get("mailboxes", [])]

    def _chain(self, mailbox_id: str) -> PageChain:
        chain = self._chains.get(mailbox_id)
        if chain is None:

            async def fetch_page(cursor: Optional[str]):
                page = await self.api.get_mailbox_emails(mailbox_id, cursor=cursor, page_size=self.page_size)
                return page.model_dump(mode="json")

            chain = PageChain(self.orchestrator, Namespace.EMAIL_LISTS, mailbox_id, fetch_page)
            self._chains[mailbox_id] = chain
        return chain

    async def get_emails(self, mailbox_id: str) -> List[EmailListItem]:
        """First page of a mailbox (cache-first; refreshed in the background).

        Returns:
            Merged items of the pages loaded so far
        """
        chain = self._chain(mailbox_id)
        await chain.load_first()
        return self.emails(mailbox_id)

    async def load_more(self, mailbox_id: str) -> Optional[ReadResult]:
        """Load the next page of a mailbox (network-first)."""
        return await self._chain(mailbox_id).load_more()

    def has_more(self, mailbox_id: str) -> bool:
        return self._chain(mailbox_id).has_more

    def emails(self, mailbox_id: str, filters: Optional[BoardFilters] = None) -> List[EmailListItem]:
        """Merged view of the loaded pages, optionally filtered and sorted."""
        items = self._chain(mailbox_id).merged_items()
        if filters is not None:
            items = apply_list_view(items, filters)
        return [EmailListItem.model_validate(i) for i in items]

    async def get_email(self, email_id: str) -> EmailDetail:
        """Full email (cache-first)."""

        async def fetch():
            detail = await self.api.get_email_detail(email_id)
            return detail.model_dump(mode="json")

        result = await self.orchestrator.read(Resource(Namespace.EMAILS, email_id), fetch)
        return EmailDetail.model_validate(result.payload)

    async def search(self, query: str, cursor: Optional[str] = None) -> EmailListPage:
        """Search across labels; results are never cached."""
        return await self.api.search_emails(query, cursor=cursor, page_size=self.page_size)

    # === Mutations ===

    async def mark_read(
        self,
        email_id: str,
        mailbox_id: Optional[str] = None,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        mutation = read_state_mutation(
            email_id,
            unread=False,
            send=lambda: self.api.modify_email(email_id, ModifyEmailData(mark_read=True)),
            mailbox_id=mailbox_id,
        )
        return await self.engine.execute(mutation, on_success, on_error)

    async def mark_unread(
        self,
        email_id: str,
        mailbox_id: Optional[str] = None,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        mutation = read_state_mutation(
            email_id,
            unread=True,
            send=lambda: self.api.modify_email(email_id, ModifyEmailData(mark_unread=True)),
            mailbox_id=mailbox_id,
        )
        return await self.engine.execute(mutation, on_success, on_error)

    async def star(
        self,
        email_id: str,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        mutation = starred_mutation(
            email_id,
            starred=True,
            send=lambda: self.api.modify_email(email_id, ModifyEmailData(star=True)),
        )
        return await self.engine.execute(mutation, on_success, on_error)

    async def unstar(
        self,
        email_id: str,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        mutation = starred_mutation(
            email_id,
            starred=False,
            send=lambda: self.api.modify_email(email_id, ModifyEmailData(unstar=True)),
        )
        return await self.engine.execute(mutation, on_success, on_error)

    async def delete(
        self,
        email_id: str,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        mutation = delete_mutation(
            email_id,
            send=lambda: self.api.modify_email(email_id, ModifyEmailData(delete=True)),
        )
        return await self.engine.execute(mutation, on_success, on_error)

    async def send(
        self,
        data: SendEmailData,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        mutation = compose_mutation(EventKind.SEND, send=lambda: self.api.send_email(data))
        return await self.engine.execute(mutation, on_success, on_error)

    async def reply(
        self,
        email_id: str,
        data: ReplyEmailData,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        mutation = compose_mutation(
            EventKind.REPLY,
            send=lambda: self.api.reply_email(email_id, data),
            email_id=email_id,
        )
        return await self.engine.execute(mutation, on_success, on_error)

    async def forward(
        self,
        email_id: str,
        data: SendEmailData,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationResult:
        mutation = compose_mutation(
            EventKind.FORWARD,
            send=lambda: self.api.forward_email(email_id, data),
            email_id=email_id,
        )
        return await self.engine.execute(mutation, on_success, on_error)

    # === Invalidation ===

    async def _on_invalidated(self, event: InvalidationEvent, regions: List[Region]) -> None:
        if event.kind is EventKind.LOGOUT:
            self.close_chains()
            return
        if not any(r.namespace == Namespace.EMAIL_LISTS for r in regions):
            return

        for mailbox_id, chain in list(self._chains.items()):
            if not chain.cursors:
                continue
            try:
                await chain.reload()
            except NetworkFailure as e:
                logger.warning("Could not refetch mailbox %s after %s: %s", mailbox_id, event.kind.value, e)

    def close_chains(self) -> None:
        for chain in self._chains.values():
            chain.close()
        self._chains.clear()

    def close(self) -> None:
        self.close_chains()
        self._remove_listener()
