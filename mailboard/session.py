"""Session lifecycle: wires the cache store, API client and sync core.

A session owns one store handle. It is opened when the user signs in and
disposed at logout, which also clears every cached namespace.
"""

import logging
import time
from typing import Callable, Optional

from .api.client import MailApiClient, TokenProvider
from .cache.policy import Namespace, ttl_for
from .cache.store import CacheStore
from .config import Config
from .services.inbox import InboxService
from .services.kanban import KanbanService
from .sync.invalidation import EventKind, InvalidationCoordinator, InvalidationEvent
from .sync.mutations import MutationEngine
from .sync.orchestrator import FetchOrchestrator
from .sync.push import PushListener
from .sync.snooze import SnoozeWatcher

logger = logging.getLogger(__name__)


class SyncSession:
    """Everything a signed-in client needs, created and torn down together.

    Usage::

        async with SyncSession(config) as session:
            emails = await session.inbox.get_emails("INBOX")
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[CacheStore] = None,
        api: Optional[MailApiClient] = None,
        token_provider: Optional[TokenProvider] = None,
        clock: Callable[[], float] = time.time,
        on_notice: Optional[Callable[[str], None]] = None,
    ):
        """Initialize session.

        Args:
            config: Configuration (defaults when None)
            store: Cache store handle; built from config.cache when None
            api: API client; built from config.api when None
            token_provider: Supplies the bearer token for the built client
            clock: Source of epoch seconds for cache timestamps
            on_notice: Receives transient user-facing notices
        """
        self.config = config or Config()
        cache_config = self.config.cache
        api_config = self.config.api

        self.store = store or CacheStore(cache_config.db_path, enabled=cache_config.enabled, clock=clock)
        if api is None:
            if token_provider is None:
                token_provider = lambda: api_config.access_token  # noqa: E731
            api = MailApiClient(
                api_config.base_url,
                token_provider=token_provider,
                timeout=api_config.timeout_seconds,
            )
        self.api = api

        self.orchestrator = FetchOrchestrator(
            self.store,
            {ns: ttl_for(ns, cache_config) for ns in Namespace},
            clock=clock,
        )
        self.coordinator = InvalidationCoordinator(self.store, self.orchestrator)
        self.engine = MutationEngine(self.store, self.orchestrator, self.coordinator)
        self.push = PushListener(self.coordinator)

        self.inbox = InboxService(
            self.api,
            self.orchestrator,
            self.engine,
            self.coordinator,
            page_size=api_config.emails_per_page,
        )
        self.kanban = KanbanService(
            self.api,
            self.orchestrator,
            self.engine,
            self.coordinator,
            page_size=api_config.kanban_per_page,
            snooze_poll_seconds=self.config.sync.snooze_poll_seconds,
            max_empty_pages=self.config.sync.max_empty_pages,
            max_auto_summarize=self.config.sync.max_auto_summarize,
            on_notice=on_notice,
        )
        self._closed = False

    @property
    def snooze(self) -> SnoozeWatcher:
        return self.kanban.snooze

    async def open(self) -> "SyncSession":
        """Open the cache store; an unusable cache leaves the session network-only."""
        if not await self.store.open():
            logger.warning("Starting without a local cache")
        return self

    async def close(self) -> None:
        """Dispose the session without clearing the cache."""
        if self._closed:
            return
        self._closed = True
        await self.orchestrator.cancel_all()
        await self.kanban.close()
        self.inbox.close()
        await self.api.close()
        await self.store.close()

    async def logout(self) -> None:
        """Clear every cached namespace, then dispose the session."""
        await self.coordinator.invalidate(InvalidationEvent(EventKind.LOGOUT))
        await self.close()

    async def start_push(self) -> str:
        """Ask the backend to start provider push notifications.

        Returns:
            History id the provider starts from
        """
        history_id, expiration = await self.api.start_watch()
        logger.info("Push notifications active until %s", expiration or "unknown")
        return history_id

    async def stop_push(self) -> None:
        await self.api.stop_watch()

    async def __aenter__(self) -> "SyncSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
