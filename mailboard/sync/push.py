"""Adapter from provider push notifications to cache invalidation.

The socket transport lives outside this package; it hands every decoded
``gmail_update`` notification to :meth:`PushListener.handle`.
"""

import logging
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .invalidation import EventKind, InvalidationCoordinator, InvalidationEvent

logger = logging.getLogger(__name__)


class GmailChange(BaseModel):
    """One change reported by the provider."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["messageAdded", "messageDeleted", "labelAdded", "labelRemoved"]
    message_id: str = Field(alias="messageId")
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    label_ids: List[str] = Field(default_factory=list, alias="labelIds")


class GmailNotification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["gmail_update"] = "gmail_update"
    changes: List[GmailChange] = Field(default_factory=list)
    history_id: Optional[str] = Field(default=None, alias="historyId")


class PushListener:
    """Forwards push changes to the invalidation coordinator."""

    def __init__(self, coordinator: InvalidationCoordinator):
        self.coordinator = coordinator
        self.last_history_id: Optional[str] = None

    async def handle(self, payload: Any) -> List[InvalidationEvent]:
        """Process one notification.

        Args:
            payload: Decoded notification dict

        Returns:
            Events passed to the coordinator (empty for malformed payloads)
        """
        try:
            notification = GmailNotification.model_validate(payload)
        except ValidationError as e:
            logger.warning("Ignoring malformed push notification: %s", e)
            return []

        if notification.history_id:
            self.last_history_id = notification.history_id

        events = list(
            dict.fromkeys(
                InvalidationEvent(EventKind(change.type), change.message_id)
                for change in notification.changes
            )
        )
        if not events:
            events = [InvalidationEvent(EventKind.PUSH_UPDATE)]

        logger.info(
            "Push update (history %s): %d change(s)",
            notification.history_id or "?",
            len(notification.changes),
        )
        for event in events:
            await self.coordinator.invalidate(event)
        return events
