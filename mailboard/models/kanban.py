"""Kanban board data models for Mailboard."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from .email import ApiModel, PageMeta


class EmailStatus:
    """Built-in column ids.

    Columns are user-configurable, so a status is any column id string; these
    constants only name the ones with special behaviour.
    """

    INBOX = "INBOX"
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    SNOOZED = "SNOOZED"


class KanbanColumn(ApiModel):
    """Model for a configurable board column."""

    id: str
    name: str
    gmail_label: Optional[str] = Field(default=None, alias="gmailLabel")
    order: int = Field(default=0, ge=0)


DEFAULT_KANBAN_COLUMNS: List[KanbanColumn] = [
    KanbanColumn(id="INBOX", name="Inbox", gmail_label="INBOX", order=0),
    KanbanColumn(id="TODO", name="To Do", gmail_label="TODO", order=1),
    KanbanColumn(id="IN_PROGRESS", name="In Progress", gmail_label="IN_PROGRESS", order=2),
    KanbanColumn(id="DONE", name="Done", gmail_label="DONE", order=3),
]


class KanbanItem(ApiModel):
    """Model for a card on the kanban board."""

    # === Identification ===
    message_id: str = Field(alias="messageId", description="Stable unique id")
    record_id: Optional[str] = Field(default=None, alias="_id")
    mailbox_id: Optional[str] = Field(default=None, alias="mailboxId")
    thread_id: Optional[str] = Field(default=None, alias="threadId")

    # === Immutable fields ===
    sender_name: Optional[str] = Field(default=None, alias="senderName")
    sender_email: Optional[str] = Field(default=None, alias="senderEmail")
    subject: Optional[str] = Field(default=None)
    snippet: Optional[str] = Field(default=None)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    has_attachments: bool = Field(default=False, alias="hasAttachments")

    # === Mutable display fields ===
    status: str = Field(default=EmailStatus.INBOX, description="Column id")
    original_status: Optional[str] = Field(default=None, alias="originalStatus")
    snooze_until: Optional[datetime] = Field(default=None, alias="snoozeUntil")
    summary: Optional[str] = Field(default=None)
    last_summarized_at: Optional[datetime] = Field(default=None, alias="lastSummarizedAt")
    unread: Optional[bool] = Field(
        default=None, description="Read flag when the backend reports one"
    )
    starred: Optional[bool] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class BoardPage(ApiModel):
    """One fetched page of the board: column id -> items."""

    columns: Dict[str, List[KanbanItem]] = Field(default_factory=dict)
    meta: PageMeta = Field(default_factory=PageMeta)
    column_config: Optional[List[KanbanColumn]] = Field(
        default=None, description="Column configuration sent with the first page"
    )

    @property
    def item_count(self) -> int:
        """Total items across all columns."""
        return sum(len(items) for items in self.columns.values())
