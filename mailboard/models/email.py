"""Email and mailbox data models for Mailboard."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiModel(BaseModel):
    """Base model accepting both camelCase API fields and snake_case names."""

    model_config = ConfigDict(populate_by_name=True)


class Mailbox(ApiModel):
    """Model for a mailbox (Gmail label) with its aggregate unread counter."""

    id: str
    name: str
    unread: int = Field(default=0, ge=0, description="Aggregate unread counter")


class PageMeta(ApiModel):
    """Pagination metadata returned with every page."""

    next_cursor: Optional[str] = Field(
        default=None,
        alias="nextPageToken",
        description="Opaque continuation token for the next page",
    )
    has_more: bool = Field(default=False, alias="hasMore")
    page_size: Optional[int] = Field(default=None, alias="pageSize")
    total: Optional[int] = Field(default=None)


class EmailListItem(ApiModel):
    """Model for an email row in a mailbox list."""

    # === Identification ===
    id: str = Field(description="Stable unique id (mailboxId|messageId)")
    mailbox_id: str = Field(alias="mailboxId")

    # === Immutable fields ===
    sender_name: str = Field(default="", alias="senderName")
    sender_email: str = Field(default="", alias="senderEmail")
    subject: str = Field(default="")
    preview: str = Field(default="")
    timestamp: Optional[datetime] = Field(default=None)

    # === Mutable display fields ===
    starred: bool = Field(default=False)
    unread: bool = Field(default=False)
    important: bool = Field(default=False)
    has_attachments: bool = Field(default=False, alias="hasAttachments")


class Attachment(ApiModel):
    """Attachment metadata (binary content is never cached)."""

    id: str
    file_name: str = Field(alias="fileName")
    size: str = Field(default="")
    type: str = Field(default="")


class EmailDetail(EmailListItem):
    """Model for a fully loaded email."""

    to: List[str] = Field(default_factory=list)
    cc: List[str] = Field(default_factory=list)
    body: str = Field(default="")
    attachments: List[Attachment] = Field(default_factory=list)
    thread_id: Optional[str] = Field(default=None, alias="threadId")


class EmailListPage(ApiModel):
    """One fetched page of a mailbox list."""

    items: List[EmailListItem] = Field(default_factory=list)
    meta: PageMeta = Field(default_factory=PageMeta)


class ModifyEmailData(ApiModel):
    """Action payload for the modify endpoint."""

    mark_read: bool = Field(default=False, alias="markRead")
    mark_unread: bool = Field(default=False, alias="markUnread")
    star: bool = Field(default=False)
    unstar: bool = Field(default=False)
    delete: bool = Field(default=False)


class SendEmailData(ApiModel):
    """Payload for sending or forwarding an email."""

    to: List[str]
    subject: str = Field(default="")
    body: str
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)


class ReplyEmailData(ApiModel):
    """Payload for replying to an email."""

    body: str
    reply_all: bool = Field(default=False, alias="replyAll")
