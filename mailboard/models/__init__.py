"""Data models for Mailboard."""

from .email import (
    Attachment,
    EmailDetail,
    EmailListItem,
    EmailListPage,
    Mailbox,
    ModifyEmailData,
    PageMeta,
    ReplyEmailData,
    SendEmailData,
)
from .kanban import (
    DEFAULT_KANBAN_COLUMNS,
    BoardPage,
    EmailStatus,
    KanbanColumn,
    KanbanItem,
)

__all__ = [
    "Attachment",
    "BoardPage",
    "DEFAULT_KANBAN_COLUMNS",
    "EmailDetail",
    "EmailListItem",
    "EmailListPage",
    "EmailStatus",
    "KanbanColumn",
    "KanbanItem",
    "Mailbox",
    "ModifyEmailData",
    "PageMeta",
    "ReplyEmailData",
    "SendEmailData",
]
