"""Service entry points used by the inbox and kanban views."""

from .inbox import InboxService
from .kanban import KanbanService

__all__ = ["InboxService", "KanbanService"]
