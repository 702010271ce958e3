"""Polling for snoozed items coming back to the board."""

import asyncio
import logging
from typing import Awaitable, Callable, FrozenSet, Optional, Set

from ..errors import NetworkFailure
from ..models.kanban import EmailStatus
from .merge import Board
from .patches import item_id

logger = logging.getLogger(__name__)


def wake_message(count: int) -> str:
    if count == 1:
        return "Snoozed email is back"
    return f"{count} snoozed emails are back"


class SnoozeWatcher:
    """Tracks snoozed ids and refreshes the board while any are pending.

    The polling task only exists while the tracked set is non-empty.
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[Optional[Board]]],
        poll_seconds: float = 30.0,
        on_wake: Optional[Callable[[str], None]] = None,
    ):
        """Initialize watcher.

        Args:
            refresh: Refetches the board and returns the merged columns
            poll_seconds: Delay between refreshes
            on_wake: Called with the wake-up message
        """
        self._refresh = refresh
        self.poll_seconds = poll_seconds
        self._on_wake = on_wake
        self._snoozed: Set[str] = set()
        self._task: Optional[asyncio.Task] = None

    @property
    def snoozed(self) -> FrozenSet[str]:
        return frozenset(self._snoozed)

    @property
    def polling(self) -> bool:
        return self._task is not None and not self._task.done()

    def track(self, message_id: str) -> None:
        """Start watching a snoozed item."""
        self._snoozed.add(message_id)
        if not self.polling:
            self._task = asyncio.create_task(self._poll())

    def untrack(self, message_id: str) -> None:
        self._snoozed.discard(message_id)
        if not self._snoozed:
            self._stop()

    def observe_board(self, board: Board) -> Optional[str]:
        """Drop tracked ids that are back on the board.

        Returns:
            Wake-up message, or None when nothing came back
        """
        if not self._snoozed:
            return None

        present = {
            item_id(item)
            for items in board.values()
            for item in items
            if item.get("status") != EmailStatus.SNOOZED
        }
        woke = self._snoozed & present
        if not woke:
            return None

        self._snoozed -= woke
        if not self._snoozed:
            self._stop()

        message = wake_message(len(woke))
        logger.info(message)
        if self._on_wake is not None:
            self._on_wake(message)
        return message

    async def _poll(self) -> None:
        while self._snoozed:
            await asyncio.sleep(self.poll_seconds)
            try:
                board = await self._refresh()
            except NetworkFailure as e:
                logger.warning("Snooze poll failed: %s", e)
                continue
            except Exception:
                logger.exception("Snooze poll crashed")
                continue
            if board is not None:
                self.observe_board(board)

    def _stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def close(self) -> None:
        """Stop polling and forget tracked ids."""
        self._snoozed.clear()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
