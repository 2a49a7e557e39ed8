"""Per-conversation turn lock.

Only one turn may run per conversation at a time. A second request is
rejected immediately instead of queueing behind the first.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from nlquery.errors import TurnInProgressError

logger = logging.getLogger(__name__)


class TurnLocks:
    """Set of conversation ids that currently have a running turn.

    Acquire and release happen on the event loop thread, so a plain set
    is sufficient.
    """

    def __init__(self) -> None:
        self._active: set[str] = set()

    def is_locked(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    def acquire(self, conversation_id: str) -> None:
        """Mark a turn as running.

        Raises:
            TurnInProgressError: If a turn is already running.
        """
        if conversation_id in self._active:
            logger.info("Rejected concurrent turn for conversation %s", conversation_id)
            raise TurnInProgressError(conversation_id)
        self._active.add(conversation_id)

    def release(self, conversation_id: str) -> None:
        self._active.discard(conversation_id)

    @contextmanager
    def hold(self, conversation_id: str) -> Iterator[None]:
        """Hold the lock for the duration of a ``with`` block."""
        self.acquire(conversation_id)
        try:
            yield
        finally:
            self.release(conversation_id)
