"""Conversation-scoped fan-out of turn lifecycle events.

Each viewer of a conversation holds a Subscription with its own bounded
asyncio.Queue. Publishing never waits on a viewer: when a queue is full
its oldest event is discarded and the subscription's ``dropped`` counter
goes up, so one slow viewer cannot stall the turn or other viewers.

Events are plain dicts ``{"event": <name>, "data": {...}}``.
"""

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)

STREAM_STARTED = "stream_started"
USER_MESSAGE_SAVED = "user_message_saved"
STREAM_CHUNK = "stream_chunk"
QUERY_EXECUTING = "query_executing"
STREAM_COMPLETED = "stream_completed"
STREAM_ERROR = "stream_error"

TERMINAL_EVENTS = frozenset({STREAM_COMPLETED, STREAM_ERROR})

DEFAULT_QUEUE_SIZE = 256


class Subscription:
    """One viewer's event queue for one conversation.

    Attributes:
        conversation_id: Topic this subscription listens to.
        queue: Bounded queue of event dicts.
        dropped: Number of events discarded because the queue was full.
    """

    def __init__(self, conversation_id: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.conversation_id = conversation_id
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max(1, maxsize))
        self.dropped = 0

    def offer(self, event: dict[str, Any]) -> None:
        """Enqueue without waiting, discarding the oldest event when full."""
        while True:
            try:
                self.queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                try:
                    self.queue.get_nowait()
                except asyncio.QueueEmpty:
                    continue
                self.dropped += 1

    async def get(self) -> dict[str, Any]:
        return await self.queue.get()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> dict[str, Any]:
        return await self.queue.get()


class DeliveryChannel:
    """Pub/sub keyed by conversation id.

    Supports any number of viewers per conversation (several browser tabs,
    a streaming initiator plus passive viewers).

    Args:
        queue_size: Default bound for each subscriber queue.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(self, conversation_id: str, maxsize: int | None = None) -> Subscription:
        """Register a new viewer for a conversation.

        Args:
            conversation_id: Conversation to follow.
            maxsize: Queue bound; the channel default when None.

        Returns:
            A Subscription to iterate events from.
        """
        subscription = Subscription(conversation_id, maxsize or self._queue_size)
        self._subscriptions.setdefault(conversation_id, []).append(subscription)
        logger.debug("Created subscription for conversation %s", conversation_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a viewer. No-op if it is already gone."""
        subscribers = self._subscriptions.get(subscription.conversation_id)
        if not subscribers:
            return
        try:
            subscribers.remove(subscription)
        except ValueError:
            return
        if not subscribers:
            del self._subscriptions[subscription.conversation_id]
        if subscription.dropped:
            logger.warning(
                "Subscription for conversation %s dropped %d events",
                subscription.conversation_id, subscription.dropped,
            )
        logger.debug("Removed subscription for conversation %s", subscription.conversation_id)

    def has_subscribers(self, conversation_id: str) -> bool:
        return bool(self._subscriptions.get(conversation_id))

    def subscriber_count(self, conversation_id: str) -> int:
        return len(self._subscriptions.get(conversation_id, ()))

    def publish(self, conversation_id: str, event: str, data: dict[str, Any] | None = None) -> None:
        """Fan an event out to every current viewer of the conversation."""
        payload = {"event": event, "data": data or {}}
        for subscription in list(self._subscriptions.get(conversation_id, ())):
            subscription.offer(payload)
