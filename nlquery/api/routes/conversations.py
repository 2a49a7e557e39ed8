"""API routes for conversations and natural-language turns.

Endpoints:
    POST /conversations                          - Create (bound to one source)
    GET  /conversations                          - List the caller's conversations
    GET  /conversations/{id}                     - Conversation with ordered messages
    POST /conversations/{id}/messages            - Non-streaming turn
    POST /conversations/{id}/messages/stream     - Turn streamed to the initiator (SSE)
    GET  /conversations/{id}/events              - Passive viewer stream (SSE)

SSE frames are unnamed events whose data is ``{"event": ..., "data": ...}``
JSON; a ``ping`` frame is sent whenever the stream has been idle for the
ping interval.
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Callable
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from nlquery.api.dependencies import (
    get_current_user_id,
    get_delivery_channel,
    get_orchestrator,
    get_ping_interval,
    get_turn_locks,
)
from nlquery.api.schemas import (
    ConversationDetailResponse,
    ConversationSummary,
    CreateConversationRequest,
    SendMessageRequest,
    TurnResponse,
)
from nlquery.db.connection import get_db
from nlquery.services.conversation_store import ConversationStore, message_to_dict
from nlquery.services.delivery_channel import TERMINAL_EVENTS, DeliveryChannel, Subscription
from nlquery.services.orchestrator import ConversationOrchestrator, TurnRequest
from nlquery.services.turn_locks import TurnLocks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _conversation_summary(conversation: Any, message_count: int) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "title": conversation.title,
        "databaseConnectionId": conversation.database_connection_id,
        "tabularSourceId": conversation.tabular_source_id,
        "createdAt": conversation.created_at,
        "updatedAt": conversation.updated_at,
        "messageCount": message_count,
    }


def _release_when_done(locks: TurnLocks, conversation_id: str) -> Callable[[asyncio.Task], None]:
    """Done-callback that frees the turn lock and retrieves the task's outcome."""

    def _callback(task: asyncio.Task) -> None:
        locks.release(conversation_id)
        # Already logged by the orchestrator; retrieving it silences asyncio.
        if not task.cancelled():
            task.exception()

    return _callback


async def _event_generator(
    request: Request,
    subscription: Subscription,
    channel: DeliveryChannel,
    ping_interval: float,
    turn_task: asyncio.Task | None = None,
) -> AsyncGenerator[dict, None]:
    """Relay delivery channel events as SSE frames.

    With ``turn_task`` the stream belongs to the turn's initiator: it ends
    after the terminal event, and a client disconnect cancels the turn.
    Without it the stream follows the conversation until disconnect.

    Args:
        request: Request used for disconnect detection.
        subscription: Viewer queue on the delivery channel.
        channel: Channel to unsubscribe from on exit.
        ping_interval: Seconds of idleness before a ping frame.
        turn_task: Running turn, when streaming to its initiator.

    Yields:
        Event dictionaries for EventSourceResponse.
    """
    try:
        while True:
            if await request.is_disconnected():
                break

            try:
                event = await asyncio.wait_for(subscription.get(), timeout=ping_interval)
            except asyncio.TimeoutError:
                yield {"data": json.dumps({"event": "ping"})}
                continue

            yield {
                "data": json.dumps({
                    "event": event["event"],
                    "data": event["data"],
                }),
            }
            if turn_task is not None and event["event"] in TERMINAL_EVENTS:
                break
    finally:
        channel.unsubscribe(subscription)
        if turn_task is not None and not turn_task.done():
            logger.info("Initiator disconnected, cancelling turn for %s", subscription.conversation_id)
            turn_task.cancel()


@router.post("", response_model=ConversationSummary, status_code=201)
def create_conversation(
    payload: CreateConversationRequest,
    owner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    """Create a conversation bound to a connection or a tabular source."""
    conversation = ConversationStore(db).create_conversation(
        owner_id,
        database_connection_id=payload.databaseConnectionId,
        tabular_source_id=payload.tabularSourceId,
        title=payload.title,
    )
    return _conversation_summary(conversation, 0)


@router.get("", response_model=list[ConversationSummary])
def list_conversations(
    owner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> list[dict]:
    return ConversationStore(db).list_conversations(owner_id)


@router.get("/{conversation_id}", response_model=ConversationDetailResponse)
def get_conversation(
    conversation_id: str,
    owner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    """Load a conversation and its messages in replay order."""
    store = ConversationStore(db)
    conversation = store.get_conversation(owner_id, conversation_id)
    messages = [message_to_dict(m) for m in store.get_history(conversation_id)]
    detail = _conversation_summary(conversation, len(messages))
    detail["messages"] = messages
    return detail


@router.post("/{conversation_id}/messages", response_model=TurnResponse)
async def send_message(
    conversation_id: str,
    payload: SendMessageRequest,
    owner_id: str = Depends(get_current_user_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    locks: TurnLocks = Depends(get_turn_locks),
) -> dict:
    """Run a whole turn and return the stream_completed payload.

    Viewers subscribed to the conversation still receive the lifecycle
    events (without chunks).
    """
    with locks.hold(conversation_id):
        outcome = await orchestrator.run_turn(
            owner_id,
            TurnRequest(conversation_id, payload.content, payload.executeQuery),
            stream=False,
        )
    return outcome.to_payload()


@router.post("/{conversation_id}/messages/stream")
async def stream_message(
    request: Request,
    conversation_id: str,
    payload: SendMessageRequest,
    owner_id: str = Depends(get_current_user_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    channel: DeliveryChannel = Depends(get_delivery_channel),
    locks: TurnLocks = Depends(get_turn_locks),
    ping_interval: float = Depends(get_ping_interval),
) -> EventSourceResponse:
    """Start a turn and stream its lifecycle events back to the caller.

    Ownership and the turn lock are checked before the stream opens, so
    404/403/409 are ordinary JSON errors. Disconnecting cancels the turn.
    """
    await asyncio.to_thread(orchestrator.verify_access, owner_id, conversation_id)
    locks.acquire(conversation_id)

    subscription = channel.subscribe(conversation_id)
    turn_task = asyncio.create_task(
        orchestrator.run_turn(
            owner_id, TurnRequest(conversation_id, payload.content, payload.executeQuery)
        )
    )
    turn_task.add_done_callback(_release_when_done(locks, conversation_id))

    return EventSourceResponse(
        _event_generator(request, subscription, channel, ping_interval, turn_task),
        media_type="text/event-stream",
    )


@router.get("/{conversation_id}/events")
async def stream_events(
    request: Request,
    conversation_id: str,
    owner_id: str = Depends(get_current_user_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
    channel: DeliveryChannel = Depends(get_delivery_channel),
    ping_interval: float = Depends(get_ping_interval),
) -> EventSourceResponse:
    """Follow every turn of a conversation until the client disconnects."""
    await asyncio.to_thread(orchestrator.verify_access, owner_id, conversation_id)
    subscription = channel.subscribe(conversation_id)
    return EventSourceResponse(
        _event_generator(request, subscription, channel, ping_interval),
        media_type="text/event-stream",
    )
