"""Conversation orchestrator: one natural-language turn, end to end.

A turn moves strictly forward through

    Preparing -> Generating -> Finalizing -> Delivered

with Failed reachable from the three middle states. Every turn that
starts publishes exactly one terminal event (``stream_completed`` or
``stream_error``) and it is the last event of that turn.

Blocking engine work (schema introspection, query execution) runs in a
worker thread; generation fragments are relayed to the delivery channel
as they arrive. Nothing is persisted on a failure path beyond the user
message that was already committed.
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from nlquery.db.connection import get_db_context
from nlquery.db.models import DatabaseConnection, MessageRole
from nlquery.engines.base import ConnectionDescriptor, EngineAdapter, QueryDialect
from nlquery.engines.registry import AdapterRegistry
from nlquery.errors import (
    DomainError,
    EngineConnectionError,
    NLQueryError,
    NotFoundError,
    QueryExecutionError,
)
from nlquery.services import delivery_channel as events
from nlquery.services.conversation_store import ConversationStore, message_to_dict
from nlquery.services.delivery_channel import DeliveryChannel
from nlquery.services.generation_client import GenerationClient
from nlquery.services.prompts import build_analyst_prompt, build_history, build_tabular_prompt
from nlquery.services.query_extraction import clean_response, extract_query

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "cancelled"
UNEXPECTED_MESSAGE = "An unexpected error occurred while processing your message."

SessionFactory = Callable[[], AbstractContextManager[Session]]
TabularContextProvider = Callable[[str], str | None]


class TurnState(str, Enum):
    """Lifecycle states of a single turn."""

    idle = "idle"
    preparing = "preparing"
    generating = "generating"
    finalizing = "finalizing"
    delivered = "delivered"
    failed = "failed"


@dataclass
class TurnRequest:
    """A new user message for a conversation."""

    conversation_id: str
    message: str
    execute_query: bool = True


@dataclass
class StreamingTurnContext:
    """Everything the Generating and Finalizing stages need for one turn.

    Lives only for the duration of the turn that created it.
    """

    conversation_id: str
    user_message: dict[str, Any]
    system_prompt: str
    schema_context_text: str | None = None
    prior_history: list[tuple[str, str]] = field(default_factory=list)
    dialect: QueryDialect | None = None
    adapter: EngineAdapter | None = None
    descriptor: ConnectionDescriptor | None = None


@dataclass
class TurnOutcome:
    """Result of a delivered turn. Same shape as the ``stream_completed`` payload."""

    assistant_message: dict[str, Any]
    query_result: dict[str, Any] | None
    tokens_used: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "assistantMessage": self.assistant_message,
            "queryResult": self.query_result,
            "tokensUsed": self.tokens_used,
        }


@dataclass
class _TurnProgress:
    state: TurnState = TurnState.idle
    chunk_count: int = 0


class ConversationOrchestrator:
    """Runs turns against the generation backend and the bound source.

    Args:
        generation_client: Chat backend client.
        registry: Engine adapters by engine kind.
        channel: Delivery channel for lifecycle events.
        session_factory: Context manager yielding a committed-on-exit
            session for the state database.
        tabular_context_provider: Optional lookup returning a description
            of a tabular source, used when a conversation is not bound
            to a database connection.
    """

    def __init__(
        self,
        generation_client: GenerationClient,
        registry: AdapterRegistry,
        channel: DeliveryChannel,
        session_factory: SessionFactory = get_db_context,
        tabular_context_provider: TabularContextProvider | None = None,
    ) -> None:
        self._client = generation_client
        self._registry = registry
        self._channel = channel
        self._session_factory = session_factory
        self._tabular_context_provider = tabular_context_provider

    def verify_access(self, owner_id: str, conversation_id: str) -> None:
        """Raise NotFoundError/PermissionDeniedError unless the caller owns the conversation."""
        with self._session_factory() as db:
            ConversationStore(db).get_conversation(owner_id, conversation_id)

    async def run_turn(self, owner_id: str, request: TurnRequest, stream: bool = True) -> TurnOutcome:
        """Process one user message through all four stages.

        Args:
            owner_id: Caller identity; must own the conversation.
            request: Conversation id, message text and execution flag.
            stream: Relay fragments as ``stream_chunk`` events when True;
                use a single blocking backend call when False.

        Returns:
            The delivered TurnOutcome.

        Raises:
            NotFoundError / PermissionDeniedError: Before the turn starts
                if the caller cannot use the conversation. No events.
            NLQueryError, DomainError: After ``stream_error`` is published.
            asyncio.CancelledError: After ``stream_error`` ("cancelled").
        """
        cid = request.conversation_id
        await asyncio.to_thread(self.verify_access, owner_id, cid)

        progress = _TurnProgress(state=TurnState.preparing)
        started_at = time.perf_counter()
        self._channel.publish(cid, events.STREAM_STARTED, {"conversationId": cid})

        try:
            context = await self._prepare(owner_id, request)

            progress.state = TurnState.generating
            text, tokens_used = await self._generate(context, request.message, stream, progress)

            progress.state = TurnState.finalizing
            outcome = await self._finalize(context, text, tokens_used, request.execute_query)

            self._channel.publish(cid, events.STREAM_COMPLETED, outcome.to_payload())
            progress.state = TurnState.delivered
        except asyncio.CancelledError:
            logger.info("Turn cancelled for conversation %s in state %s", cid, progress.state.value)
            progress.state = TurnState.failed
            self._channel.publish(cid, events.STREAM_ERROR, {"error": CANCELLED_MESSAGE})
            raise
        except NLQueryError as e:
            logger.error(
                "Turn failed for conversation %s in state %s: [%s] %s",
                cid, progress.state.value, e.code, e.detail,
            )
            progress.state = TurnState.failed
            self._channel.publish(cid, events.STREAM_ERROR, {"error": e.user_message})
            raise
        except DomainError as e:
            logger.warning("Turn rejected for conversation %s: %s", cid, e)
            progress.state = TurnState.failed
            self._channel.publish(cid, events.STREAM_ERROR, {"error": str(e)})
            raise
        except Exception:
            logger.exception("Unexpected turn failure for conversation %s", cid)
            progress.state = TurnState.failed
            self._channel.publish(cid, events.STREAM_ERROR, {"error": UNEXPECTED_MESSAGE})
            raise
        finally:
            logger.info(
                "turn_timing conversation_id=%s state=%s chunks=%d elapsed=%.3f",
                cid, progress.state.value, progress.chunk_count,
                time.perf_counter() - started_at,
            )

        return outcome

    async def _prepare(self, owner_id: str, request: TurnRequest) -> StreamingTurnContext:
        cid = request.conversation_id
        source = await asyncio.to_thread(self._read_source, owner_id, cid)
        adapter, descriptor, schema_text, tabular_source_id, history = source

        fresh_schema = False
        if adapter is not None and descriptor is not None and schema_text is None:
            schema_text = await self._load_schema(adapter, descriptor)
            fresh_schema = schema_text is not None

        user_message = await asyncio.to_thread(
            self._save_user_message,
            owner_id,
            request.message,
            cid,
            descriptor.id if fresh_schema and descriptor is not None else None,
            schema_text,
        )

        self._channel.publish(
            cid,
            events.USER_MESSAGE_SAVED,
            {
                "messageId": user_message["id"],
                "content": user_message["content"],
                "createdAt": user_message["createdAt"],
            },
        )

        if adapter is not None:
            dialect = adapter.dialect
            system_prompt = build_analyst_prompt(
                schema_text, dialect.name, dialect.fence_tags[0], dialect.prompt_notes,
            )
        else:
            dialect = None
            source_context = None
            if self._tabular_context_provider is not None and tabular_source_id:
                source_context = self._tabular_context_provider(tabular_source_id)
            system_prompt = build_tabular_prompt(source_context)

        return StreamingTurnContext(
            conversation_id=cid,
            user_message=user_message,
            system_prompt=system_prompt,
            schema_context_text=schema_text,
            prior_history=history,
            dialect=dialect,
            adapter=adapter,
            descriptor=descriptor,
        )

    def _read_source(
        self, owner_id: str, cid: str,
    ) -> tuple[EngineAdapter | None, ConnectionDescriptor | None, str | None, str | None, list[tuple[str, str]]]:
        """Load the bound source, cached schema text and prior history.

        Runs in a worker thread, so only plain values leave the session.
        """
        adapter: EngineAdapter | None = None
        descriptor: ConnectionDescriptor | None = None
        schema_text: str | None = None
        tabular_source_id: str | None = None

        with self._session_factory() as db:
            store = ConversationStore(db)
            conversation = store.get_conversation(owner_id, cid)
            if conversation.database_connection_id is not None:
                row = db.get(DatabaseConnection, conversation.database_connection_id)
                if row is None or not row.is_active:
                    raise NotFoundError("Connection", conversation.database_connection_id)
                adapter = self._registry.get(row.engine_kind)
                descriptor = ConnectionDescriptor.from_model(row)
                cached = store.get_schema_cache(row.id)
                if cached is not None:
                    schema_text = cached[0]
            else:
                tabular_source_id = conversation.tabular_source_id
            history = build_history(store.get_history(cid))
        return adapter, descriptor, schema_text, tabular_source_id, history

    def _save_user_message(
        self,
        owner_id: str,
        message: str,
        cid: str,
        cache_connection_id: str | None,
        schema_text: str | None,
    ) -> dict[str, Any]:
        with self._session_factory() as db:
            store = ConversationStore(db)
            if cache_connection_id is not None and schema_text is not None:
                store.set_schema_cache(cache_connection_id, schema_text)
            store.apply_auto_title(store.get_conversation(owner_id, cid), message)
            return message_to_dict(store.append_message(cid, MessageRole.user.value, message))

    def _save_assistant_message(
        self,
        cid: str,
        content: str,
        query: str | None,
        result_json: str | None,
        tokens_used: int,
    ) -> dict[str, Any]:
        with self._session_factory() as db:
            return message_to_dict(
                ConversationStore(db).append_message(
                    cid,
                    MessageRole.assistant.value,
                    content,
                    generated_query=query,
                    result_json=result_json,
                    tokens_used=tokens_used,
                )
            )

    async def _load_schema(self, adapter: EngineAdapter, descriptor: ConnectionDescriptor) -> str | None:
        """Introspect the raw schema. Failures degrade to a schema-less prompt."""
        try:
            return await asyncio.to_thread(adapter.get_raw_schema, descriptor)
        except NLQueryError as e:
            logger.warning(
                "Schema unavailable for connection %s, continuing without it: [%s] %s",
                descriptor.id, e.code, e.detail,
            )
            return None

    async def _generate(
        self,
        context: StreamingTurnContext,
        message: str,
        stream: bool,
        progress: _TurnProgress,
    ) -> tuple[str, int]:
        if not stream:
            return await self._client.chat(message, context.prior_history, context.system_prompt)

        fragments: list[str] = []
        generation = self._client.chat_stream(message, context.prior_history, context.system_prompt)
        try:
            async for fragment in generation:
                self._channel.publish(
                    context.conversation_id,
                    events.STREAM_CHUNK,
                    {"chunk": fragment, "index": len(fragments)},
                )
                fragments.append(fragment)
                progress.chunk_count = len(fragments)
        finally:
            await generation.aclose()
        return "".join(fragments), generation.tokens_used

    async def _finalize(
        self,
        context: StreamingTurnContext,
        text: str,
        tokens_used: int,
        execute: bool,
    ) -> TurnOutcome:
        cid = context.conversation_id
        query = extract_query(text, context.dialect) if context.dialect is not None else None
        if context.dialect is not None and query is None:
            logger.info("No query found in response for conversation %s", cid)

        query_result: dict[str, Any] | None = None
        result_json: str | None = None
        if query and execute and context.adapter is not None and context.descriptor is not None:
            self._channel.publish(cid, events.QUERY_EXECUTING, {"query": query})
            query_result, result_json = await self._execute(context.adapter, context.descriptor, query)

        content = clean_response(text, context.dialect)
        assistant_message = await asyncio.to_thread(
            self._save_assistant_message, cid, content, query, result_json, tokens_used,
        )
        return TurnOutcome(assistant_message, query_result, tokens_used)

    async def _execute(
        self,
        adapter: EngineAdapter,
        descriptor: ConnectionDescriptor,
        query: str,
    ) -> tuple[dict[str, Any], str]:
        """Run the query. A failing query is an outcome, not a turn failure."""
        try:
            envelope = await asyncio.to_thread(adapter.execute_query, descriptor, query)
        except (QueryExecutionError, EngineConnectionError) as e:
            logger.warning(
                "Query failed on connection %s: [%s] %s", descriptor.id, e.code, e.detail,
            )
            failure = {"error": e.user_message, "query": query}
            return failure, json.dumps(failure, separators=(",", ":"))
        return envelope.to_dict(), envelope.to_json()
