"""Persistence for connections, conversations and the message log.

Thin layer between routes/orchestrator and the SQLAlchemy models. All
reads are owner scoped. Messages are append-only: this module never
updates or deletes a message row.
"""

import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from nlquery.db.models import (
    Conversation,
    DatabaseConnection,
    Message,
    MessageRole,
    generate_uuid,
    utc_now_iso,
)
from nlquery.errors import NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
TITLE_MAX_LENGTH = 50

_TITLE_FILLER_PREFIXES = (
    "can you ",
    "please ",
    "i want to ",
    "show me ",
    "get me ",
    "find ",
    "what is ",
    "what are ",
)


def generate_title(first_message: str) -> str:
    """Derive a conversation title from its first user message.

    Strips one conversational filler prefix, capitalises the first
    letter and truncates to 50 characters.

    Args:
        first_message: The user's first message.

    Returns:
        Title string, or "New Chat" when nothing usable remains.
    """
    title = first_message.strip()
    lowered = title.lower()
    for prefix in _TITLE_FILLER_PREFIXES:
        if lowered.startswith(prefix):
            title = title[len(prefix):].strip()
            break

    if not title:
        return DEFAULT_TITLE

    title = title[0].upper() + title[1:]
    if len(title) > TITLE_MAX_LENGTH:
        title = title[: TITLE_MAX_LENGTH - 3] + "..."
    return title


def message_to_dict(message: Message) -> dict[str, Any]:
    """Serialize a message row for events and API responses."""
    return {
        "id": message.id,
        "conversationId": message.conversation_id,
        "role": message.role,
        "content": message.content,
        "generatedQuery": message.generated_query,
        "resultJson": message.result_json,
        "tokensUsed": message.tokens_used,
        "createdAt": message.created_at,
    }


class ConversationStore:
    """CRUD for connection descriptors, conversations and messages.

    Args:
        db: SQLAlchemy session (sync).
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def create_connection(
        self,
        owner_id: str,
        name: str,
        engine_kind: str,
        host: str,
        port: int,
        database_name: str,
        username: str,
        encrypted_secret: str,
    ) -> DatabaseConnection:
        """Persist a connection descriptor. The secret must already be encrypted."""
        row = DatabaseConnection(
            id=generate_uuid(),
            owner_id=owner_id,
            name=name,
            engine_kind=engine_kind,
            host=host,
            port=port,
            database_name=database_name,
            username=username,
            encrypted_secret=encrypted_secret,
        )
        self._db.add(row)
        self._db.commit()
        logger.info("Created %s connection %s for owner %s", engine_kind, row.id, owner_id)
        return row

    def list_connections(self, owner_id: str) -> list[DatabaseConnection]:
        """List the owner's active connections, newest first."""
        return (
            self._db.query(DatabaseConnection)
            .filter_by(owner_id=owner_id, is_active=True)
            .order_by(DatabaseConnection.created_at.desc())
            .all()
        )

    def get_connection(self, owner_id: str, connection_id: str) -> DatabaseConnection:
        """Load an active connection owned by ``owner_id``.

        Raises:
            NotFoundError: If the connection does not exist or was deleted.
            PermissionDeniedError: If another owner holds it.
        """
        row = self._db.get(DatabaseConnection, connection_id)
        if row is None or not row.is_active:
            raise NotFoundError("Connection", connection_id)
        if row.owner_id != owner_id:
            raise PermissionDeniedError("Connection", connection_id)
        return row

    def delete_connection(self, owner_id: str, connection_id: str) -> None:
        """Soft-delete a connection. Conversations bound to it keep their history."""
        row = self.get_connection(owner_id, connection_id)
        row.is_active = False
        row.updated_at = utc_now_iso()
        self._db.commit()

    def mark_connection_tested(self, connection_id: str) -> str:
        """Record a successful connection test. Returns the timestamp."""
        row = self._db.get(DatabaseConnection, connection_id)
        if row is None:
            raise NotFoundError("Connection", connection_id)
        now = utc_now_iso()
        row.last_tested_at = now
        row.updated_at = now
        self._db.commit()
        return now

    def get_schema_cache(self, connection_id: str) -> tuple[str, str | None] | None:
        """Return (raw schema text, cached_at) or None when nothing is cached."""
        row = self._db.get(DatabaseConnection, connection_id)
        if row is None or not row.schema_cache:
            return None
        return row.schema_cache, row.schema_cached_at

    def set_schema_cache(self, connection_id: str, schema_text: str) -> str:
        """Store raw schema text for a connection. Returns the cache timestamp."""
        row = self._db.get(DatabaseConnection, connection_id)
        if row is None:
            raise NotFoundError("Connection", connection_id)
        now = utc_now_iso()
        row.schema_cache = schema_text
        row.schema_cached_at = now
        self._db.commit()
        return now

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(
        self,
        owner_id: str,
        database_connection_id: str | None = None,
        tabular_source_id: str | None = None,
        title: str | None = None,
    ) -> Conversation:
        """Create a conversation bound to exactly one source.

        Raises:
            ValidationError: If both or neither source ids are given.
            NotFoundError: If the connection does not exist.
            PermissionDeniedError: If the connection belongs to someone else.
        """
        if (database_connection_id is None) == (tabular_source_id is None):
            raise ValidationError(
                "A conversation must be bound to exactly one of a database "
                "connection or a tabular source"
            )
        if database_connection_id is not None:
            self.get_connection(owner_id, database_connection_id)

        conversation = Conversation(
            id=generate_uuid(),
            owner_id=owner_id,
            database_connection_id=database_connection_id,
            tabular_source_id=tabular_source_id,
            title=title or DEFAULT_TITLE,
        )
        self._db.add(conversation)
        self._db.commit()
        return conversation

    def list_conversations(self, owner_id: str) -> list[dict[str, Any]]:
        """List the owner's conversations with message counts, most recent first."""
        query = (
            self._db.query(
                Conversation.id,
                Conversation.title,
                Conversation.database_connection_id,
                Conversation.tabular_source_id,
                Conversation.created_at,
                Conversation.updated_at,
                func.count(Message.id).label("message_count"),
            )
            .outerjoin(Message)
            .filter(Conversation.owner_id == owner_id)
            .group_by(Conversation.id)
            .order_by(Conversation.updated_at.desc(), Conversation.created_at.desc())
        )
        return [
            {
                "id": row[0],
                "title": row[1],
                "databaseConnectionId": row[2],
                "tabularSourceId": row[3],
                "createdAt": row[4],
                "updatedAt": row[5],
                "messageCount": row[6],
            }
            for row in query.all()
        ]

    def get_conversation(self, owner_id: str, conversation_id: str) -> Conversation:
        """Load a conversation owned by ``owner_id``.

        Raises:
            NotFoundError: If the conversation does not exist.
            PermissionDeniedError: If another owner holds it.
        """
        conversation = self._db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        if conversation.owner_id != owner_id:
            raise PermissionDeniedError("Conversation", conversation_id)
        return conversation

    def set_title(self, conversation_id: str, title: str) -> None:
        conversation = self._db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        conversation.title = title
        conversation.updated_at = utc_now_iso()
        self._db.commit()

    def apply_auto_title(self, conversation: Conversation, first_message: str) -> bool:
        """Title an untitled, empty conversation from its first user message.

        Must be called before the message is appended.

        Returns:
            True if a title was set.
        """
        if conversation.title and conversation.title != DEFAULT_TITLE:
            return False
        if self.count_messages(conversation.id) > 0:
            return False
        self.set_title(conversation.id, generate_title(first_message))
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        generated_query: str | None = None,
        result_json: str | None = None,
        tokens_used: int = 0,
    ) -> Message:
        """Append a message with the next sequence number.

        Args:
            conversation_id: Parent conversation.
            role: 'user', 'assistant', or 'system'.
            content: Message text.
            generated_query: Query extracted from an assistant response.
            result_json: Serialized result envelope or encoded failure.
            tokens_used: Best-effort token count.

        Returns:
            The persisted Message.
        """
        if role not in {r.value for r in MessageRole}:
            raise ValidationError(f"Unknown message role '{role}'")

        # SELECT+INSERT is safe here: turns within one conversation are
        # serialized by the turn lock and the (conversation, sequence)
        # unique constraint rejects anything that slips through.
        max_seq = (
            self._db.query(Message.sequence)
            .filter_by(conversation_id=conversation_id)
            .order_by(Message.sequence.desc())
            .first()
        )
        next_seq = (max_seq[0] + 1) if max_seq else 1

        message = Message(
            id=generate_uuid(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            generated_query=generated_query,
            result_json=result_json,
            tokens_used=tokens_used,
            sequence=next_seq,
        )
        self._db.add(message)

        conversation = self._db.get(Conversation, conversation_id)
        if conversation:
            conversation.updated_at = utc_now_iso()

        self._db.commit()
        return message

    def get_history(self, conversation_id: str) -> list[Message]:
        """Return all messages of a conversation in replay order."""
        return (
            self._db.query(Message)
            .filter_by(conversation_id=conversation_id)
            .order_by(Message.sequence)
            .all()
        )

    def count_messages(self, conversation_id: str) -> int:
        return self._db.query(Message).filter_by(conversation_id=conversation_id).count()
