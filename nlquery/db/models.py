"""SQLAlchemy ORM models for the nlquery state database.

Stores database connection descriptors (with the secret kept as an
encrypted envelope), conversations bound to a single source, and the
append-only message log. Uses SQLAlchemy 2.0 style with Mapped and
mapped_column.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


class MessageRole(str, Enum):
    """Author of a conversation message."""

    user = "user"
    assistant = "assistant"
    system = "system"


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class DatabaseConnection(Base):
    """A user's connection to a backing database.

    The password is never stored in clear text: ``encrypted_secret`` holds
    the credential store's envelope and is only decrypted inside a single
    adapter call.

    Attributes:
        id: UUID primary key.
        owner_id: Identifier of the owning user.
        name: Display name.
        engine_kind: Registry key of the adapter that serves it.
        host, port, database_name, username: Connection coordinates.
        encrypted_secret: Secret reference (encrypted envelope).
        is_active: Soft delete flag.
        last_tested_at: ISO8601 timestamp of the last successful test.
        schema_cache: Raw schema text used as generation context.
        schema_cached_at: When schema_cache was written.
    """

    __tablename__ = "database_connections"
    __table_args__ = (
        Index("ix_dbconn_owner_active", "owner_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    engine_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    host: Mapped[str] = mapped_column(String(255), nullable=False)
    port: Mapped[int] = mapped_column(Integer, nullable=False)
    database_name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    last_tested_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    schema_cache: Mapped[str | None] = mapped_column(Text, nullable=True)
    schema_cached_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return (
            f"<DatabaseConnection(id={self.id!r}, engine={self.engine_kind!r}, "
            f"name={self.name!r})>"
        )


class Conversation(Base):
    """A conversation bound to exactly one source.

    The bound source is either a database connection or an alternate
    tabular source (an uploaded file managed elsewhere), never both.

    Attributes:
        id: UUID primary key.
        owner_id: Identifier of the owning user.
        database_connection_id: Bound connection, if any.
        tabular_source_id: Bound tabular source, if any.
        title: Generated from the first user message.
        created_at: ISO8601 creation timestamp.
        updated_at: ISO8601 last-update timestamp.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        CheckConstraint(
            "(database_connection_id IS NULL) <> (tabular_source_id IS NULL)",
            name="ck_conversation_single_source",
        ),
        Index("ix_conversation_owner_updated", "owner_id", "updated_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    database_connection_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("database_connections.id"),
        nullable=True,
    )
    tabular_source_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.sequence",
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id!r}, title={self.title!r})>"


class Message(Base):
    """One entry of a conversation's append-only log.

    Attributes:
        id: UUID primary key.
        conversation_id: FK to Conversation.
        role: 'user', 'assistant', or 'system'.
        content: Message text (cleaned prose for assistant messages).
        generated_query: Query extracted from the assistant response.
        result_json: Serialized result envelope, or an encoded failure.
        tokens_used: Best-effort token count reported by the backend.
        sequence: Ordering within conversation (monotonically increasing).
        created_at: ISO8601 creation timestamp.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uq_message_conv_seq"),
        Index("ix_message_conv_seq", "conversation_id", "sequence"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    generated_query: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="messages"
    )

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id!r}, role={self.role!r}, "
            f"seq={self.sequence})>"
        )
