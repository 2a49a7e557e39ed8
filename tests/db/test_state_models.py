"""Tests for DatabaseConnection, Conversation and Message models."""

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nlquery.db.models import (
    Conversation,
    DatabaseConnection,
    Message,
    MessageRole,
)


class TestEnums:
    def test_roles_are_strings(self):
        assert isinstance(MessageRole.assistant, str)
        assert MessageRole.assistant.value == "assistant"


class TestDatabaseConnection:
    def test_defaults(self, db_session: Session):
        row = DatabaseConnection(
            owner_id="u", name="Prod", engine_kind="mysql", host="h", port=3306,
            database_name="shop", encrypted_secret="",
        )
        db_session.add(row)
        db_session.commit()

        assert len(row.id) == 36
        assert row.is_active is True
        assert row.username == ""
        assert row.schema_cache is None
        assert row.created_at is not None


class TestConversation:
    def test_requires_exactly_one_source(self, db_session: Session):
        db_session.add(Conversation(owner_id="u"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

        db_session.add(Conversation(owner_id="u", database_connection_id="c", tabular_source_id="t"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_messages_ordered_by_sequence(self, db_session: Session, make_conversation):
        conversation = make_conversation(tabular_source_id="src-1")
        db_session.add_all([
            Message(conversation_id=conversation.id, role="assistant", content="b", sequence=2),
            Message(conversation_id=conversation.id, role="user", content="a", sequence=1),
        ])
        db_session.commit()
        db_session.expire_all()

        assert [m.content for m in conversation.messages] == ["a", "b"]
        assert conversation.messages[0].tokens_used == 0

    def test_sequence_unique_per_conversation(self, db_session: Session, make_conversation):
        conversation = make_conversation(tabular_source_id="src-1")
        db_session.add_all([
            Message(conversation_id=conversation.id, role="user", content="a", sequence=1),
            Message(conversation_id=conversation.id, role="user", content="b", sequence=1),
        ])
        with pytest.raises(IntegrityError):
            db_session.commit()
