"""Tests for ConversationStore and title generation."""

import pytest

from nlquery.errors import NotFoundError, PermissionDeniedError, ValidationError
from nlquery.services.conversation_store import (
    DEFAULT_TITLE,
    ConversationStore,
    generate_title,
    message_to_dict,
)
from tests.helpers import OTHER_OWNER_ID, OWNER_ID


@pytest.fixture
def store(db_session):
    return ConversationStore(db_session)


class TestGenerateTitle:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("show me revenue by month", "Revenue by month"),
            ("Can you list the top customers", "List the top customers"),
            ("what are the slowest queries?", "The slowest queries?"),
            ("monthly churn", "Monthly churn"),
            ("   ", DEFAULT_TITLE),
        ],
    )
    def test_titles(self, message, expected):
        assert generate_title(message) == expected

    def test_truncates_long_titles(self):
        title = generate_title("x" * 80)
        assert len(title) == 50
        assert title.endswith("...")


class TestConnections:
    def test_create_and_list(self, store):
        row = store.create_connection(OWNER_ID, "Prod", "postgresql", "db", 5432, "shop", "analyst", "env")

        assert [c.id for c in store.list_connections(OWNER_ID)] == [row.id]
        assert store.list_connections(OTHER_OWNER_ID) == []

    def test_engine_kind_stored_verbatim(self, store):
        row = store.create_connection(OWNER_ID, "Crdb", "cockroach", "db", 26257, "x", "u", "")

        assert store.get_connection(OWNER_ID, row.id).engine_kind == "cockroach"

    def test_get_enforces_ownership(self, store, make_connection):
        row = make_connection()

        assert store.get_connection(OWNER_ID, row.id) is row
        with pytest.raises(PermissionDeniedError):
            store.get_connection(OTHER_OWNER_ID, row.id)
        with pytest.raises(NotFoundError):
            store.get_connection(OWNER_ID, "missing")

    def test_soft_delete_hides_connection(self, store, make_connection):
        row = make_connection()

        store.delete_connection(OWNER_ID, row.id)

        assert row.is_active is False
        assert store.list_connections(OWNER_ID) == []
        with pytest.raises(NotFoundError):
            store.get_connection(OWNER_ID, row.id)

    def test_schema_cache_round_trip(self, store, make_connection):
        row = make_connection()
        assert store.get_schema_cache(row.id) is None

        cached_at = store.set_schema_cache(row.id, "CREATE TABLE t (x int)")

        assert store.get_schema_cache(row.id) == ("CREATE TABLE t (x int)", cached_at)

    def test_mark_tested(self, store, make_connection):
        row = make_connection()
        tested_at = store.mark_connection_tested(row.id)
        assert row.last_tested_at == tested_at


class TestConversations:
    def test_bound_to_exactly_one_source(self, store, make_connection):
        row = make_connection()

        with pytest.raises(ValidationError):
            store.create_conversation(OWNER_ID)
        with pytest.raises(ValidationError):
            store.create_conversation(OWNER_ID, database_connection_id=row.id, tabular_source_id="t")

        conversation = store.create_conversation(OWNER_ID, database_connection_id=row.id)
        assert conversation.title == DEFAULT_TITLE

    def test_cannot_bind_to_someone_elses_connection(self, store, make_connection):
        row = make_connection(owner_id=OTHER_OWNER_ID)

        with pytest.raises(PermissionDeniedError):
            store.create_conversation(OWNER_ID, database_connection_id=row.id)

    def test_get_enforces_ownership(self, store, make_conversation):
        conversation = make_conversation(tabular_source_id="src-1")

        with pytest.raises(PermissionDeniedError):
            store.get_conversation(OTHER_OWNER_ID, conversation.id)
        with pytest.raises(NotFoundError):
            store.get_conversation(OWNER_ID, "missing")

    def test_list_includes_message_counts(self, store, make_conversation):
        first = make_conversation(tabular_source_id="src-1")
        make_conversation(tabular_source_id="src-2")
        store.append_message(first.id, "user", "hi")
        store.append_message(first.id, "assistant", "hello")

        listed = {c["id"]: c for c in store.list_conversations(OWNER_ID)}

        assert len(listed) == 2
        assert listed[first.id]["messageCount"] == 2
        assert listed[first.id]["tabularSourceId"] == "src-1"
        assert store.list_conversations(OTHER_OWNER_ID) == []

    def test_auto_title_only_for_fresh_untitled(self, store, make_conversation):
        conversation = make_conversation(tabular_source_id="src-1")

        assert store.apply_auto_title(conversation, "show me revenue") is True
        assert conversation.title == "Revenue"

        assert store.apply_auto_title(conversation, "something else") is False
        assert conversation.title == "Revenue"

    def test_auto_title_skipped_once_messages_exist(self, store, make_conversation):
        conversation = make_conversation(tabular_source_id="src-1")
        store.append_message(conversation.id, "user", "earlier")

        assert store.apply_auto_title(conversation, "show me revenue") is False
        assert conversation.title == DEFAULT_TITLE


class TestMessages:
    def test_sequences_increase(self, store, make_conversation):
        conversation = make_conversation(tabular_source_id="src-1")

        first = store.append_message(conversation.id, "user", "q")
        second = store.append_message(conversation.id, "assistant", "a", "SELECT 1", '{"rows":[]}', 12)

        assert (first.sequence, second.sequence) == (1, 2)
        assert [m.id for m in store.get_history(conversation.id)] == [first.id, second.id]
        assert store.count_messages(conversation.id) == 2

    def test_unknown_role_rejected(self, store, make_conversation):
        conversation = make_conversation(tabular_source_id="src-1")
        with pytest.raises(ValidationError):
            store.append_message(conversation.id, "tool", "x")

    def test_append_bumps_conversation(self, store, make_conversation):
        conversation = make_conversation(tabular_source_id="src-1")
        before = conversation.updated_at

        store.append_message(conversation.id, "user", "q")

        assert conversation.updated_at >= before

    def test_message_to_dict(self, store, make_conversation):
        conversation = make_conversation(tabular_source_id="src-1")
        message = store.append_message(conversation.id, "assistant", "a", "SELECT 1", None, 5)

        data = message_to_dict(message)

        assert data["conversationId"] == conversation.id
        assert data["generatedQuery"] == "SELECT 1"
        assert data["tokensUsed"] == 5
        assert set(data) == {
            "id", "conversationId", "role", "content", "generatedQuery",
            "resultJson", "tokensUsed", "createdAt",
        }
