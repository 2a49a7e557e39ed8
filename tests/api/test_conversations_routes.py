"""Tests for the conversation and turn endpoints."""

import pytest

from nlquery.errors import GenerationError
from tests.helpers import OTHER_OWNER_ID


@pytest.fixture
def conversation_id(make_connection, make_conversation) -> str:
    connection = make_connection()
    return make_conversation(database_connection_id=connection.id).id


class TestCreateConversation:
    """POST /api/v1/conversations"""

    def test_bound_to_connection_with_default_title(self, client, make_connection):
        connection = make_connection()

        response = client.post("/api/v1/conversations", json={"databaseConnectionId": connection.id})

        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "New Chat"
        assert data["databaseConnectionId"] == connection.id
        assert data["tabularSourceId"] is None
        assert data["messageCount"] == 0

    def test_tabular_source(self, client):
        response = client.post(
            "/api/v1/conversations", json={"tabularSourceId": "upload-7", "title": "Q3 sales"},
        )

        assert response.status_code == 201
        assert response.json()["title"] == "Q3 sales"

    def test_requires_exactly_one_source(self, client, make_connection):
        connection = make_connection()

        neither = client.post("/api/v1/conversations", json={})
        both = client.post(
            "/api/v1/conversations",
            json={"databaseConnectionId": connection.id, "tabularSourceId": "upload-7"},
        )

        assert neither.status_code == 400
        assert neither.json()["error_code"] == "VALIDATION_ERROR"
        assert both.status_code == 400

    def test_foreign_connection_is_403(self, client, make_connection):
        connection = make_connection(owner_id=OTHER_OWNER_ID)

        response = client.post("/api/v1/conversations", json={"databaseConnectionId": connection.id})

        assert response.status_code == 403


class TestReadConversations:
    def test_list_includes_message_count(self, client, conversation_id, make_conversation):
        make_conversation(owner_id=OTHER_OWNER_ID, tabular_source_id="theirs")
        client.post(f"/api/v1/conversations/{conversation_id}/messages", json={"content": "list users"})

        response = client.get("/api/v1/conversations")

        assert response.status_code == 200
        summaries = response.json()
        assert [s["id"] for s in summaries] == [conversation_id]
        assert summaries[0]["messageCount"] == 2

    def test_detail_has_messages_in_order(self, client, conversation_id):
        client.post(f"/api/v1/conversations/{conversation_id}/messages", json={"content": "list users"})

        response = client.get(f"/api/v1/conversations/{conversation_id}")

        assert response.status_code == 200
        data = response.json()
        assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
        assert data["messages"][0]["content"] == "list users"
        assert data["messageCount"] == 2

    def test_foreign_conversation_is_403(self, client, make_conversation):
        conversation = make_conversation(owner_id=OTHER_OWNER_ID, tabular_source_id="theirs")

        response = client.get(f"/api/v1/conversations/{conversation.id}")

        assert response.status_code == 403
        assert response.json()["error_code"] == "FORBIDDEN"

    def test_missing_conversation_is_404(self, client):
        assert client.get("/api/v1/conversations/nope").status_code == 404


class TestSendMessage:
    """POST /api/v1/conversations/{id}/messages"""

    def test_returns_completed_payload(self, client, conversation_id, adapter):
        response = client.post(
            f"/api/v1/conversations/{conversation_id}/messages", json={"content": "list users"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["assistantMessage"]["role"] == "assistant"
        assert data["assistantMessage"]["generatedQuery"] == "SELECT name FROM users ORDER BY name"
        assert data["queryResult"]["rows"] == [{"name": "Ada"}, {"name": "Bob"}]
        assert data["tokensUsed"] == 11
        adapter.execute_query.assert_called_once()

    def test_execute_query_false_skips_execution(self, client, conversation_id, adapter):
        response = client.post(
            f"/api/v1/conversations/{conversation_id}/messages",
            json={"content": "list users", "executeQuery": False},
        )

        assert response.status_code == 200
        assert response.json()["queryResult"] is None
        adapter.execute_query.assert_not_called()

    def test_first_message_sets_title(self, client, conversation_id):
        client.post(f"/api/v1/conversations/{conversation_id}/messages", json={"content": "list users"})

        detail = client.get(f"/api/v1/conversations/{conversation_id}").json()

        assert detail["title"] == "List users"

    def test_empty_content_is_422(self, client, conversation_id):
        response = client.post(f"/api/v1/conversations/{conversation_id}/messages", json={"content": ""})
        assert response.status_code == 422

    def test_turn_in_progress_is_409(self, client, conversation_id, turn_locks):
        turn_locks.acquire(conversation_id)

        response = client.post(
            f"/api/v1/conversations/{conversation_id}/messages", json={"content": "list users"},
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "CONFLICT"

    def test_foreign_owner_is_403(self, client, make_conversation, turn_locks):
        conversation = make_conversation(owner_id=OTHER_OWNER_ID, tabular_source_id="theirs")

        response = client.post(
            f"/api/v1/conversations/{conversation.id}/messages", json={"content": "hi"},
        )

        assert response.status_code == 403
        assert turn_locks.is_locked(conversation.id) is False

    def test_generation_failure_is_502_and_releases_lock(
        self, client, conversation_id, generation_client, turn_locks,
    ):
        generation_client.fail_with = GenerationError("HTTP 500 from backend")

        response = client.post(
            f"/api/v1/conversations/{conversation_id}/messages", json={"content": "list users"},
        )

        assert response.status_code == 502
        assert response.json()["error_code"] == "E-4001"
        assert response.json()["message"] == "Failed to get a response from the AI service."
        assert turn_locks.is_locked(conversation_id) is False


class TestStreamPreChecks:
    """The streaming routes reject before the event stream opens."""

    def test_stream_turn_in_progress_is_409(self, client, conversation_id, turn_locks):
        turn_locks.acquire(conversation_id)

        response = client.post(
            f"/api/v1/conversations/{conversation_id}/messages/stream", json={"content": "list users"},
        )

        assert response.status_code == 409

    def test_stream_foreign_owner_is_403(self, client, make_conversation, turn_locks):
        conversation = make_conversation(owner_id=OTHER_OWNER_ID, tabular_source_id="theirs")

        response = client.post(
            f"/api/v1/conversations/{conversation.id}/messages/stream", json={"content": "hi"},
        )

        assert response.status_code == 403
        assert turn_locks.is_locked(conversation.id) is False

    def test_events_missing_conversation_is_404(self, client):
        assert client.get("/api/v1/conversations/nope/events").status_code == 404
