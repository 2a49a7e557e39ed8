"""Pytest fixtures for API tests.

Provides a TestClient whose state database, credential store, adapter
registry, generation client and turn locks are all test doubles.
"""

from collections.abc import Generator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from nlquery.api.dependencies import (
    get_credential_store,
    get_delivery_channel,
    get_orchestrator,
    get_registry,
    get_turn_locks,
)
from nlquery.api.main import app
from nlquery.db.connection import get_db
from nlquery.engines import AdapterRegistry
from nlquery.engines.materializer import QueryResultEnvelope
from nlquery.engines.postgres import POSTGRES_DIALECT
from nlquery.engines.schema import ColumnSchema, TableSchema
from nlquery.services.delivery_channel import DeliveryChannel
from nlquery.services.orchestrator import ConversationOrchestrator
from nlquery.services.turn_locks import TurnLocks
from tests.helpers import OWNER_ID, ScriptedClient


@pytest.fixture
def adapter() -> MagicMock:
    mock = MagicMock(engine_kind="postgresql", default_port=5432)
    mock.dialect = POSTGRES_DIALECT
    mock.test_connection.return_value = True
    mock.get_raw_schema.return_value = "CREATE TABLE users (\n    name text NULL\n);"
    mock.get_structured_schema.return_value = [
        TableSchema(name="users", schema="public", columns=[ColumnSchema(name="name", data_type="text")]),
    ]
    mock.execute_query.return_value = QueryResultEnvelope(
        columns=["name"], rows=[{"name": "Ada"}, {"name": "Bob"}], row_count=2,
    )
    return mock


@pytest.fixture
def registry(adapter) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register(adapter)
    return registry


@pytest.fixture
def generation_client() -> ScriptedClient:
    return ScriptedClient()


@pytest.fixture
def turn_locks() -> TurnLocks:
    return TurnLocks()


@pytest.fixture
def channel() -> DeliveryChannel:
    return DeliveryChannel()


@pytest.fixture
def client(
    session_local: sessionmaker,
    session_factory,
    credential_store,
    registry,
    generation_client,
    turn_locks,
    channel,
) -> Generator[TestClient, None, None]:
    """TestClient with every process-wide collaborator overridden."""

    def override_get_db():
        session = session_local()
        try:
            yield session
        finally:
            session.close()

    def override_get_orchestrator():
        return ConversationOrchestrator(
            generation_client, registry, channel, session_factory=session_factory,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_credential_store] = lambda: credential_store
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_orchestrator] = override_get_orchestrator
    app.dependency_overrides[get_turn_locks] = lambda: turn_locks
    app.dependency_overrides[get_delivery_channel] = lambda: channel
    with TestClient(app, headers={"X-User-Id": OWNER_ID}) as c:
        yield c
    app.dependency_overrides.clear()
