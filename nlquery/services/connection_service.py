"""ConnectionService: create, test and introspect database connections.

Secrets are encrypted through the credential store before they reach the
state database. Raw schema text is cached on the connection row and
reused as generation context until a refresh is requested.
"""

import logging
from typing import Any

from nlquery.db.models import DatabaseConnection
from nlquery.engines.base import ConnectionDescriptor
from nlquery.engines.registry import AdapterRegistry
from nlquery.engines.schema import schema_to_dict
from nlquery.services.conversation_store import ConversationStore
from nlquery.services.credential_store import CredentialStore
from nlquery.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)


def connection_to_dict(row: DatabaseConnection) -> dict[str, Any]:
    """Serialize a connection row. The secret reference is never included."""
    return {
        "id": row.id,
        "name": row.name,
        "engineKind": row.engine_kind,
        "host": row.host,
        "port": row.port,
        "databaseName": row.database_name,
        "username": row.username,
        "lastTestedAt": row.last_tested_at,
        "schemaCachedAt": row.schema_cached_at,
        "createdAt": row.created_at,
        "updatedAt": row.updated_at,
    }


class ConnectionService:
    """Connection lifecycle on top of the store and the adapter registry.

    Args:
        store: Conversation store bound to a request session.
        registry: Adapter lookup by engine kind.
        credentials: Store used to encrypt new secrets.
    """

    def __init__(
        self,
        store: ConversationStore,
        registry: AdapterRegistry,
        credentials: CredentialStore,
    ) -> None:
        self._store = store
        self._registry = registry
        self._credentials = credentials

    def create_connection(
        self,
        owner_id: str,
        name: str,
        engine_kind: str,
        host: str,
        database_name: str,
        username: str = "",
        password: str = "",
        port: int | None = None,
    ) -> DatabaseConnection:
        """Encrypt the password and persist a new connection.

        Any engine kind with a registered adapter is accepted. A missing
        port falls back to the adapter's default.

        Raises:
            UnsupportedEngineError: If no adapter handles ``engine_kind``.
        """
        adapter = self._registry.get(engine_kind)
        logger.debug("Creating connection: %s", redact_for_logging({
            "name": name, "engine_kind": engine_kind, "host": host, "port": port,
            "database_name": database_name, "username": username, "password": password,
        }))
        encrypted = self._credentials.encrypt(password) if password else ""
        return self._store.create_connection(
            owner_id=owner_id,
            name=name,
            engine_kind=engine_kind,
            host=host,
            port=port or adapter.default_port,
            database_name=database_name,
            username=username,
            encrypted_secret=encrypted,
        )

    def test_connection(self, owner_id: str, connection_id: str) -> dict[str, Any]:
        """Test a stored connection. Records the timestamp only on success."""
        row = self._store.get_connection(owner_id, connection_id)
        adapter = self._registry.get(row.engine_kind)
        success = adapter.test_connection(ConnectionDescriptor.from_model(row))
        tested_at = None
        if success:
            tested_at = self._store.mark_connection_tested(row.id)
        logger.info("Connection %s test %s", row.id, "succeeded" if success else "failed")
        return {"success": success, "testedAt": tested_at}

    def get_raw_schema(self, row: DatabaseConnection, refresh: bool = False) -> tuple[str, str | None]:
        """Return (raw schema text, cached_at), introspecting when needed."""
        if not refresh:
            cached = self._store.get_schema_cache(row.id)
            if cached is not None:
                return cached
        adapter = self._registry.get(row.engine_kind)
        raw_schema = adapter.get_raw_schema(ConnectionDescriptor.from_model(row))
        cached_at = self._store.set_schema_cache(row.id, raw_schema)
        return raw_schema, cached_at

    def get_schema(self, owner_id: str, connection_id: str, refresh: bool = False) -> dict[str, Any]:
        """Structured schema plus the raw text used for generation.

        Returns:
            Dict with databaseName, databaseType, tables, cachedAt, rawSchema.
        """
        row = self._store.get_connection(owner_id, connection_id)
        adapter = self._registry.get(row.engine_kind)
        tables = adapter.get_structured_schema(ConnectionDescriptor.from_model(row))
        raw_schema, cached_at = self.get_raw_schema(row, refresh=refresh)
        return {
            "databaseName": row.database_name,
            "databaseType": row.engine_kind,
            "tables": schema_to_dict(tables),
            "cachedAt": cached_at,
            "rawSchema": raw_schema,
        }
