"""Abstract base for engine adapters.

Every backing engine (PostgreSQL, MySQL, SQL Server, MongoDB) implements
the same four operations against a ConnectionDescriptor. Adapters open
one connection per call and close it before returning; the secret is
decrypted inside that call only.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from nlquery.config import EngineDefaults
from nlquery.engines.materializer import QueryResultEnvelope
from nlquery.engines.schema import TableSchema
from nlquery.errors import CredentialUnavailableError
from nlquery.services.credential_encryption import CredentialDecryptionError
from nlquery.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Coordinates of one backing database.

    ``secret_reference`` is the credential store's opaque envelope, never
    the clear-text password.
    """

    id: str
    engine_kind: str
    host: str
    port: int
    database_name: str
    username: str = ""
    secret_reference: str = field(default="", repr=False)

    @classmethod
    def from_model(cls, row: Any) -> "ConnectionDescriptor":
        """Build a descriptor from a DatabaseConnection ORM row."""
        return cls(
            id=row.id,
            engine_kind=row.engine_kind,
            host=row.host,
            port=row.port,
            database_name=row.database_name,
            username=row.username or "",
            secret_reference=row.encrypted_secret,
        )


@dataclass(frozen=True)
class QueryDialect:
    """How an engine's queries look inside generated text.

    Attributes:
        name: Display name used in prompts (e.g. "PostgreSQL").
        fence_tags: Code-fence info strings that mark a query block.
        statement_prefixes: Uppercased prefixes that start a bare query
            line or an untagged fenced block.
        prompt_notes: Engine-specific syntax guidance for the system prompt.
    """

    name: str
    fence_tags: tuple[str, ...]
    statement_prefixes: tuple[str, ...]
    prompt_notes: str = ""


class EngineAdapter(ABC):
    """Contract shared by every engine kind.

    Args:
        credentials: Store used to decrypt the descriptor's secret.
        settings: Connection and statement timeouts, sample sizes.
    """

    def __init__(self, credentials: CredentialStore, settings: EngineDefaults | None = None) -> None:
        self._credentials = credentials
        self._settings = settings or EngineDefaults()

    @property
    @abstractmethod
    def engine_kind(self) -> str:
        """Registry key, e.g. 'postgresql'."""

    @property
    @abstractmethod
    def dialect(self) -> QueryDialect:
        """Query dialect used for prompting and extraction."""

    @property
    @abstractmethod
    def default_port(self) -> int:
        """Port used when a connection is registered without one."""

    def test_connection(self, descriptor: ConnectionDescriptor) -> bool:
        """Open and close a connection. Never raises.

        Returns:
            True if the engine accepted the connection, False otherwise.
        """
        try:
            self._ping(descriptor)
            return True
        except Exception as e:
            logger.warning(
                "Connection test failed for %s connection %s: %s",
                self.engine_kind, descriptor.id, e,
            )
            return False

    @abstractmethod
    def _ping(self, descriptor: ConnectionDescriptor) -> None:
        """Open a connection and run the cheapest round trip available."""

    @abstractmethod
    def get_structured_schema(self, descriptor: ConnectionDescriptor) -> list[TableSchema]:
        """Return the normalized schema of every base table or collection.

        Raises:
            EngineConnectionError: If the engine cannot be reached.
            SchemaIntrospectionError: If a catalog query fails.
        """

    @abstractmethod
    def get_raw_schema(self, descriptor: ConnectionDescriptor) -> str:
        """Return a DDL-like text rendering of the schema for prompting.

        Raises:
            EngineConnectionError: If the engine cannot be reached.
            SchemaIntrospectionError: If a catalog query fails.
        """

    @abstractmethod
    def execute_query(self, descriptor: ConnectionDescriptor, query_text: str) -> QueryResultEnvelope:
        """Execute ``query_text`` as-is and materialize the result.

        Raises:
            EngineConnectionError: If the engine cannot be reached.
            QueryExecutionError: If the engine rejects the query.
        """

    def _decrypt_secret(self, descriptor: ConnectionDescriptor) -> str:
        """Decrypt the descriptor's secret for the duration of one call."""
        if not descriptor.secret_reference:
            return ""
        try:
            return self._credentials.decrypt(descriptor.secret_reference)
        except CredentialDecryptionError as e:
            logger.error(
                "Secret for connection %s could not be decrypted: %s",
                descriptor.id, e,
            )
            raise CredentialUnavailableError(str(e)) from e
