"""Lookup table from engine kind to adapter instance."""

import logging

from nlquery.config import EngineDefaults
from nlquery.engines.base import EngineAdapter
from nlquery.errors import UnsupportedEngineError
from nlquery.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Maps ``engine_kind`` strings to adapters.

    Adding an engine means implementing EngineAdapter and registering an
    instance; nothing else branches on engine kind.
    """

    def __init__(self) -> None:
        self._adapters: dict[str, EngineAdapter] = {}

    def register(self, adapter: EngineAdapter) -> None:
        """Register an adapter under its own engine_kind, replacing any previous one."""
        self._adapters[adapter.engine_kind] = adapter
        logger.debug("Registered %s adapter", adapter.engine_kind)

    def get(self, engine_kind: str) -> EngineAdapter:
        """Return the adapter for ``engine_kind``.

        Raises:
            UnsupportedEngineError: If no adapter is registered for it.
        """
        adapter = self._adapters.get(engine_kind)
        if adapter is None:
            raise UnsupportedEngineError(engine_kind)
        return adapter

    def kinds(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, engine_kind: object) -> bool:
        return engine_kind in self._adapters


def build_default_registry(
    credentials: CredentialStore,
    settings: EngineDefaults | None = None,
) -> AdapterRegistry:
    """Create a registry with the PostgreSQL, MySQL, SQL Server and MongoDB adapters."""
    from nlquery.engines.mongodb import MongoDBAdapter
    from nlquery.engines.mysql import MySQLAdapter
    from nlquery.engines.postgres import PostgresAdapter
    from nlquery.engines.sqlserver import SqlServerAdapter

    registry = AdapterRegistry()
    for adapter_cls in (PostgresAdapter, MySQLAdapter, SqlServerAdapter, MongoDBAdapter):
        registry.register(adapter_cls(credentials, settings))
    return registry
