"""Multi-engine adapter layer.

Each adapter exposes test-connection, raw schema text, structured schema
extraction and query execution for one engine kind. Use
``build_default_registry`` to obtain all built-in adapters.
"""

from nlquery.engines.base import ConnectionDescriptor, EngineAdapter, QueryDialect
from nlquery.engines.materializer import QueryResultEnvelope
from nlquery.engines.registry import AdapterRegistry, build_default_registry
from nlquery.engines.schema import (
    ColumnSchema,
    ForeignKeyInfo,
    IndexInfo,
    PrimaryKeyInfo,
    TableSchema,
)

__all__ = [
    "AdapterRegistry",
    "ColumnSchema",
    "ConnectionDescriptor",
    "EngineAdapter",
    "ForeignKeyInfo",
    "IndexInfo",
    "PrimaryKeyInfo",
    "QueryDialect",
    "QueryResultEnvelope",
    "TableSchema",
    "build_default_registry",
]
