"""PostgreSQL adapter: information_schema plus pg_catalog statistics."""

from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from nlquery.engines.base import ConnectionDescriptor, QueryDialect
from nlquery.engines.sql import SqlCatalogAdapter

TABLES_SQL = """
SELECT table_name, table_schema
FROM information_schema.tables
WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
ORDER BY table_name
"""

COLUMNS_SQL = """
SELECT
    c.column_name,
    c.data_type,
    c.is_nullable,
    c.column_default,
    c.character_maximum_length AS max_length,
    c.numeric_precision,
    c.numeric_scale,
    (c.column_default LIKE 'nextval%' OR c.is_identity = 'YES') AS is_identity
FROM information_schema.columns c
WHERE c.table_schema = :schema AND c.table_name = :table_name
ORDER BY c.ordinal_position
"""

PRIMARY_KEYS_SQL = """
SELECT tc.constraint_name, kcu.column_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
    ON tc.constraint_name = kcu.constraint_name
    AND tc.table_schema = kcu.table_schema
WHERE tc.constraint_type = 'PRIMARY KEY'
    AND tc.table_schema = :schema
    AND tc.table_name = :table_name
ORDER BY kcu.ordinal_position
"""

FOREIGN_KEYS_SQL = """
SELECT
    tc.constraint_name,
    kcu.column_name,
    ccu.table_name AS referenced_table,
    ccu.column_name AS referenced_column,
    rc.delete_rule,
    rc.update_rule
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
    ON tc.constraint_name = kcu.constraint_name
    AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage ccu
    ON ccu.constraint_name = tc.constraint_name
    AND ccu.table_schema = tc.table_schema
JOIN information_schema.referential_constraints rc
    ON tc.constraint_name = rc.constraint_name
    AND tc.table_schema = rc.constraint_schema
WHERE tc.constraint_type = 'FOREIGN KEY'
    AND tc.table_schema = :schema
    AND tc.table_name = :table_name
"""

INDEXES_SQL = """
SELECT
    i.relname AS index_name,
    a.attname AS column_name,
    ix.indisunique AS is_unique,
    ix.indisclustered AS is_clustered
FROM pg_class t
JOIN pg_index ix ON t.oid = ix.indrelid
JOIN pg_class i ON i.oid = ix.indexrelid
JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
JOIN pg_namespace n ON n.oid = t.relnamespace
WHERE n.nspname = :schema
    AND t.relname = :table_name
    AND NOT ix.indisprimary
ORDER BY i.relname, a.attnum
"""

ROW_COUNT_SQL = """
SELECT c.reltuples::bigint AS estimate
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE n.nspname = :schema AND c.relname = :table_name
"""

RAW_COLUMNS_SQL = """
SELECT column_name, data_type, is_nullable
FROM information_schema.columns
WHERE table_schema = 'public' AND table_name = :table_name
ORDER BY ordinal_position
"""

POSTGRES_DIALECT = QueryDialect(
    name="PostgreSQL",
    fence_tags=("sql", "postgresql", "postgres", "pgsql"),
    statement_prefixes=("SELECT", "WITH"),
    prompt_notes=(
        "- Double-quote identifiers to preserve case: \"TableName\", \"ColumnName\"\n"
        "- ROUND on floating values requires a cast: ROUND(value::numeric, 2)\n"
        "- Use LIMIT for large result sets"
    ),
)


class PostgresAdapter(SqlCatalogAdapter):
    """Adapter for PostgreSQL via psycopg2.

    Introspects base tables of the ``public`` schema. The row estimate is
    ``pg_class.reltuples``; tables never analyzed report -1 there and are
    returned as unknown.
    """

    drivername = "postgresql+psycopg2"

    TABLES_SQL = TABLES_SQL
    COLUMNS_SQL = COLUMNS_SQL
    PRIMARY_KEYS_SQL = PRIMARY_KEYS_SQL
    FOREIGN_KEYS_SQL = FOREIGN_KEYS_SQL
    INDEXES_SQL = INDEXES_SQL
    ROW_COUNT_SQL = ROW_COUNT_SQL

    @property
    def engine_kind(self) -> str:
        return "postgresql"

    @property
    def dialect(self) -> QueryDialect:
        return POSTGRES_DIALECT

    @property
    def default_port(self) -> int:
        return 5432

    def _connect_args(self) -> dict[str, Any]:
        statement_ms = self._settings.statement_timeout_seconds * 1000
        return {
            "connect_timeout": self._settings.connect_timeout_seconds,
            "options": f"-c statement_timeout={statement_ms}",
        }

    def _normalize_row_estimate(self, estimate: Any) -> int | None:
        if estimate is None or int(estimate) < 0:
            return None
        return int(estimate)

    def _render_raw_schema(self, conn: Connection, descriptor: ConnectionDescriptor) -> str:
        lines = ["-- PostgreSQL Database Schema", ""]
        for table_name, _ in self._list_tables(conn, descriptor):
            columns = conn.execute(text(RAW_COLUMNS_SQL), {"table_name": table_name}).mappings().all()
            lines.extend(self._render_create_table(table_name, columns))
        return "\n".join(lines)
