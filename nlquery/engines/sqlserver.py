"""SQL Server adapter: sys.* catalog views and partition statistics."""

from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from nlquery.engines.base import ConnectionDescriptor, QueryDialect
from nlquery.engines.sql import SqlCatalogAdapter

TABLES_SQL = """
SELECT TABLE_NAME AS table_name, TABLE_SCHEMA AS table_schema
FROM INFORMATION_SCHEMA.TABLES
WHERE TABLE_TYPE = 'BASE TABLE'
ORDER BY TABLE_SCHEMA, TABLE_NAME
"""

COLUMNS_SQL = """
SELECT
    c.COLUMN_NAME AS column_name,
    c.DATA_TYPE AS data_type,
    c.IS_NULLABLE AS is_nullable,
    c.COLUMN_DEFAULT AS column_default,
    c.CHARACTER_MAXIMUM_LENGTH AS max_length,
    c.NUMERIC_PRECISION AS numeric_precision,
    c.NUMERIC_SCALE AS numeric_scale,
    COLUMNPROPERTY(OBJECT_ID(QUOTENAME(c.TABLE_SCHEMA) + '.' + QUOTENAME(c.TABLE_NAME)),
                   c.COLUMN_NAME, 'IsIdentity') AS is_identity
FROM INFORMATION_SCHEMA.COLUMNS c
WHERE c.TABLE_SCHEMA = :schema AND c.TABLE_NAME = :table_name
ORDER BY c.ORDINAL_POSITION
"""

PRIMARY_KEYS_SQL = """
SELECT tc.CONSTRAINT_NAME AS constraint_name, kcu.COLUMN_NAME AS column_name
FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
    ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
    AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA
WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
    AND tc.TABLE_SCHEMA = :schema
    AND tc.TABLE_NAME = :table_name
ORDER BY kcu.ORDINAL_POSITION
"""

FOREIGN_KEYS_SQL = """
SELECT
    fk.name AS constraint_name,
    COL_NAME(fkc.parent_object_id, fkc.parent_column_id) AS column_name,
    OBJECT_NAME(fkc.referenced_object_id) AS referenced_table,
    COL_NAME(fkc.referenced_object_id, fkc.referenced_column_id) AS referenced_column,
    fk.delete_referential_action_desc AS delete_rule,
    fk.update_referential_action_desc AS update_rule
FROM sys.foreign_keys fk
JOIN sys.foreign_key_columns fkc ON fk.object_id = fkc.constraint_object_id
WHERE OBJECT_NAME(fk.parent_object_id) = :table_name
    AND SCHEMA_NAME(fk.schema_id) = :schema
"""

INDEXES_SQL = """
SELECT
    i.name AS index_name,
    COL_NAME(ic.object_id, ic.column_id) AS column_name,
    i.is_unique AS is_unique,
    CASE WHEN i.type_desc = 'CLUSTERED' THEN 1 ELSE 0 END AS is_clustered
FROM sys.indexes i
JOIN sys.index_columns ic ON i.object_id = ic.object_id AND i.index_id = ic.index_id
WHERE OBJECT_NAME(i.object_id) = :table_name
    AND OBJECT_SCHEMA_NAME(i.object_id) = :schema
    AND i.is_primary_key = 0
    AND i.name IS NOT NULL
ORDER BY i.name, ic.key_ordinal
"""

ROW_COUNT_SQL = """
SELECT SUM(p.rows)
FROM sys.partitions p
JOIN sys.tables t ON p.object_id = t.object_id
WHERE t.name = :table_name
    AND SCHEMA_NAME(t.schema_id) = :schema
    AND p.index_id IN (0, 1)
"""

RAW_COLUMNS_SQL = """
SELECT COLUMN_NAME AS column_name, DATA_TYPE AS data_type, IS_NULLABLE AS is_nullable
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table_name
ORDER BY ORDINAL_POSITION
"""

SQLSERVER_DIALECT = QueryDialect(
    name="SQL Server",
    fence_tags=("sql", "tsql", "mssql", "sqlserver"),
    statement_prefixes=("SELECT", "WITH"),
    prompt_notes=(
        "- Quote identifiers with square brackets: [schema].[TableName]\n"
        "- Use SELECT TOP (n) instead of LIMIT"
    ),
)


def quote_mssql_identifier(identifier: str) -> str:
    """Bracket-quote an identifier, doubling embedded closing brackets."""
    return "[" + identifier.replace("]", "]]") + "]"


class SqlServerAdapter(SqlCatalogAdapter):
    """Adapter for Microsoft SQL Server via pymssql.

    Introspects base tables across every schema. Identity comes from
    ``COLUMNPROPERTY(..., 'IsIdentity')``; the row estimate sums
    ``sys.partitions.rows`` for the heap or clustered index.
    """

    drivername = "mssql+pymssql"

    TABLES_SQL = TABLES_SQL
    COLUMNS_SQL = COLUMNS_SQL
    PRIMARY_KEYS_SQL = PRIMARY_KEYS_SQL
    FOREIGN_KEYS_SQL = FOREIGN_KEYS_SQL
    INDEXES_SQL = INDEXES_SQL
    ROW_COUNT_SQL = ROW_COUNT_SQL

    @property
    def engine_kind(self) -> str:
        return "sqlserver"

    @property
    def dialect(self) -> QueryDialect:
        return SQLSERVER_DIALECT

    @property
    def default_port(self) -> int:
        return 1433

    def _connect_args(self) -> dict[str, Any]:
        return {
            "login_timeout": self._settings.connect_timeout_seconds,
            "timeout": self._settings.statement_timeout_seconds,
        }

    def _quote(self, identifier: str) -> str:
        return quote_mssql_identifier(identifier)

    def _render_raw_schema(self, conn: Connection, descriptor: ConnectionDescriptor) -> str:
        lines = ["-- SQL Server Database Schema", ""]
        for table_name, owning_schema in self._list_tables(conn, descriptor):
            columns = conn.execute(
                text(RAW_COLUMNS_SQL),
                {"schema": owning_schema, "table_name": table_name},
            ).mappings().all()
            qualified = f"{quote_mssql_identifier(owning_schema)}.{quote_mssql_identifier(table_name)}"
            lines.extend(self._render_create_table(qualified, columns))
        return "\n".join(lines)
