"""MySQL adapter: INFORMATION_SCHEMA catalog and SHOW CREATE TABLE."""

from typing import Any

from sqlalchemy.engine import Connection

from nlquery.engines.base import ConnectionDescriptor, QueryDialect
from nlquery.engines.sql import SqlCatalogAdapter

TABLES_SQL = """
SELECT TABLE_NAME AS table_name, TABLE_SCHEMA AS table_schema
FROM INFORMATION_SCHEMA.TABLES
WHERE TABLE_SCHEMA = :database AND TABLE_TYPE = 'BASE TABLE'
ORDER BY TABLE_NAME
"""

COLUMNS_SQL = """
SELECT
    COLUMN_NAME AS column_name,
    DATA_TYPE AS data_type,
    IS_NULLABLE AS is_nullable,
    COLUMN_DEFAULT AS column_default,
    CHARACTER_MAXIMUM_LENGTH AS max_length,
    NUMERIC_PRECISION AS numeric_precision,
    NUMERIC_SCALE AS numeric_scale,
    (EXTRA LIKE '%auto_increment%') AS is_identity
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table_name
ORDER BY ORDINAL_POSITION
"""

PRIMARY_KEYS_SQL = """
SELECT CONSTRAINT_NAME AS constraint_name, COLUMN_NAME AS column_name
FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE
WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table_name
    AND CONSTRAINT_NAME = 'PRIMARY'
ORDER BY ORDINAL_POSITION
"""

FOREIGN_KEYS_SQL = """
SELECT
    kcu.CONSTRAINT_NAME AS constraint_name,
    kcu.COLUMN_NAME AS column_name,
    kcu.REFERENCED_TABLE_NAME AS referenced_table,
    kcu.REFERENCED_COLUMN_NAME AS referenced_column,
    rc.DELETE_RULE AS delete_rule,
    rc.UPDATE_RULE AS update_rule
FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
JOIN INFORMATION_SCHEMA.REFERENTIAL_CONSTRAINTS rc
    ON kcu.CONSTRAINT_NAME = rc.CONSTRAINT_NAME
    AND kcu.TABLE_SCHEMA = rc.CONSTRAINT_SCHEMA
WHERE kcu.TABLE_SCHEMA = :schema
    AND kcu.TABLE_NAME = :table_name
    AND kcu.REFERENCED_TABLE_NAME IS NOT NULL
"""

INDEXES_SQL = """
SELECT
    INDEX_NAME AS index_name,
    COLUMN_NAME AS column_name,
    (NON_UNIQUE = 0) AS is_unique,
    0 AS is_clustered
FROM INFORMATION_SCHEMA.STATISTICS
WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table_name
    AND INDEX_NAME <> 'PRIMARY'
ORDER BY INDEX_NAME, SEQ_IN_INDEX
"""

ROW_COUNT_SQL = """
SELECT TABLE_ROWS
FROM INFORMATION_SCHEMA.TABLES
WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table_name
"""

MYSQL_DIALECT = QueryDialect(
    name="MySQL",
    fence_tags=("sql", "mysql"),
    statement_prefixes=("SELECT", "WITH"),
    prompt_notes=(
        "- Quote identifiers with backticks when needed: `table_name`\n"
        "- Use LIMIT for large result sets"
    ),
)


def quote_mysql_identifier(identifier: str) -> str:
    """Backtick-quote an identifier, doubling embedded backticks."""
    return "`" + identifier.replace("`", "``") + "`"


class MySQLAdapter(SqlCatalogAdapter):
    """Adapter for MySQL via PyMySQL.

    Introspects the base tables of the connected database. The row
    estimate is ``INFORMATION_SCHEMA.TABLES.TABLE_ROWS``.
    """

    drivername = "mysql+pymysql"

    TABLES_SQL = TABLES_SQL
    COLUMNS_SQL = COLUMNS_SQL
    PRIMARY_KEYS_SQL = PRIMARY_KEYS_SQL
    FOREIGN_KEYS_SQL = FOREIGN_KEYS_SQL
    INDEXES_SQL = INDEXES_SQL
    ROW_COUNT_SQL = ROW_COUNT_SQL

    @property
    def engine_kind(self) -> str:
        return "mysql"

    @property
    def dialect(self) -> QueryDialect:
        return MYSQL_DIALECT

    @property
    def default_port(self) -> int:
        return 3306

    def _connect_args(self) -> dict[str, Any]:
        return {
            "connect_timeout": self._settings.connect_timeout_seconds,
            "read_timeout": self._settings.statement_timeout_seconds,
            "write_timeout": self._settings.statement_timeout_seconds,
        }

    def _catalog_params(self, descriptor: ConnectionDescriptor) -> dict[str, Any]:
        return {"database": descriptor.database_name}

    def _quote(self, identifier: str) -> str:
        return quote_mysql_identifier(identifier)

    def _render_raw_schema(self, conn: Connection, descriptor: ConnectionDescriptor) -> str:
        lines = ["-- MySQL Database Schema", ""]
        for table_name, _ in self._list_tables(conn, descriptor):
            lines.append(f"-- Table: {table_name}")
            row = conn.exec_driver_sql(
                f"SHOW CREATE TABLE {quote_mysql_identifier(table_name)}",
                execution_options={"no_parameters": True},
            ).first()
            if row is not None:
                lines.append(row[1])
            lines.append("")
        return "\n".join(lines)
