"""Shared machinery for catalog-driven relational adapters.

Subclasses supply the driver name, timeout connect args, and the catalog
SQL. Every catalog query aliases its output columns to the same names
so one normalizer builds ``TableSchema`` for all relational engines:

- columns: column_name, data_type, is_nullable, column_default,
  max_length, numeric_precision, numeric_scale, is_identity
- primary keys: constraint_name, column_name
- foreign keys: constraint_name, column_name, referenced_table,
  referenced_column, delete_rule, update_rule
- indexes: index_name, column_name, is_unique, is_clustered
- row count: a single scalar
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from nlquery.engines.base import ConnectionDescriptor, EngineAdapter
from nlquery.engines.materializer import QueryResultEnvelope, materialize_result
from nlquery.engines.schema import (
    ColumnSchema,
    ForeignKeyInfo,
    IndexInfo,
    PrimaryKeyInfo,
    TableSchema,
)
from nlquery.errors import (
    EngineConnectionError,
    NLQueryError,
    QueryExecutionError,
    SchemaIntrospectionError,
)

logger = logging.getLogger(__name__)

EngineFactory = Callable[[URL, dict[str, Any]], Engine]


def _default_engine_factory(url: URL, connect_args: dict[str, Any]) -> Engine:
    # One physical connection per adapter call; nothing is pooled here.
    return create_engine(url, poolclass=NullPool, connect_args=connect_args)


def native_message(exc: BaseException) -> str:
    """Return the driver's own message for a SQLAlchemy error."""
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    return str(exc)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().upper() in ("YES", "TRUE", "1", "T")
    return bool(value)


def _as_int(value: Any) -> int | None:
    return None if value is None else int(value)


class SqlCatalogAdapter(EngineAdapter):
    """Base class for relational adapters backed by SQLAlchemy.

    Args:
        credentials: Store used to decrypt the descriptor's secret.
        settings: Connection and statement timeouts.
        engine_factory: Builds a SQLAlchemy Engine from a URL and connect
            args. Defaults to a NullPool engine.
    """

    drivername: str = ""

    TABLES_SQL: str = ""
    COLUMNS_SQL: str = ""
    PRIMARY_KEYS_SQL: str = ""
    FOREIGN_KEYS_SQL: str = ""
    INDEXES_SQL: str = ""
    ROW_COUNT_SQL: str = ""

    def __init__(
        self,
        credentials,
        settings=None,
        engine_factory: EngineFactory | None = None,
    ) -> None:
        super().__init__(credentials, settings)
        self._engine_factory = engine_factory or _default_engine_factory

    def _connect_args(self) -> dict[str, Any]:
        """Driver connect args carrying connect and statement timeouts."""
        return {}

    def _build_url(self, descriptor: ConnectionDescriptor, password: str) -> URL:
        return URL.create(
            self.drivername,
            username=descriptor.username or None,
            password=password or None,
            host=descriptor.host,
            port=descriptor.port,
            database=descriptor.database_name,
        )

    @contextmanager
    def connect(self, descriptor: ConnectionDescriptor) -> Iterator[Connection]:
        """Open one connection for the duration of a single operation.

        Raises:
            EngineConnectionError: If the connection cannot be opened.
        """
        password = self._decrypt_secret(descriptor)
        engine = self._engine_factory(self._build_url(descriptor, password), self._connect_args())
        del password
        try:
            try:
                conn = engine.connect()
            except SQLAlchemyError as e:
                logger.error(
                    "Cannot connect to %s connection %s: %s",
                    self.engine_kind, descriptor.id, native_message(e),
                )
                raise EngineConnectionError(native_message(e), engine=self.dialect.name) from e
            try:
                yield conn
            finally:
                conn.close()
        finally:
            engine.dispose()

    def _ping(self, descriptor: ConnectionDescriptor) -> None:
        with self.connect(descriptor) as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Structured schema
    # ------------------------------------------------------------------

    def get_structured_schema(self, descriptor: ConnectionDescriptor) -> list[TableSchema]:
        with self.connect(descriptor) as conn:
            try:
                tables = []
                for name, owning_schema in self._list_tables(conn, descriptor):
                    tables.append(self._introspect_table(conn, name, owning_schema))
                return tables
            except SQLAlchemyError as e:
                logger.error(
                    "Schema introspection failed for %s connection %s: %s",
                    self.engine_kind, descriptor.id, native_message(e),
                )
                raise SchemaIntrospectionError(native_message(e), engine=self.dialect.name) from e

    def _catalog_params(self, descriptor: ConnectionDescriptor) -> dict[str, Any]:
        """Bind parameters for TABLES_SQL."""
        return {}

    def _list_tables(self, conn: Connection, descriptor: ConnectionDescriptor) -> list[tuple[str, str]]:
        rows = conn.execute(text(self.TABLES_SQL), self._catalog_params(descriptor)).mappings().all()
        return [(row["table_name"], row["table_schema"]) for row in rows]

    def _introspect_table(self, conn: Connection, name: str, owning_schema: str) -> TableSchema:
        params = {"schema": owning_schema, "table_name": name}
        table = TableSchema(name=name, schema=owning_schema)

        for row in conn.execute(text(self.COLUMNS_SQL), params).mappings():
            table.columns.append(ColumnSchema(
                name=row["column_name"],
                data_type=str(row["data_type"]),
                is_nullable=_as_bool(row["is_nullable"]),
                default_value=None if row["column_default"] is None else str(row["column_default"]),
                max_length=_as_int(row["max_length"]),
                precision=_as_int(row["numeric_precision"]),
                scale=_as_int(row["numeric_scale"]),
                is_identity=_as_bool(row["is_identity"]),
            ))

        primary_keys: dict[str, PrimaryKeyInfo] = {}
        for row in conn.execute(text(self.PRIMARY_KEYS_SQL), params).mappings():
            pk = primary_keys.setdefault(row["constraint_name"], PrimaryKeyInfo(name=row["constraint_name"]))
            if row["column_name"] not in pk.columns:
                pk.columns.append(row["column_name"])
        table.primary_keys = list(primary_keys.values())

        for row in conn.execute(text(self.FOREIGN_KEYS_SQL), params).mappings():
            table.foreign_keys.append(ForeignKeyInfo(
                name=row["constraint_name"],
                column=row["column_name"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
                on_delete=row["delete_rule"],
                on_update=row["update_rule"],
            ))

        indexes: dict[str, IndexInfo] = {}
        for row in conn.execute(text(self.INDEXES_SQL), params).mappings():
            index = indexes.setdefault(row["index_name"], IndexInfo(
                name=row["index_name"],
                is_unique=_as_bool(row["is_unique"]),
                is_clustered=_as_bool(row["is_clustered"]),
            ))
            index.columns.append(row["column_name"])
        table.indexes = list(indexes.values())

        estimate = conn.execute(text(self.ROW_COUNT_SQL), params).scalar()
        table.row_count = self._normalize_row_estimate(estimate)

        table.sync_key_flags()
        return table

    def _normalize_row_estimate(self, estimate: Any) -> int | None:
        return None if estimate is None else int(estimate)

    # ------------------------------------------------------------------
    # Raw schema
    # ------------------------------------------------------------------

    def get_raw_schema(self, descriptor: ConnectionDescriptor) -> str:
        with self.connect(descriptor) as conn:
            try:
                return self._render_raw_schema(conn, descriptor)
            except SQLAlchemyError as e:
                logger.error(
                    "Raw schema read failed for %s connection %s: %s",
                    self.engine_kind, descriptor.id, native_message(e),
                )
                raise SchemaIntrospectionError(native_message(e), engine=self.dialect.name) from e

    def _render_raw_schema(self, conn: Connection, descriptor: ConnectionDescriptor) -> str:
        raise NotImplementedError

    def _quote(self, identifier: str) -> str:
        return identifier

    def _render_create_table(self, qualified_name: str, columns: list[Any]) -> list[str]:
        """Render ``CREATE TABLE`` lines from (name, type, nullable) rows."""
        lines = [f"-- Table: {qualified_name}", f"CREATE TABLE {qualified_name} ("]
        column_lines = [
            f"    {self._quote(row['column_name'])} {row['data_type']} "
            f"{'NULL' if _as_bool(row['is_nullable']) else 'NOT NULL'}"
            for row in columns
        ]
        lines.append(",\n".join(column_lines))
        lines.append(");")
        lines.append("")
        return lines

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_query(self, descriptor: ConnectionDescriptor, query_text: str) -> QueryResultEnvelope:
        with self.connect(descriptor) as conn:
            try:
                with conn.begin():
                    # Run verbatim: no bind-parameter parsing, no % interpolation.
                    result = conn.exec_driver_sql(
                        query_text, execution_options={"no_parameters": True}
                    )
                    return materialize_result(result)
            except NLQueryError:
                raise
            except SQLAlchemyError as e:
                logger.warning(
                    "Query failed on %s connection %s: %s",
                    self.engine_kind, descriptor.id, native_message(e),
                )
                raise QueryExecutionError(native_message(e)) from e
