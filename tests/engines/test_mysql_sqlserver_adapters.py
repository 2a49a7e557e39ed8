"""Tests for the MySQL and SQL Server catalog adapters."""

from unittest.mock import MagicMock

import pytest

from nlquery.engines import mysql, sqlserver
from nlquery.engines.base import ConnectionDescriptor
from nlquery.engines.mysql import MySQLAdapter, quote_mysql_identifier
from nlquery.engines.sqlserver import SqlServerAdapter, quote_mssql_identifier
from tests.helpers import FakeCatalogConnection, FakeEngine, catalog_engine_factory


def _descriptor(kind: str) -> ConnectionDescriptor:
    return ConnectionDescriptor(
        id=f"{kind}-1",
        engine_kind=kind,
        host="db.internal",
        port=3306 if kind == "mysql" else 1433,
        database_name="shop",
        username="analyst",
    )


@pytest.fixture
def credentials():
    return MagicMock()


def _mysql_catalog() -> dict:
    return {
        mysql.TABLES_SQL: [{"table_name": "products", "table_schema": "shop"}],
        mysql.COLUMNS_SQL: [
            {"column_name": "id", "data_type": "int", "is_nullable": "NO", "column_default": None,
             "max_length": None, "numeric_precision": 10, "numeric_scale": 0, "is_identity": 1},
            {"column_name": "sku", "data_type": "varchar", "is_nullable": "NO", "column_default": None,
             "max_length": 64, "numeric_precision": None, "numeric_scale": None, "is_identity": 0},
            {"column_name": "price", "data_type": "decimal", "is_nullable": "YES", "column_default": "0.00",
             "max_length": None, "numeric_precision": 10, "numeric_scale": 2, "is_identity": 0},
        ],
        mysql.PRIMARY_KEYS_SQL: [{"constraint_name": "PRIMARY", "column_name": "id"}],
        mysql.FOREIGN_KEYS_SQL: [],
        mysql.INDEXES_SQL: [
            {"index_name": "uq_sku", "column_name": "sku", "is_unique": 1, "is_clustered": 0},
        ],
        mysql.ROW_COUNT_SQL: [{"TABLE_ROWS": 42}],
        "SHOW CREATE TABLE `products`": [
            {"Table": "products", "Create Table": "CREATE TABLE `products` (\n  `id` int NOT NULL\n)"},
        ],
    }


class TestMySQLAdapter:
    """INFORMATION_SCHEMA normalization for MySQL."""

    def test_tables_listed_for_connected_database(self, credentials):
        connection = FakeCatalogConnection(_mysql_catalog())
        adapter = MySQLAdapter(credentials, engine_factory=catalog_engine_factory(FakeEngine(connection)))

        tables = adapter.get_structured_schema(_descriptor("mysql"))

        assert connection.executed[0][1] == {"database": "shop"}
        products = tables[0]
        assert products.schema == "shop"
        assert products.primary_keys[0].name == "PRIMARY"
        assert products.column("id").is_primary_key is True
        assert products.column("id").is_identity is True
        assert products.column("sku").max_length == 64
        assert products.column("price").scale == 2
        assert products.row_count == 42

    def test_indexes_never_clustered(self, credentials):
        connection = FakeCatalogConnection(_mysql_catalog())
        adapter = MySQLAdapter(credentials, engine_factory=catalog_engine_factory(FakeEngine(connection)))

        index = adapter.get_structured_schema(_descriptor("mysql"))[0].indexes[0]

        assert index.columns == ["sku"]
        assert index.is_unique is True
        assert index.is_clustered is False

    def test_raw_schema_uses_show_create_table(self, credentials):
        connection = FakeCatalogConnection(_mysql_catalog())
        adapter = MySQLAdapter(credentials, engine_factory=catalog_engine_factory(FakeEngine(connection)))

        raw = adapter.get_raw_schema(_descriptor("mysql"))

        assert raw.startswith("-- MySQL Database Schema")
        assert "-- Table: products" in raw
        assert "CREATE TABLE `products`" in raw

    def test_connect_args_carry_timeouts(self, credentials):
        calls: list = []
        adapter = MySQLAdapter(
            credentials,
            engine_factory=catalog_engine_factory(FakeEngine(FakeCatalogConnection({})), calls),
        )

        adapter.test_connection(_descriptor("mysql"))

        url, connect_args = calls[0]
        assert url.drivername == "mysql+pymysql"
        assert set(connect_args) == {"connect_timeout", "read_timeout", "write_timeout"}

    def test_identifier_quoting(self):
        assert quote_mysql_identifier("order`s") == "`order``s`"


def _sqlserver_catalog() -> dict:
    columns = {
        "Customers": [
            {"column_name": "CustomerID", "data_type": "int", "is_nullable": "NO", "column_default": None,
             "max_length": None, "numeric_precision": 10, "numeric_scale": 0, "is_identity": 1},
            {"column_name": "Name", "data_type": "nvarchar", "is_nullable": "YES", "column_default": None,
             "max_length": 100, "numeric_precision": None, "numeric_scale": None, "is_identity": 0},
        ],
        "Invoices": [
            {"column_name": "InvoiceID", "data_type": "int", "is_nullable": "NO", "column_default": None,
             "max_length": None, "numeric_precision": 10, "numeric_scale": 0, "is_identity": 1},
            {"column_name": "CustomerID", "data_type": "int", "is_nullable": "NO", "column_default": None,
             "max_length": None, "numeric_precision": 10, "numeric_scale": 0, "is_identity": 0},
        ],
    }
    return {
        sqlserver.TABLES_SQL: [
            {"table_name": "Customers", "table_schema": "dbo"},
            {"table_name": "Invoices", "table_schema": "sales"},
        ],
        sqlserver.COLUMNS_SQL: lambda p: columns[p["table_name"]],
        sqlserver.PRIMARY_KEYS_SQL: lambda p: [{
            "constraint_name": f"PK_{p['table_name']}",
            "column_name": columns[p["table_name"]][0]["column_name"],
        }],
        sqlserver.FOREIGN_KEYS_SQL: lambda p: [{
            "constraint_name": "FK_Invoices_Customers",
            "column_name": "CustomerID",
            "referenced_table": "Customers",
            "referenced_column": "CustomerID",
            "delete_rule": "NO_ACTION",
            "update_rule": "NO_ACTION",
        }] if p["table_name"] == "Invoices" else [],
        sqlserver.INDEXES_SQL: lambda p: [
            {"index_name": "IX_Invoices_Customer", "column_name": "CustomerID",
             "is_unique": False, "is_clustered": 0},
        ] if p["table_name"] == "Invoices" else [],
        sqlserver.ROW_COUNT_SQL: lambda p: [{"": 1000 if p["table_name"] == "Invoices" else None}],
        sqlserver.RAW_COLUMNS_SQL: lambda p: columns[p["table_name"]],
    }


class TestSqlServerAdapter:
    """sys.* catalog normalization for SQL Server."""

    def test_all_schemas_and_foreign_keys(self, credentials):
        connection = FakeCatalogConnection(_sqlserver_catalog())
        adapter = SqlServerAdapter(credentials, engine_factory=catalog_engine_factory(FakeEngine(connection)))

        customers, invoices = adapter.get_structured_schema(_descriptor("sqlserver"))

        assert (customers.schema, invoices.schema) == ("dbo", "sales")
        assert invoices.column("CustomerID").is_foreign_key is True
        assert invoices.column("CustomerID").is_primary_key is False
        assert invoices.column("InvoiceID").is_primary_key is True
        assert invoices.foreign_keys[0].referenced_table == "Customers"

    def test_row_estimates(self, credentials):
        connection = FakeCatalogConnection(_sqlserver_catalog())
        adapter = SqlServerAdapter(credentials, engine_factory=catalog_engine_factory(FakeEngine(connection)))

        customers, invoices = adapter.get_structured_schema(_descriptor("sqlserver"))

        assert invoices.row_count == 1000
        assert customers.row_count is None

    def test_raw_schema_qualifies_with_schema(self, credentials):
        connection = FakeCatalogConnection(_sqlserver_catalog())
        adapter = SqlServerAdapter(credentials, engine_factory=catalog_engine_factory(FakeEngine(connection)))

        raw = adapter.get_raw_schema(_descriptor("sqlserver"))

        assert "CREATE TABLE [sales].[Invoices] (" in raw
        assert "    [Name] nvarchar NULL" in raw

    def test_identifier_quoting(self):
        assert quote_mssql_identifier("we]ird") == "[we]]ird]"
