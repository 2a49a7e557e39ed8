"""MongoDB adapter: schema by document sampling, commands as extended JSON.

MongoDB declares no schema. Structured introspection samples documents
per collection and records, for each field, the set of BSON value kinds
observed (a tagged union rendered as ``"int | string"``). ``_id`` is the
implicit primary key of every collection.

Queries are a single command document in MongoDB extended JSON, run via
``Database.command``. Cursor replies (``find``, ``aggregate``) become one
row per document of the first batch; any other reply becomes one row.
"""

import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from bson import json_util
from bson.binary import Binary
from bson.decimal128 import Decimal128
from bson.int64 import Int64
from bson.objectid import ObjectId
from bson.regex import Regex
from bson.timestamp import Timestamp
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import (
    ConfigurationError,
    ConnectionFailure,
    OperationFailure,
    PyMongoError,
)

from nlquery.engines.base import ConnectionDescriptor, EngineAdapter, QueryDialect
from nlquery.engines.materializer import QueryResultEnvelope, materialize_documents
from nlquery.engines.schema import ColumnSchema, IndexInfo, PrimaryKeyInfo, TableSchema
from nlquery.errors import (
    EngineConnectionError,
    NLQueryError,
    QueryExecutionError,
    SchemaIntrospectionError,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]

_AUTH_FAILED_CODES = {13, 18}  # Unauthorized, AuthenticationFailed
_REPLY_METADATA_KEYS = {"$clusterTime", "operationTime"}

MONGODB_DIALECT = QueryDialect(
    name="MongoDB",
    fence_tags=("json", "mongodb", "mongo", "javascript", "js"),
    statement_prefixes=("{",),
    prompt_notes=(
        "- Write ONE database command document in MongoDB extended JSON, not shell syntax\n"
        "- Find: {\"find\": \"orders\", \"filter\": {\"status\": \"paid\"}, \"limit\": 50}\n"
        "- Aggregate: {\"aggregate\": \"orders\", \"pipeline\": [...], \"cursor\": {}}\n"
        "- Put the command in a ```json block"
    ),
)


def bson_kind(value: Any) -> str:
    """Return the BSON type alias (as used by ``$type``) of a decoded value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, Int64):
        return "long"
    if isinstance(value, int):
        return "int" if -(2**31) <= value < 2**31 else "long"
    if isinstance(value, float):
        return "double"
    if isinstance(value, Decimal128):
        return "decimal"
    if isinstance(value, str):
        return "string"
    if isinstance(value, ObjectId):
        return "objectId"
    if isinstance(value, datetime):
        return "date"
    if isinstance(value, Timestamp):
        return "timestamp"
    if isinstance(value, (Binary, bytes)):
        return "binData"
    if isinstance(value, Regex):
        return "regex"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


def infer_collection_schema(name: str, database: str, documents: list[dict[str, Any]]) -> TableSchema:
    """Infer a TableSchema from sampled documents.

    Fields appear in first-seen order. Every field is nullable since any
    document may omit it.
    """
    table = TableSchema(name=name, schema=database)
    field_kinds: dict[str, set[str]] = {}
    for doc in documents:
        for field_name, value in doc.items():
            field_kinds.setdefault(field_name, set()).add(bson_kind(value))

    for field_name, kinds in field_kinds.items():
        table.columns.append(ColumnSchema(
            name=field_name,
            data_type=" | ".join(sorted(kinds)),
            is_nullable=True,
        ))

    if "_id" in field_kinds:
        table.primary_keys.append(PrimaryKeyInfo(name="_id", columns=["_id"]))
    table.sync_key_flags()
    return table


class MongoDBAdapter(EngineAdapter):
    """Adapter for MongoDB via pymongo.

    Args:
        credentials: Store used to decrypt the descriptor's secret.
        settings: Timeouts and the per-collection sample size.
        client_factory: Callable building a MongoClient from keyword args.
    """

    def __init__(self, credentials, settings=None, client_factory: ClientFactory | None = None) -> None:
        super().__init__(credentials, settings)
        self._client_factory = client_factory or MongoClient

    @property
    def engine_kind(self) -> str:
        return "mongodb"

    @property
    def dialect(self) -> QueryDialect:
        return MONGODB_DIALECT

    @property
    def default_port(self) -> int:
        return 27017

    @contextmanager
    def connect(self, descriptor: ConnectionDescriptor) -> Iterator[Database]:
        """Yield the descriptor's database on a client closed after use.

        pymongo connects lazily, so unreachable servers surface on the
        first operation and are classified by the caller.
        """
        password = self._decrypt_secret(descriptor)
        timeout_ms = self._settings.connect_timeout_seconds * 1000
        try:
            client = self._client_factory(
                host=descriptor.host,
                port=descriptor.port,
                username=descriptor.username or None,
                password=password or None,
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
                socketTimeoutMS=self._settings.statement_timeout_seconds * 1000,
            )
        except (ConfigurationError, ValueError, TypeError) as e:
            raise EngineConnectionError(str(e), engine=self.dialect.name) from e
        finally:
            del password
        try:
            yield client[descriptor.database_name]
        finally:
            client.close()

    def _classify(self, exc: PyMongoError, fallback: type[NLQueryError]) -> NLQueryError:
        if isinstance(exc, (ConnectionFailure, ConfigurationError)):
            return EngineConnectionError(str(exc), engine=self.dialect.name)
        if isinstance(exc, OperationFailure) and exc.code in _AUTH_FAILED_CODES:
            return EngineConnectionError(str(exc), engine=self.dialect.name)
        if fallback is QueryExecutionError:
            return QueryExecutionError(str(exc))
        return fallback(str(exc), engine=self.dialect.name)

    def _ping(self, descriptor: ConnectionDescriptor) -> None:
        with self.connect(descriptor) as db:
            db.command("ping")

    def get_structured_schema(self, descriptor: ConnectionDescriptor) -> list[TableSchema]:
        with self.connect(descriptor) as db:
            try:
                tables = []
                for name in db.list_collection_names():
                    collection = db[name]
                    sample = list(collection.find({}, limit=self._settings.document_sample_size))
                    table = infer_collection_schema(name, descriptor.database_name, sample)
                    for index in collection.list_indexes():
                        if index["name"] == "_id_":
                            continue
                        table.indexes.append(IndexInfo(
                            name=index["name"],
                            columns=list(index["key"].keys()),
                            is_unique=bool(index.get("unique", False)),
                        ))
                    table.row_count = collection.estimated_document_count()
                    tables.append(table)
                return tables
            except PyMongoError as e:
                logger.error(
                    "Schema sampling failed for mongodb connection %s: %s",
                    descriptor.id, e,
                )
                raise self._classify(e, SchemaIntrospectionError) from e

    def get_raw_schema(self, descriptor: ConnectionDescriptor) -> str:
        with self.connect(descriptor) as db:
            try:
                lines = ["-- MongoDB Database Schema (Sample Documents)", ""]
                for name in db.list_collection_names():
                    lines.append(f"-- Collection: {name}")
                    sample = db[name].find_one({})
                    if sample is not None:
                        lines.append("Sample document structure:")
                        lines.append(json_util.dumps(sample, indent=2))
                    else:
                        lines.append("(empty collection)")
                    lines.append("")
                return "\n".join(lines)
            except PyMongoError as e:
                logger.error(
                    "Raw schema read failed for mongodb connection %s: %s",
                    descriptor.id, e,
                )
                raise self._classify(e, SchemaIntrospectionError) from e

    def execute_query(self, descriptor: ConnectionDescriptor, query_text: str) -> QueryResultEnvelope:
        try:
            command = json_util.loads(query_text)
        except (json.JSONDecodeError, ValueError, TypeError) as e:
            raise QueryExecutionError(f"Invalid command document: {e}") from e
        if not isinstance(command, dict) or not command:
            raise QueryExecutionError("Query must be a single non-empty command document")

        with self.connect(descriptor) as db:
            try:
                reply = db.command(command)
            except PyMongoError as e:
                logger.warning(
                    "Command failed on mongodb connection %s: %s", descriptor.id, e,
                )
                raise self._classify(e, QueryExecutionError) from e

        cursor = reply.get("cursor")
        if isinstance(cursor, dict) and "firstBatch" in cursor:
            return materialize_documents(cursor["firstBatch"])
        row = {k: v for k, v in reply.items() if k not in _REPLY_METADATA_KEYS}
        return materialize_documents([row])
