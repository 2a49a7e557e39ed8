"""Turn engine result cursors into the uniform result envelope.

Column names are taken verbatim from the cursor metadata. When a query
returns two columns with the same name, the row mapping keeps only the
last value for that key while ``columns`` still lists both names.
"""

import base64
import json
import math
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID


@dataclass
class QueryResultEnvelope:
    """Uniform wrapper around a query's result set.

    Attributes:
        columns: Ordered column names as reported by the engine.
        rows: One mapping per row, keyed by column name. Nulls are explicit.
        row_count: Number of rows.
        execution_time_ms: Time from cursor obtained to fully drained.
    """

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    execution_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": self.columns,
            "rows": self.rows,
            "rowCount": self.row_count,
            "executionTimeMs": self.execution_time_ms,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QueryResultEnvelope":
        return cls(
            columns=list(data.get("columns", [])),
            rows=[dict(r) for r in data.get("rows", [])],
            row_count=int(data.get("rowCount", 0)),
            execution_time_ms=int(data.get("executionTimeMs", 0)),
        )


def to_jsonable(value: Any) -> Any:
    """Convert a driver value to something ``json.dumps`` accepts.

    Unknown types (ObjectId, Timestamp, driver-specific wrappers) fall back
    to ``str(value)``.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        return float(value) if value.is_finite() else str(value)
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return str(value)


def materialize_rows(columns: list[str], raw_rows: Iterable[Iterable[Any]]) -> QueryResultEnvelope:
    """Drain positional rows into an envelope, timing the drain.

    Args:
        columns: Column names in cursor order (duplicates allowed).
        raw_rows: Iterable of positional row tuples. Consumed once.

    Returns:
        QueryResultEnvelope with every row keyed by ``columns``.
    """
    started = time.perf_counter()
    rows: list[dict[str, Any]] = []
    for raw in raw_rows:
        row: dict[str, Any] = {}
        for name, value in zip(columns, raw):
            row[name] = to_jsonable(value)
        rows.append(row)
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return QueryResultEnvelope(
        columns=list(columns),
        rows=rows,
        row_count=len(rows),
        execution_time_ms=elapsed_ms,
    )


def materialize_result(result: Any) -> QueryResultEnvelope:
    """Materialize a SQLAlchemy ``CursorResult``.

    Statements that return no rows (DDL, INSERT/UPDATE/DELETE) yield an
    envelope with no columns and no rows.
    """
    if not result.returns_rows:
        return QueryResultEnvelope()
    return materialize_rows(list(result.keys()), result)


def materialize_documents(documents: Iterable[Mapping[str, Any]]) -> QueryResultEnvelope:
    """Materialize document-store results into an envelope.

    Columns are the union of field names in first-seen order. A field a
    document lacks is filled with an explicit null.
    """
    started = time.perf_counter()
    drained = [dict(doc) for doc in documents]
    columns: list[str] = []
    seen: set[str] = set()
    for doc in drained:
        for key in doc:
            if key not in seen:
                seen.add(key)
                columns.append(key)
    rows = [
        {name: to_jsonable(doc.get(name)) for name in columns}
        for doc in drained
    ]
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    return QueryResultEnvelope(
        columns=columns,
        rows=rows,
        row_count=len(rows),
        execution_time_ms=elapsed_ms,
    )
