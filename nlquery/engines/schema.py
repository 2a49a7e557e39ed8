"""Engine-agnostic schema model produced by introspection.

Column-level ``is_primary_key`` / ``is_foreign_key`` flags duplicate what
``primary_keys`` / ``foreign_keys`` already say. Adapters build the key
lists and call :meth:`TableSchema.sync_key_flags` so both views agree.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ColumnSchema:
    """One column (or document field) of a table.

    ``data_type`` is the engine-native type string. For document
    collections it is the ``" | "``-joined set of observed value kinds.
    """

    name: str
    data_type: str
    is_nullable: bool = True
    default_value: str | None = None
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    is_identity: bool = False
    is_primary_key: bool = False
    is_foreign_key: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "nativeDataType": self.data_type,
            "nullable": self.is_nullable,
            "defaultValue": self.default_value,
            "maxLength": self.max_length,
            "precision": self.precision,
            "scale": self.scale,
            "isIdentity": self.is_identity,
            "isPrimaryKey": self.is_primary_key,
            "isForeignKey": self.is_foreign_key,
        }


@dataclass
class PrimaryKeyInfo:
    name: str
    columns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "columns": list(self.columns)}


@dataclass
class ForeignKeyInfo:
    name: str
    column: str
    referenced_table: str
    referenced_column: str
    on_delete: str | None = None
    on_update: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "column": self.column,
            "referencedTable": self.referenced_table,
            "referencedColumn": self.referenced_column,
            "onDelete": self.on_delete,
            "onUpdate": self.on_update,
        }


@dataclass
class IndexInfo:
    name: str
    columns: list[str] = field(default_factory=list)
    is_unique: bool = False
    is_clustered: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": list(self.columns),
            "isUnique": self.is_unique,
            "isClustered": self.is_clustered,
        }


@dataclass
class TableSchema:
    """A table or collection with its columns, keys and indexes."""

    name: str
    schema: str | None = None
    columns: list[ColumnSchema] = field(default_factory=list)
    primary_keys: list[PrimaryKeyInfo] = field(default_factory=list)
    foreign_keys: list[ForeignKeyInfo] = field(default_factory=list)
    indexes: list[IndexInfo] = field(default_factory=list)
    row_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire form with camelCase keys, nested entries included."""
        return {
            "name": self.name,
            "owningSchema": self.schema,
            "columns": [c.to_dict() for c in self.columns],
            "primaryKeys": [pk.to_dict() for pk in self.primary_keys],
            "foreignKeys": [fk.to_dict() for fk in self.foreign_keys],
            "indexes": [ix.to_dict() for ix in self.indexes],
            "estimatedRowCount": self.row_count,
        }

    def column(self, name: str) -> ColumnSchema | None:
        """Return the column called ``name``, if present."""
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def sync_key_flags(self) -> None:
        """Set column key flags from the key lists, in both directions.

        A key column the catalog reported but the column listing missed
        is dropped from the key lists so no key points at a missing
        column.
        """
        column_names = {col.name for col in self.columns}
        for pk in self.primary_keys:
            pk.columns = [c for c in pk.columns if c in column_names]
        self.primary_keys = [pk for pk in self.primary_keys if pk.columns]
        self.foreign_keys = [fk for fk in self.foreign_keys if fk.column in column_names]

        pk_columns = {c for pk in self.primary_keys for c in pk.columns}
        fk_columns = {fk.column for fk in self.foreign_keys}
        for col in self.columns:
            col.is_primary_key = col.name in pk_columns
            col.is_foreign_key = col.name in fk_columns


def schema_to_dict(tables: list[TableSchema]) -> list[dict[str, Any]]:
    """Serialize a normalized schema for API responses."""
    return [table.to_dict() for table in tables]
