# src/polyorm/schema.py
"""
Table and index definitions generated from model definitions
"""
from typing import Dict, List, Optional
from dataclasses import dataclass
from enum import Enum

from .models import FieldSpec, IndexSpec, ModelDefinition
from .utils import quote_identifier, quote_table, validate_column_name


class Dialect(Enum):
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


# field type -> column type per dialect
_COLUMN_TYPES: Dict[Dialect, Dict[str, str]] = {
    Dialect.SQLITE: {
        "string": "TEXT",
        "text": "TEXT",
        "number": "NUMERIC",
        "int": "INTEGER",
        "boolean": "INTEGER",
        "date": "TEXT",
        "json": "TEXT",
        "uuid": "TEXT",
        "objectId": "TEXT",
    },
    Dialect.POSTGRESQL: {
        "string": "VARCHAR(255)",
        "text": "TEXT",
        "number": "DOUBLE PRECISION",
        "int": "BIGINT",
        "boolean": "BOOLEAN",
        "date": "TIMESTAMP",
        "json": "JSONB",
        "uuid": "UUID",
        "objectId": "VARCHAR(24)",
    },
}

# structured types without a dedicated column type
_FALLBACK_TYPE = {Dialect.SQLITE: "TEXT", Dialect.POSTGRESQL: "JSONB"}


def column_type(spec: FieldSpec, dialect: Dialect) -> str:
    if spec.type == "number" and spec.precision:
        return f"NUMERIC({spec.precision}, {spec.decimals or 0})"
    return _COLUMN_TYPES[dialect].get(spec.type, _FALLBACK_TYPE[dialect])


@dataclass
class Column:
    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    autoincrement: bool = False


class SchemaBuilder:
    """Build SQL schema definitions"""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect
        self.columns: List[Column] = []
        self.indexes: List[IndexSpec] = []
        self.primary_keys: List[str] = []

    def add_column(self, column: Column) -> 'SchemaBuilder':
        validate_column_name(column.name)
        self.columns.append(column)
        if column.primary_key:
            self.primary_keys.append(column.name)
        return self

    def add_index(self, index: IndexSpec) -> 'SchemaBuilder':
        self.indexes.append(index)
        return self

    @classmethod
    def from_definition(cls, definition: ModelDefinition, dialect: Dialect) -> 'SchemaBuilder':
        builder = cls(dialect)
        pks = definition.primary_key_names
        single_key = len(pks) == 1

        for name, spec in definition.fields.items():
            is_pk = name in pks
            serial = (
                is_pk and single_key and definition.is_generated(name)
                and spec.type in ("number", "int")
            )
            builder.add_column(Column(
                name=name,
                type=column_type(spec, dialect),
                nullable=spec.nullable and not is_pk,
                primary_key=is_pk,
                unique=spec.unique and not is_pk,
                autoincrement=serial,
            ))
            if spec.index and not is_pk:
                index_name = spec.index if isinstance(spec.index, str) else None
                builder.add_index(IndexSpec.build(definition.table, [name], {"name": index_name}))

        for index in definition.indexes.values():
            builder.add_index(index)
        return builder

    def column_definition(self, col: Column) -> str:
        parts = [quote_identifier(col.name)]

        if col.autoincrement and self.dialect == Dialect.SQLITE:
            parts.append("INTEGER PRIMARY KEY AUTOINCREMENT")
            return " ".join(parts)
        if col.autoincrement and self.dialect == Dialect.POSTGRESQL:
            parts.append("BIGSERIAL")
        else:
            parts.append(col.type)

        if not col.nullable:
            parts.append("NOT NULL")

        if col.unique:
            parts.append("UNIQUE")

        return " ".join(parts)

    def to_create_table(self, table_name: str) -> str:
        """Generate CREATE TABLE statement"""
        col_defs = [self.column_definition(col) for col in self.columns]

        inline_pk = any(c.autoincrement for c in self.columns) and self.dialect == Dialect.SQLITE
        if self.primary_keys and not inline_pk:
            keys = ", ".join(quote_identifier(k) for k in self.primary_keys)
            col_defs.append(f"PRIMARY KEY ({keys})")

        sql = f"CREATE TABLE IF NOT EXISTS {quote_table(table_name)} (\n"
        sql += ",\n".join(f"  {col}" for col in col_defs)
        sql += "\n)"

        return sql

    def to_create_indexes(self, table_name: str) -> List[str]:
        """Generate CREATE INDEX statements"""
        return [create_index_sql(table_name, idx) for idx in self.indexes]

    def to_add_column(self, table_name: str, name: str) -> Optional[str]:
        for col in self.columns:
            if col.name == name:
                return f"ALTER TABLE {quote_table(table_name)} ADD COLUMN {self.column_definition(col)}"
        return None


def create_index_sql(table_name: str, index: IndexSpec) -> str:
    unique = "UNIQUE " if index.unique else ""
    cols = ", ".join(quote_identifier(c) for c in index.columns)
    return (
        f"CREATE {unique}INDEX IF NOT EXISTS {quote_identifier(index.name)} "
        f"ON {quote_table(table_name)} ({cols})"
    )
