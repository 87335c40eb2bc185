# src/polyorm/base/SQLAdapter.py
"""
Shared Condition -> SQL translation and CRUD for relational backends.

Concrete adapters supply four primitives (``_execute``, ``_fetch``,
``_insert``, ``_table_columns``) plus dialect details; everything else,
including the update-then-refetch sequence, lives here.
"""
from __future__ import annotations

import uuid
from abc import abstractmethod
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from ..condition import Clause, Condition, Disjunction, Operator, OrderSpec, Predicate
from ..errors import InvalidConditionError
from ..models import FieldSpec, IndexSpec, ModelDefinition
from ..schema import Dialect, SchemaBuilder, create_index_sql
from ..types import ConditionLike, JsonDict
from ..utils import quote_identifier, quote_table
from .BaseAdapter import BaseAdapter

_COMPARISON_SQL = {
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}


class SQLAdapter(BaseAdapter):
    dialect: Dialect = Dialect.SQLITE
    placeholder = "?"
    # LIMIT clause required before OFFSET when no limit is given
    unbounded_limit: Optional[str] = None

    # -- primitives ----------------------------------------------------------

    @abstractmethod
    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a statement; returns the affected row count."""

    @abstractmethod
    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> List[JsonDict]: ...

    @abstractmethod
    async def _insert(self, definition: ModelDefinition, columns: List[str], values: List[Any]) -> JsonDict:
        """Insert one row and return it as stored."""

    @abstractmethod
    async def _table_columns(self, table: str) -> List[str]: ...

    # -- dialect -------------------------------------------------------------

    def _regex_sql(self, column: str) -> str:
        return f"{column} REGEXP {self.placeholder}"

    def _order_term(self, column: str, direction: int) -> str:
        return f"{column} {'ASC' if direction > 0 else 'DESC'}"

    def _default_order(self, definition: ModelDefinition) -> List[str]:
        return [quote_identifier(pk) for pk in definition.primary_key_names]

    # -- translation ---------------------------------------------------------

    def compile_where(self, clauses: Sequence[Clause]) -> Tuple[str, List[Any]]:
        """Conjunction of clauses -> (sql, params); empty sql means no filter."""
        params: List[Any] = []
        parts = [self._compile_clause(clause, params) for clause in clauses]
        return " AND ".join(parts), params

    def _compile_clause(self, clause: Clause, params: List[Any]) -> str:
        if isinstance(clause, Disjunction):
            branches = []
            for branch in clause.branches:
                if not branch:
                    branches.append("1 = 1")
                    continue
                inner = " AND ".join(self._compile_clause(c, params) for c in branch)
                branches.append(f"({inner})")
            if not branches:
                return "1 = 0"
            return "(" + " OR ".join(branches) + ")"
        return self._compile_predicate(clause, params)

    def _compile_predicate(self, predicate: Predicate, params: List[Any]) -> str:
        col = quote_identifier(predicate.field)
        ph = self.placeholder
        op, operand = predicate.op, predicate.operand

        if op == Operator.EQ:
            if operand is None:
                return f"{col} IS NULL"
            params.append(operand)
            return f"{col} = {ph}"

        if op == Operator.NE:
            if operand is None:
                return f"{col} IS NOT NULL"
            params.append(operand)
            return f"({col} IS NULL OR {col} <> {ph})"

        if op in _COMPARISON_SQL:
            if operand is None:
                return "1 = 0"
            params.append(operand)
            return f"{col} {_COMPARISON_SQL[op]} {ph}"

        if op == Operator.BETWEEN:
            params.extend(operand)
            return f"{col} BETWEEN {ph} AND {ph}"

        if op in (Operator.IN, Operator.NIN):
            # null members never match a stored null
            values = [v for v in operand if v is not None]
            if not values:
                return "1 = 0" if op == Operator.IN else "1 = 1"
            marks = ", ".join([ph] * len(values))
            params.extend(values)
            if op == Operator.IN:
                return f"{col} IN ({marks})"
            return f"({col} IS NULL OR {col} NOT IN ({marks}))"

        if op == Operator.LIKE:
            params.append(operand)
            return self._regex_sql(col)

        if op == Operator.NLIKE:
            params.append(operand)
            return f"({col} IS NULL OR NOT {self._regex_sql(col)})"

        raise InvalidConditionError(f"Unsupported operator {op}")

    def _where(self, definition: ModelDefinition, condition: Condition) -> Tuple[str, List[Any]]:
        return self.compile_where(self._database_clauses(definition.name, condition))

    def _order_sql(self, definition: ModelDefinition, order: OrderSpec) -> str:
        terms = [self._order_term(quote_identifier(name), direction) for name, direction in order]
        named = {name for name, _ in order}
        # insertion order as tiebreak
        terms.extend(t for t in self._default_order(definition) if t.strip('"') not in named)
        return ", ".join(terms)

    def build_select(
        self,
        definition: ModelDefinition,
        condition: Condition,
        columns: Optional[Iterable[str]] = None,
    ) -> Tuple[str, List[Any]]:
        if columns is None:
            columns = self._projection_fields(definition.name, condition.fields)
        select = ", ".join(quote_identifier(c) for c in columns) if columns else "*"

        sql = f"SELECT {select} FROM {quote_table(definition.table)}"
        where_sql, params = self._where(definition, condition)
        if where_sql:
            sql += f" WHERE {where_sql}"

        order_sql = self._order_sql(definition, condition.order)
        if order_sql:
            sql += f" ORDER BY {order_sql}"

        if condition.limit is not None:
            sql += f" LIMIT {self.placeholder}"
            params.append(condition.limit)
        elif condition.skip and self.unbounded_limit:
            sql += f" LIMIT {self.unbounded_limit}"
        if condition.skip:
            sql += f" OFFSET {self.placeholder}"
            params.append(condition.skip)

        return sql, params

    # -- values --------------------------------------------------------------

    def _value_to_database(self, spec: FieldSpec, value: Any) -> Any:
        if value is None:
            return None
        if spec.type == "json" or not spec.is_primitive:
            return self._dump_json(value)
        if isinstance(value, uuid.UUID):
            return str(value)
        return value

    def _value_from_database(self, spec: FieldSpec, value: Any) -> Any:
        if value is None:
            return None
        if spec.type == "json" or not spec.is_primitive:
            return self._load_json(value)
        return value

    # -- contract ------------------------------------------------------------

    async def exists(self, model_name: str, id: Any) -> bool:
        return await self.count(model_name, {"where": self._id_where(model_name, id)}) > 0

    async def count(self, model_name: str, condition: ConditionLike = None) -> int:
        definition = self._definition(model_name)
        where_sql, params = self._where(definition, Condition.from_value(condition))
        sql = f"SELECT COUNT(*) AS cnt FROM {quote_table(definition.table)}"
        if where_sql:
            sql += f" WHERE {where_sql}"
        rows = await self._fetch(sql, params)
        return int(rows[0]["cnt"]) if rows else 0

    async def create(self, model_name: str, data: JsonDict) -> JsonDict:
        definition = self._definition(model_name)
        record = {k: v for k, v in data.items() if k in definition.fields}
        for pk in definition.primary_keys:
            if record.get(pk.field) is None and pk.generated:
                generated = self._generate_id(definition.fields[pk.field])
                if generated is None:
                    record.pop(pk.field, None)
                else:
                    record[pk.field] = generated

        converted = self.to_database(model_name, record)
        row = await self._insert(definition, list(converted), list(converted.values()))
        return self.from_database(model_name, row)

    async def save(self, model_name: str, data: JsonDict) -> JsonDict:
        definition = self._definition(model_name)
        if not self._has_identity(model_name, data):
            return await self.create(model_name, data)

        pks = definition.primary_key_names
        id_where = {pk: data[pk] for pk in pks}
        rest = {k: v for k, v in data.items() if k not in pks and k in definition.fields}
        if rest:
            rows = await self.update(model_name, {"where": id_where}, rest)
        else:
            rows = await self.find(model_name, {"where": id_where})
        if rows:
            return rows[0]
        return await self.create(model_name, data)

    async def find(self, model_name: str, condition: ConditionLike = None) -> List[JsonDict]:
        definition = self._definition(model_name)
        sql, params = self.build_select(definition, Condition.from_value(condition))
        rows = await self._fetch(sql, params)
        return [self.from_database(model_name, row) for row in rows]

    async def update(self, model_name: str, condition: ConditionLike, data: JsonDict) -> List[JsonDict]:
        definition = self._definition(model_name)
        condition = Condition.from_value(condition)
        pks = definition.primary_key_names
        table = quote_table(definition.table)

        keys_sql, params = self.build_select(
            definition, Condition(where=condition.where), columns=pks
        )
        keys = [self.from_database(model_name, row) for row in await self._fetch(keys_sql, params)]
        if not keys:
            return []

        changes = {k: v for k, v in data.items() if k in definition.fields}
        converted = self.to_database(model_name, changes)
        if converted:
            assignments = ", ".join(f"{quote_identifier(k)} = {self.placeholder}" for k in converted)
            sql = f"UPDATE {table} SET {assignments}"
            where_sql, where_params = self._where(definition, condition)
            if where_sql:
                sql += f" WHERE {where_sql}"
            await self._execute(sql, list(converted.values()) + where_params)

        # refetch by key; a key may itself have been reassigned
        after = [{pk: changes.get(pk, key[pk]) for pk in pks} for key in keys]
        if len(pks) == 1:
            where = {pks[0]: {"in": [key[pks[0]] for key in after]}}
        else:
            where = {"or": after}
        return await self.find(model_name, {"where": where})

    async def remove(self, model_name: str, condition: ConditionLike) -> bool:
        definition = self._definition(model_name)
        where_sql, params = self._where(definition, Condition.from_value(condition))
        sql = f"DELETE FROM {quote_table(definition.table)}"
        if where_sql:
            sql += f" WHERE {where_sql}"
        return await self._execute(sql, params) > 0

    async def remove_all(self, model_name: str) -> None:
        definition = self._definition(model_name)
        await self._execute(f"DELETE FROM {quote_table(definition.table)}")

    # -- schema --------------------------------------------------------------

    async def _reconcile(self, definition: ModelDefinition) -> None:
        builder = SchemaBuilder.from_definition(definition, self.dialect)
        await self._execute(builder.to_create_table(definition.table))

        existing = set(await self._table_columns(definition.table))
        for name in definition.field_names:
            if existing and name not in existing:
                await self._execute(builder.to_add_column(definition.table, name))

        for statement in builder.to_create_indexes(definition.table):
            await self._execute(statement)

    async def _add_field(self, definition: ModelDefinition, field: str, spec: FieldSpec) -> None:
        existing = await self._table_columns(definition.table)
        if not existing or field in existing:
            return
        builder = SchemaBuilder.from_definition(definition, self.dialect)
        await self._execute(builder.to_add_column(definition.table, field))

    async def _create_index(self, definition: ModelDefinition, index: IndexSpec) -> None:
        await self._execute(create_index_sql(definition.table, index))

    async def automigrate(self, models: Optional[Sequence[str]] = None) -> None:
        """Drop and recreate tables; existing rows are lost."""
        for name in models or list(self.definitions):
            definition = self._definition(name)
            await self._execute(f"DROP TABLE IF EXISTS {quote_table(definition.table)}")
            await self._reconcile(definition)

    async def autoupdate(self, models: Optional[Sequence[str]] = None) -> None:
        """Create missing tables, columns and indexes without touching data."""
        for name in models or list(self.definitions):
            await self._reconcile(self._definition(name))

    async def is_actual(self, models: Optional[Sequence[str]] = None) -> bool:
        for name in models or list(self.definitions):
            definition = self._definition(name)
            existing = set(await self._table_columns(definition.table))
            if not existing or any(f not in existing for f in definition.field_names):
                return False
        return True
