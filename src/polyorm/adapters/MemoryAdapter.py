# src/polyorm/adapters/MemoryAdapter.py
from __future__ import annotations

import copy
import datetime
from typing import Any, Dict, List, Tuple

from ..base.BaseAdapter import BaseAdapter
from ..condition import Condition
from ..decorators import backend
from ..errors import AdapterError
from ..models import FieldSpec, ModelDefinition
from ..types import ConditionLike, IdentifierKind, JsonDict


@backend("memory")
class MemoryAdapter(BaseAdapter):
    """In-process store; every operator is evaluated client-side"""

    name = "memory"
    identifier_kind = IdentifierKind.NUMBER

    def __init__(self, settings=None, connection=None):
        super().__init__(settings, connection)
        self._tables: Dict[str, Dict[Tuple[Any, ...], JsonDict]] = {}
        self._counters: Dict[str, int] = {}

    def define(self, definition: ModelDefinition) -> None:
        self._tables.setdefault(definition.name, {})
        self._counters.setdefault(definition.name, 0)
        super().define(definition)

    def _table(self, model_name: str) -> Dict[Tuple[Any, ...], JsonDict]:
        self._definition(model_name)
        return self._tables.setdefault(model_name, {})

    def _key(self, model_name: str, record: JsonDict) -> Tuple[Any, ...]:
        return tuple(record.get(pk) for pk in self._definition(model_name).primary_key_names)

    def _value_to_database(self, spec: FieldSpec, value: Any) -> Any:
        if spec.type == "date":
            return _to_datetime(value)
        return copy.deepcopy(value)

    def _assign_ids(self, model_name: str, record: JsonDict) -> None:
        definition = self._definition(model_name)
        for pk in definition.primary_keys:
            value = record.get(pk.field)
            if value is None and pk.generated:
                generated = self._generate_id(definition.fields[pk.field])
                if generated is None:
                    self._counters[model_name] = self._counters.get(model_name, 0) + 1
                    generated = self._counters[model_name]
                record[pk.field] = generated
            elif isinstance(value, int) and not isinstance(value, bool):
                self._counters[model_name] = max(self._counters.get(model_name, 0), value)
            if record.get(pk.field) is None:
                raise AdapterError(f"Memory create failed: primary key '{pk.field}' is required")

    def _rows(self, model_name: str, condition: Condition) -> List[JsonDict]:
        clauses = self._database_clauses(model_name, condition)
        return self._apply_filters(list(self._table(model_name).values()), clauses)

    async def exists(self, model_name: str, id: Any) -> bool:
        return await self.count(model_name, {"where": self._id_where(model_name, id)}) > 0

    async def count(self, model_name: str, condition: ConditionLike = None) -> int:
        return len(self._rows(model_name, Condition.from_value(condition)))

    async def create(self, model_name: str, data: JsonDict) -> JsonDict:
        definition = self._definition(model_name)
        record = {name: None for name in definition.field_names}
        record.update(self.to_database(model_name, data))
        self._assign_ids(model_name, record)

        table = self._table(model_name)
        key = self._key(model_name, record)
        if key in table:
            raise AdapterError(f"Memory create failed: duplicate primary key {key}")
        table[key] = record
        return self.from_database(model_name, self._copy(record))

    async def save(self, model_name: str, data: JsonDict) -> JsonDict:
        if not self._has_identity(model_name, data):
            return await self.create(model_name, data)

        converted = self.to_database(model_name, data)
        key = self._key(model_name, converted)
        table = self._table(model_name)
        if key not in table:
            return await self.create(model_name, data)
        table[key].update(converted)
        return self.from_database(model_name, self._copy(table[key]))

    async def find(self, model_name: str, condition: ConditionLike = None) -> List[JsonDict]:
        condition = Condition.from_value(condition)
        rows = self._rows(model_name, condition)
        rows = self._apply_ordering(rows, condition)
        rows = self._apply_pagination(rows, condition)
        rows = [self._copy(r) for r in rows]
        rows = self._apply_projection(model_name, rows, condition)
        return [self.from_database(model_name, r) for r in rows]

    async def update(self, model_name: str, condition: ConditionLike, data: JsonDict) -> List[JsonDict]:
        condition = Condition.from_value(condition)
        converted = self.to_database(model_name, data)
        table = self._table(model_name)

        rows = self._rows(model_name, condition)
        moves = {}
        for row in rows:
            old_key = self._key(model_name, row)
            new_key = self._key(model_name, {**row, **converted})
            if new_key != old_key:
                moves[old_key] = new_key

        # key changes are checked against every row before any row is touched
        targets = list(moves.values())
        kept = set(table) - set(moves)
        for key in targets:
            if key in kept or targets.count(key) > 1:
                raise AdapterError(f"Memory update failed: duplicate primary key {key}")

        for old_key in moves:
            del table[old_key]
        updated = []
        for row in rows:
            row.update(copy.deepcopy(converted))
            table[self._key(model_name, row)] = row
            updated.append(self.from_database(model_name, self._copy(row)))
        return updated

    async def remove(self, model_name: str, condition: ConditionLike) -> bool:
        condition = Condition.from_value(condition)
        table = self._table(model_name)
        doomed = [self._key(model_name, row) for row in self._rows(model_name, condition)]
        for key in doomed:
            del table[key]
        return bool(doomed)

    async def remove_all(self, model_name: str) -> None:
        self._table(model_name).clear()


def _to_datetime(value: Any) -> Any:
    """Dates are held as datetimes so they compare against any date operand."""
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    if isinstance(value, str):
        try:
            return datetime.datetime.fromisoformat(value)
        except ValueError:
            return value
    return value
