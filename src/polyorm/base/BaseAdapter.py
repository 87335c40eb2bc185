# src/polyorm/base/BaseAdapter.py
from __future__ import annotations

import asyncio
import copy
import json
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union, TYPE_CHECKING

from ..condition import (
    Clause,
    Condition,
    Disjunction,
    Operator,
    Predicate,
    Projection,
    matches,
    paginate,
    sort_records,
)
from ..errors import ModelNotRegisteredError
from ..json_safe import json_safe
from ..models import FieldSpec, IndexSpec, ModelDefinition
from ..types import ConditionLike, IdentifierKind, JsonDict

if TYPE_CHECKING:
    from ..factory import ConnectionSettings


class BaseAdapter(ABC):
    """Shared adapter plumbing: model registry, value conversion, emulation helpers"""

    name = "base"
    identifier_kind = IdentifierKind.NUMBER

    def __init__(self, settings: Optional[ConnectionSettings] = None, connection: Any = None):
        from ..utils import setup_logger
        self.logger = setup_logger(self.__class__.__name__)
        self.settings = settings
        self.connection = connection
        self.definitions: Dict[str, ModelDefinition] = {}
        self.connected = False
        self._background: Set[asyncio.Task] = set()

    # -- registration ----------------------------------------------------

    def define(self, definition: ModelDefinition) -> None:
        self.definitions[definition.name] = definition
        if self.connected:
            self._spawn(self._reconcile(definition), f"schema sync for {definition.name}")

    def define_property(self, model_name: str, field: str, spec: FieldSpec) -> None:
        definition = self._definition(model_name)
        definition.add_field(field, spec)
        if self.connected:
            self._spawn(self._add_field(definition, field, spec), f"add field {model_name}.{field}")

    def _definition(self, model_name: str) -> ModelDefinition:
        try:
            return self.definitions[model_name]
        except KeyError:
            raise ModelNotRegisteredError(f"Model not defined on {self.name} adapter: '{model_name}'")

    def _spawn(self, coro, what: str) -> None:
        """Run schema work in the background; failures are logged only."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self.logger.error(f"{what} failed: {t.exception()}")

        task.add_done_callback(_done)

    # -- lifecycle ---------------------------------------------------------

    async def connect(self) -> None:
        await self._connect()
        self.connected = True
        for definition in list(self.definitions.values()):
            try:
                await self._reconcile(definition)
            except Exception as e:
                self.logger.error(f"schema sync for {definition.name} failed: {e}")

    async def disconnect(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._disconnect()
        self.connected = False

    async def _connect(self) -> None:
        pass

    async def _disconnect(self) -> None:
        pass

    async def _reconcile(self, definition: ModelDefinition) -> None:
        pass

    async def _add_field(self, definition: ModelDefinition, field: str, spec: FieldSpec) -> None:
        pass

    def log(self, statement: str, started: Optional[float] = None) -> None:
        if self.connection is not None:
            self.connection.log(statement, started)

    def logger_for(self, statement: str) -> Callable[[Optional[str]], None]:
        """Start a timer; call the result when the statement finishes."""
        started = time.perf_counter()

        def done(final: Optional[str] = None) -> None:
            self.log(final or statement, started)

        return done

    # -- value conversion ------------------------------------------------

    def to_database(self, model_name: str, data: Mapping[str, Any]) -> JsonDict:
        definition = self._definition(model_name)
        result = {}
        for key, value in data.items():
            spec = definition.fields.get(key)
            result[key] = self._value_to_database(spec, value) if spec else value
        return result

    def from_database(self, model_name: str, record: Mapping[str, Any]) -> JsonDict:
        definition = self._definition(model_name)
        result = {}
        for key, value in record.items():
            spec = definition.fields.get(key)
            if spec is None:
                continue
            result[key] = self._value_from_database(spec, value)
        return result

    def _value_to_database(self, spec: FieldSpec, value: Any) -> Any:
        return value

    def _value_from_database(self, spec: FieldSpec, value: Any) -> Any:
        return value

    @staticmethod
    def _dump_json(value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, default=json_safe)

    @staticmethod
    def _load_json(value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            value = value.decode()
        if not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except ValueError:
            return value

    # -- condition helpers -------------------------------------------------

    def _database_clauses(self, model_name: str, condition: Condition) -> List[Clause]:
        """Clauses with operands converted to the backend's representation."""
        definition = self._definition(model_name)
        return [self._convert_clause(definition, clause) for clause in condition.clauses]

    def _convert_clause(self, definition: ModelDefinition, clause: Clause) -> Clause:
        if isinstance(clause, Disjunction):
            return Disjunction(tuple(
                tuple(self._convert_clause(definition, c) for c in branch)
                for branch in clause.branches
            ))
        spec = definition.fields.get(clause.field)
        if spec is None or clause.op in (Operator.LIKE, Operator.NLIKE) or clause.operand is None:
            return clause
        if clause.op in (Operator.BETWEEN, Operator.IN, Operator.NIN):
            operand = tuple(self._value_to_database(spec, v) for v in clause.operand)
        else:
            operand = self._value_to_database(spec, clause.operand)
        return Predicate(clause.field, clause.op, operand)

    def _id_where(self, model_name: str, id: Any) -> Dict[str, Any]:
        """Where map selecting one record by primary key; ``id`` may be a mapping."""
        pks = self._definition(model_name).primary_key_names
        if isinstance(id, Mapping):
            return {pk: id[pk] for pk in pks if pk in id}
        if isinstance(id, (list, tuple)) and len(pks) > 1:
            return dict(zip(pks, id))
        return {pks[0]: id}

    def _has_identity(self, model_name: str, data: Mapping[str, Any]) -> bool:
        pks = self._definition(model_name).primary_key_names
        return all(data.get(pk) is not None for pk in pks)

    def _generate_id(self, spec: FieldSpec) -> Optional[Any]:
        """Client-side identifiers for generated keys the backend does not assign."""
        if spec.type == IdentifierKind.UUID.value:
            return str(uuid.uuid4())
        return None

    @staticmethod
    def _equality_seed(condition: Condition) -> JsonDict:
        """Literal equality predicates, used to seed update_or_create inserts."""
        seed = {}
        for clause in condition.clauses:
            if isinstance(clause, Predicate) and clause.op == Operator.EQ:
                seed[clause.field] = clause.operand
        return seed

    def _projection_fields(self, model_name: str, projection: Optional[Projection]) -> Optional[List[str]]:
        if projection is None:
            return None
        definition = self._definition(model_name)
        return projection.resolve(definition.field_names, definition.primary_key_names)

    # -- client-side emulation (shared by backends without native support) --

    def _apply_filters(self, records: List[JsonDict], clauses: Sequence[Clause]) -> List[JsonDict]:
        if not clauses:
            return list(records)
        return [r for r in records if matches(clauses, r)]

    def _apply_ordering(self, records: List[JsonDict], condition: Condition) -> List[JsonDict]:
        if not condition.order:
            return records
        return sort_records(records, condition.order)

    def _apply_pagination(self, records: List[JsonDict], condition: Condition) -> List[JsonDict]:
        return paginate(records, condition.skip, condition.limit)

    def _apply_projection(self, model_name: str, records: List[JsonDict], condition: Condition) -> List[JsonDict]:
        names = self._projection_fields(model_name, condition.fields)
        if names is None:
            return records
        return [{k: v for k, v in r.items() if k in names} for r in records]

    @staticmethod
    def _copy(record: Mapping[str, Any]) -> JsonDict:
        return copy.deepcopy(dict(record))

    # -- contract ----------------------------------------------------------

    @abstractmethod
    async def exists(self, model_name: str, id: Any) -> bool: ...

    @abstractmethod
    async def count(self, model_name: str, condition: ConditionLike = None) -> int: ...

    @abstractmethod
    async def create(self, model_name: str, data: JsonDict) -> JsonDict: ...

    @abstractmethod
    async def save(self, model_name: str, data: JsonDict) -> JsonDict: ...

    @abstractmethod
    async def find(self, model_name: str, condition: ConditionLike = None) -> List[JsonDict]: ...

    @abstractmethod
    async def update(self, model_name: str, condition: ConditionLike, data: JsonDict) -> List[JsonDict]: ...

    async def update_or_create(self, model_name: str, condition: ConditionLike, data: JsonDict) -> List[JsonDict]:
        condition = Condition.from_value(condition)
        updated = await self.update(model_name, condition, data)
        if updated:
            return updated
        created = await self.create(model_name, {**self._equality_seed(condition), **data})
        return [created]

    @abstractmethod
    async def remove(self, model_name: str, condition: ConditionLike) -> bool: ...

    async def remove_by_id(self, model_name: str, id: Any) -> bool:
        return await self.remove(model_name, {"where": self._id_where(model_name, id)})

    @abstractmethod
    async def remove_all(self, model_name: str) -> None: ...

    async def ensure_index(
        self,
        model_name: str,
        fields: Union[str, Sequence[str]],
        options: Optional[Union[str, bool, Dict[str, Any]]] = None,
    ) -> None:
        definition = self._definition(model_name)
        index = IndexSpec.build(definition.table, fields, options)
        definition.indexes.setdefault(index.name, index)
        await self._create_index(definition, index)

    async def _create_index(self, definition: ModelDefinition, index: IndexSpec) -> None:
        pass
