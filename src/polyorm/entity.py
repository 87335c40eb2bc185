# src/polyorm/entity.py
"""
Entity base class: construction, field access, dirty tracking and the
model-level operations that route through the connection's adapter.

Every operation first checks connection readiness. Before the connection
reports ``connected`` the call is queued for replay and returns ``None``.
"""
from __future__ import annotations

import copy
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, TYPE_CHECKING, Union

from .errors import ModelNotRegisteredError
from .hooks import Hook
from .json_safe import json_safe
from .models import FieldSpec, ModelDefinition
from .query import QueryBuilder
from .relations import resolve_relation
from .validation import FieldError, validate_entity

if TYPE_CHECKING:
    from .connection import Connection

logger = logging.getLogger(__name__)


class Entity:
    """
    Base class for mapped models.

    Usage:
        class User(Entity):
            __polyorm__ = {
                "fields": {"name": "string", "age": "number"},
                "validations": [("age", "numericality", {"min": 0})],
            }

        conn.define_model(User)
        user = await User.create({"name": "Al", "age": 30})
    """

    __polyorm__: Dict[str, Any] = {}

    connection: Optional[Connection] = None
    model_name: Optional[str] = None

    def __init__(self, data: Optional[Mapping[str, Any]] = None, *, partial: bool = False):
        definition = self.definition()
        self._data: Dict[str, Any] = {}
        self._data_was: Dict[str, Any] = {}
        self._errors: List[FieldError] = []

        hooks = definition.hooks
        hooks.run_before_sync(Hook.BEFORE_INITIALIZE, self)

        data = dict(data or {})
        for name, spec in definition.fields.items():
            if name in data:
                self._data[name] = self._coerce(name, spec, data[name])
            elif partial:
                continue
            elif spec.has_default:
                self._data[name] = spec.default_value()
            else:
                self._data[name] = None

        self._data_was = copy.deepcopy(self._data)
        hooks.run_after(Hook.AFTER_INITIALIZE, self)

    @staticmethod
    def _coerce(name: str, spec: FieldSpec, value: Any) -> Any:
        """Structured types arriving as text are parsed; failures keep the raw value."""
        if spec.is_primitive or not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except ValueError as e:
            logger.warning(f"Field {name} value {value!r} cannot be converted to {spec.type}: {e}")
            return value

    # ------------------------------------------------------------------
    # Definition access
    # ------------------------------------------------------------------

    @classmethod
    def _connection(cls) -> Connection:
        if cls.connection is None or cls.model_name is None:
            raise ModelNotRegisteredError(f"{cls.__name__} is not defined on a connection")
        return cls.connection

    @classmethod
    def definition(cls) -> ModelDefinition:
        return cls._connection().definitions[cls.model_name]

    @classmethod
    def field_type_name(cls, name: str) -> str:
        spec = cls.definition().fields.get(name)
        return spec.type if spec else ""

    @classmethod
    def define_property(cls, name: str, spec: Any) -> None:
        cls._connection().extend_model(cls.model_name, {name: spec})

    @classmethod
    def define_foreign_key(cls, name: str) -> None:
        conn = cls._connection()
        if cls.definition().has_field(name):
            logger.info(f"Model {cls.model_name} already has a field named {name}")
            return
        conn.extend_model(cls.model_name, {name: {"type": conn.adapter.identifier_kind.value}})

    # ------------------------------------------------------------------
    # Field access
    # ------------------------------------------------------------------

    def has_field(self, name: str) -> bool:
        return self.definition().has_field(name)

    def get(self, name: str) -> Any:
        return self.definition().accessor(name).get(self)

    def set(self, name: str, value: Any) -> None:
        self.definition().accessor(name).set(self, value)

    def was(self, name: str) -> Any:
        """Value as of the last construction or successful persistence."""
        return self.definition().accessor(name).was(self)

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def is_dirty(self, name: Optional[str] = None) -> bool:
        if name is not None:
            return self.get(name) != self.was(name)
        return bool(self.changes())

    def changes(self) -> Dict[str, Any]:
        return {
            name: value
            for name, value in self._data.items()
            if value != self._data_was.get(name)
        }

    @property
    def errors(self) -> List[FieldError]:
        return list(self._errors)

    def to_object(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def to_json(self) -> str:
        return json.dumps(self.to_object(), default=json_safe)

    def related(self, name: str):
        return resolve_relation(self, name)

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self._data.items())
        return f"<{type(self).__name__} {fields}>"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _identity(self) -> Dict[str, Any]:
        return {pk: self._data.get(pk) for pk in self.definition().primary_key_names}

    def _has_identity(self) -> bool:
        return all(value is not None for value in self._identity().values())

    def _payload(self) -> Dict[str, Any]:
        """Declared fields for the adapter; unset generated keys are left to the backend."""
        definition = self.definition()
        return {
            name: value
            for name, value in self._data.items()
            if not (value is None and definition.is_generated(name))
        }

    def _absorb(self, record: Mapping[str, Any]) -> None:
        definition = self.definition()
        for name, value in record.items():
            if definition.has_field(name):
                self._data[name] = value
        self._data_was = copy.deepcopy(self._data)

    @classmethod
    def _deferred(cls, operation: Callable[..., Awaitable[Any]], *args: Any) -> bool:
        """Queue the operation for replay when not yet connected."""
        conn = cls._connection()
        if conn.connected:
            return False
        conn.defer(operation, *args)
        return True

    @classmethod
    async def _call(cls, operation: str, awaitable: Awaitable[Any]) -> Any:
        return await cls._connection().execute(operation, cls.model_name, awaitable)

    @classmethod
    def _adapter(cls):
        return cls._connection().adapter

    @classmethod
    def _from_records(cls, records: Optional[Sequence[Mapping[str, Any]]], partial: bool = False) -> List[Entity]:
        return [cls(record, partial=partial) for record in records or []]

    @classmethod
    def _declared(cls, data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        definition = cls.definition()
        ignored = [k for k in (data or {}) if not definition.has_field(k)]
        if ignored:
            logger.warning(f"{cls.model_name}: ignoring undeclared fields {ignored}")
        return {k: v for k, v in (data or {}).items() if definition.has_field(k)}

    @classmethod
    def _id_where(cls, id: Any) -> Dict[str, Any]:
        pks = cls.definition().primary_key_names
        if isinstance(id, Mapping):
            return {k: v for k, v in id.items() if k in pks}
        if isinstance(id, (list, tuple)) and len(pks) > 1:
            return dict(zip(pks, id))
        return {pks[0]: id}

    # ------------------------------------------------------------------
    # Query builder entry points
    # ------------------------------------------------------------------

    @classmethod
    def query(cls, action: str = "find", conditions: Optional[Mapping[str, Any]] = None) -> QueryBuilder:
        return QueryBuilder(cls, action, conditions)

    @classmethod
    def where(cls, *args: Any) -> QueryBuilder:
        return cls.query().where(*args)

    # ------------------------------------------------------------------
    # Class-level operations
    # ------------------------------------------------------------------

    @classmethod
    async def exists(cls, id: Any) -> Optional[bool]:
        if cls._deferred(cls.exists, id):
            return None
        if id is None or id == "":
            raise ValueError(f"{cls.model_name}.exists requires an id argument")
        return await cls._call("exists", cls._adapter().exists(cls.model_name, id))

    @classmethod
    async def count(cls, conditions: Optional[Mapping[str, Any]] = None) -> Optional[int]:
        if cls._deferred(cls.count, conditions):
            return None
        return await cls._call("count", cls._adapter().count(cls.model_name, conditions))

    @classmethod
    async def create(cls, data: Union[Entity, Mapping[str, Any], None] = None) -> Optional[Entity]:
        if cls._deferred(cls.create, data):
            return None

        hooks = cls.definition().hooks
        await hooks.run_before(Hook.BEFORE_CREATE, cls)

        # only an existing instance that already carries its key skips validation
        entity = data if isinstance(data, cls) else cls(data)
        if not (entity is data and entity._has_identity()):
            if not await entity.validate():
                for pk in cls.definition().primary_key_names:
                    entity._data[pk] = None
                return entity

        record = await cls._call("create", cls._adapter().create(cls.model_name, entity._payload()))
        entity._absorb(record)
        hooks.run_after(Hook.AFTER_CREATE, cls, entity)
        return entity

    @classmethod
    async def find(cls, conditions: Optional[Mapping[str, Any]] = None) -> Optional[List[Entity]]:
        if cls._deferred(cls.find, conditions):
            return None
        conditions = QueryBuilder.build(conditions, cls.query("find", conditions))
        records = await cls._call("find", cls._adapter().find(cls.model_name, conditions))
        return cls._from_records(records, partial=bool(conditions.get("fields")))

    @classmethod
    async def find_one(cls, conditions: Optional[Mapping[str, Any]] = None) -> Optional[Entity]:
        if cls._deferred(cls.find_one, conditions):
            return None
        records = await cls.find({**(conditions or {}), "limit": 1})
        return records[0] if records else None

    @classmethod
    async def find_by_id(cls, id: Any) -> Optional[Entity]:
        if cls._deferred(cls.find_by_id, id):
            return None
        where = cls._id_where(id)
        if not where:
            return None
        return await cls.find_one({"where": where})

    @classmethod
    async def update(cls, conditions: Optional[Mapping[str, Any]], data: Mapping[str, Any]) -> Optional[List[Entity]]:
        if cls._deferred(cls.update, conditions, data):
            return None
        hooks = cls.definition().hooks
        await hooks.run_before(Hook.BEFORE_UPDATE, cls)
        records = await cls._call(
            "update", cls._adapter().update(cls.model_name, conditions, cls._declared(data))
        )
        entities = cls._from_records(records)
        hooks.run_after(Hook.AFTER_UPDATE, cls, entities)
        return entities

    @classmethod
    async def update_or_create(cls, conditions: Optional[Mapping[str, Any]], data: Mapping[str, Any]) -> Optional[List[Entity]]:
        if cls._deferred(cls.update_or_create, conditions, data):
            return None
        records = await cls._call(
            "update_or_create",
            cls._adapter().update_or_create(cls.model_name, conditions, cls._declared(data)),
        )
        return cls._from_records(records)

    @classmethod
    async def remove(cls, conditions: Optional[Mapping[str, Any]] = None) -> Optional[bool]:
        if cls._deferred(cls.remove, conditions):
            return None
        hooks = cls.definition().hooks
        await hooks.run_before(Hook.BEFORE_REMOVE, cls)
        removed = await cls._call("remove", cls._adapter().remove(cls.model_name, conditions))
        hooks.run_after(Hook.AFTER_REMOVE, cls, removed)
        return removed

    @classmethod
    async def remove_by_id(cls, id: Any) -> Optional[bool]:
        if cls._deferred(cls.remove_by_id, id):
            return None
        where = cls._id_where(id)
        if not where:
            return False
        return await cls.remove({"where": where})

    @classmethod
    async def remove_all(cls) -> None:
        if cls._deferred(cls.remove_all):
            return None
        hooks = cls.definition().hooks
        await hooks.run_before(Hook.BEFORE_REMOVE, cls)
        await cls._call("remove_all", cls._adapter().remove_all(cls.model_name))
        hooks.run_after(Hook.AFTER_REMOVE, cls, None)

    @classmethod
    async def ensure_index(cls, fields: Union[str, Sequence[str]], options: Any = None) -> None:
        if cls._deferred(cls.ensure_index, fields, options):
            return None
        await cls._call("ensure_index", cls._adapter().ensure_index(cls.model_name, fields, options))

    # ------------------------------------------------------------------
    # Instance operations
    # ------------------------------------------------------------------

    async def validate(self) -> bool:
        hooks = self.definition().hooks
        await hooks.run_before(Hook.BEFORE_VALIDATE, self)
        result = await validate_entity(self, self.definition().validations)
        self._errors = list(result.errors)
        hooks.run_after(Hook.AFTER_VALIDATE, self, result.valid)
        return result.valid

    async def save(self) -> Optional[Entity]:
        cls = type(self)
        if cls._deferred(self.save):
            return None

        hooks = self.definition().hooks
        await hooks.run_before(Hook.BEFORE_SAVE, self)

        if not self._has_identity():
            return await cls.create(self)

        if not await self.validate():
            return self

        record = await cls._call("save", cls._adapter().save(cls.model_name, self._payload()))
        self._absorb(record)
        hooks.run_after(Hook.AFTER_SAVE, self, self)
        return self

    async def update_fields(self, data: Mapping[str, Any]) -> Optional[Entity]:
        cls = type(self)
        if cls._deferred(self.update_fields, data):
            return None

        identity = self._identity()
        changes = cls._declared(data)
        for name, value in changes.items():
            self.set(name, value)
        if not await self.validate():
            return self

        records = await cls.update({"where": identity}, changes)
        if records:
            self._absorb(records[0].to_object())
        return self
