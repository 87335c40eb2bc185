# src/polyorm/models.py
"""
Model definitions: field specs, primary keys, accessors, relations, indexes
"""
from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .errors import InvalidModelDefinitionError
from .hooks import HookTable
from .types import IdentifierKind, is_primitive_type
from .validation import Validation

logger = logging.getLogger(__name__)


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()

_PYTHON_TYPES = {
    str: "string",
    bool: "boolean",
    int: "number",
    float: "number",
    datetime.datetime: "date",
    datetime.date: "date",
    dict: "json",
    list: "array",
    uuid.UUID: "uuid",
}


@dataclass
class FieldSpec:
    """Declared field: type name, default (literal or zero-arg callable), hints"""

    type: str = "string"
    default: Any = NO_DEFAULT
    nullable: bool = True
    unique: bool = False
    index: Union[bool, str] = False
    precision: Optional[int] = None
    decimals: Optional[int] = None

    @classmethod
    def from_value(cls, value: Any) -> FieldSpec:
        if isinstance(value, FieldSpec):
            return value
        if value is None:
            return cls()
        if isinstance(value, str):
            return cls(type=value)
        if isinstance(value, type):
            try:
                return cls(type=_PYTHON_TYPES[value])
            except KeyError:
                raise InvalidModelDefinitionError(f"No field type for {value.__name__}")
        if isinstance(value, Mapping):
            options = dict(value)
            type_ = options.pop("type", "string")
            if isinstance(type_, type):
                type_ = cls.from_value(type_).type
            try:
                return cls(type=type_, **options)
            except TypeError as e:
                raise InvalidModelDefinitionError(f"Invalid field options {value!r}: {e}")
        raise InvalidModelDefinitionError(f"Unsupported field spec: {value!r}")

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    def default_value(self) -> Any:
        if callable(self.default):
            return self.default()
        return self.default

    @property
    def is_primitive(self) -> bool:
        return is_primitive_type(self.type)


@dataclass(frozen=True)
class PrimaryKey:
    field: str
    generated: bool = False

    @classmethod
    def from_value(cls, value: Any) -> PrimaryKey:
        if isinstance(value, PrimaryKey):
            return value
        if isinstance(value, str):
            return cls(field=value)
        if isinstance(value, Mapping):
            name = value.get("field") or value.get("pKey")
            if not name:
                raise InvalidModelDefinitionError(f"Primary key needs a field name: {value!r}")
            return cls(field=name, generated=bool(value.get("generated", False)))
        raise InvalidModelDefinitionError(f"Unsupported primary key spec: {value!r}")


class FieldAccessor:
    """Reads and writes one field of an entity's current-value store."""

    __slots__ = ("name",)

    def __init__(self, name: str):
        self.name = name

    def get(self, entity: Any) -> Any:
        return entity._data.get(self.name)

    def set(self, entity: Any, value: Any) -> None:
        entity._data[self.name] = value

    def was(self, entity: Any) -> Any:
        return entity._data_was.get(self.name)

    def __repr__(self) -> str:
        return f"FieldAccessor({self.name!r})"


class RelationKind(Enum):
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"


@dataclass(frozen=True)
class Relation:
    name: str
    kind: RelationKind
    target: str
    foreign_key: str


@dataclass(frozen=True)
class IndexSpec:
    name: str
    columns: List[str]
    unique: bool = False

    @classmethod
    def build(
        cls,
        table: str,
        fields: Union[str, Sequence[str]],
        options: Optional[Union[str, bool, Mapping[str, Any]]] = None,
    ) -> IndexSpec:
        """Normalize ensure_index arguments: options may be a name, a unique flag or a dict."""
        columns = fields.replace(",", " ").split() if isinstance(fields, str) else list(fields)
        if not columns:
            raise InvalidModelDefinitionError("An index needs at least one column")
        name, unique = None, False
        if isinstance(options, str):
            name = options
        elif isinstance(options, bool):
            unique = options
        elif isinstance(options, Mapping):
            name = options.get("name")
            unique = bool(options.get("unique", False))
        return cls(name=name or f"idx_{table}_{'_'.join(columns)}", columns=columns, unique=unique)


@dataclass
class ModelDefinition:
    """Everything the connection and adapters know about one entity type"""

    name: str
    table: str
    fields: Dict[str, FieldSpec] = field(default_factory=dict)
    primary_keys: List[PrimaryKey] = field(default_factory=list)
    validations: List[Validation] = field(default_factory=list)
    hooks: HookTable = field(default_factory=HookTable)
    relations: Dict[str, Relation] = field(default_factory=dict)
    indexes: Dict[str, IndexSpec] = field(default_factory=dict)
    accessors: Dict[str, FieldAccessor] = field(default_factory=dict)

    def __post_init__(self):
        for name in self.fields:
            self.accessors.setdefault(name, FieldAccessor(name))

    @property
    def field_names(self) -> List[str]:
        return list(self.fields)

    @property
    def primary_key_names(self) -> List[str]:
        return [pk.field for pk in self.primary_keys]

    def is_generated(self, name: str) -> bool:
        return any(pk.field == name and pk.generated for pk in self.primary_keys)

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def accessor(self, name: str) -> FieldAccessor:
        try:
            return self.accessors[name]
        except KeyError:
            raise KeyError(f"{self.name} has no field '{name}'")

    def add_field(self, name: str, spec: FieldSpec) -> bool:
        """Register a field; existing fields are never replaced."""
        if name in self.fields:
            return False
        self.fields[name] = spec
        self.accessors[name] = FieldAccessor(name)
        return True

    def ensure_primary_key(self, kind: IdentifierKind) -> None:
        """Synthesize a generated ``id`` key typed by the adapter when none is declared."""
        if self.primary_keys:
            return
        self.fields = {"id": self.fields.get("id") or FieldSpec(type=kind.value), **self.fields}
        self.accessors.setdefault("id", FieldAccessor("id"))
        self.primary_keys = [PrimaryKey("id", generated=True)]

    @classmethod
    def from_meta(cls, model: type, meta: Mapping[str, Any]) -> ModelDefinition:
        """Build a definition from ``__polyorm__`` metadata, raising on invalid entries."""
        if not isinstance(meta, Mapping):
            raise InvalidModelDefinitionError(
                f"__polyorm__ must be a dict, got {type(meta).__name__}"
            )

        errors: List[str] = []
        name = meta.get("name") or model.__name__
        table = meta.get("table") or meta.get("collection") or name

        fields: Dict[str, FieldSpec] = {}
        for field_name, spec in (meta.get("fields") or {}).items():
            try:
                fields[field_name] = FieldSpec.from_value(spec)
            except InvalidModelDefinitionError as e:
                errors.append(f"{field_name}: {e}")

        primary_keys = []
        for pk in meta.get("primary_keys") or []:
            try:
                primary_keys.append(PrimaryKey.from_value(pk))
            except InvalidModelDefinitionError as e:
                errors.append(str(e))
        for pk in primary_keys:
            if pk.field not in fields:
                errors.append(f"Primary key '{pk.field}' is not a declared field")

        validations = []
        for entry in meta.get("validations") or []:
            try:
                validations.append(Validation.from_value(entry))
            except InvalidModelDefinitionError as e:
                errors.append(str(e))

        hooks = HookTable()
        try:
            for kind, fn in collect_hook_methods(model).items():
                hooks.register(kind, fn)
            for kind, fn in (meta.get("hooks") or {}).items():
                hooks.register(kind, fn)
        except (ValueError, TypeError) as e:
            errors.append(str(e))

        relations = {}
        for rel_name, rel in (meta.get("relations") or {}).items():
            try:
                relations[rel_name] = _relation_from_value(name, rel_name, rel)
            except InvalidModelDefinitionError as e:
                errors.append(str(e))

        indexes = {}
        for index_name, spec in (meta.get("indexes") or {}).items():
            if isinstance(spec, Mapping):
                options = {"name": index_name, "unique": spec.get("unique", False)}
                columns = spec.get("columns")
            else:
                options, columns = {"name": index_name}, spec
            try:
                indexes[index_name] = IndexSpec.build(table, columns or [], options)
            except InvalidModelDefinitionError as e:
                errors.append(str(e))

        if errors:
            raise InvalidModelDefinitionError(f"Invalid model {name}: {', '.join(errors)}")

        for validation in validations:
            if validation.field not in fields:
                logger.warning(f"{name}: validation on undeclared field '{validation.field}'")

        return cls(
            name=name,
            table=table,
            fields=fields,
            primary_keys=primary_keys,
            validations=validations,
            hooks=hooks,
            relations=relations,
            indexes=indexes,
        )


def collect_hook_methods(model: type) -> Dict[Any, Callable]:
    """Functions marked with ``@hook(...)`` anywhere in the class hierarchy."""
    found: Dict[Any, Callable] = {}
    for klass in reversed(model.__mro__):
        for attr in vars(klass).values():
            kind = getattr(attr, "__polyorm_hook__", None)
            if kind is not None:
                found[kind] = attr
    return found


def _relation_from_value(owner: str, name: str, value: Any) -> Relation:
    if isinstance(value, Relation):
        return value
    if not isinstance(value, Mapping):
        raise InvalidModelDefinitionError(f"Relation '{name}' must be a dict")
    try:
        kind = RelationKind(value.get("kind", "one_to_many"))
    except ValueError:
        raise InvalidModelDefinitionError(f"Relation '{name}' has unknown kind {value.get('kind')!r}")
    target = value.get("model")
    if not target:
        raise InvalidModelDefinitionError(f"Relation '{name}' needs a target 'model'")
    if isinstance(target, type):
        target = getattr(target, "__polyorm__", {}).get("name") or target.__name__
    default_key = f"{name}_id" if kind == RelationKind.ONE_TO_ONE else f"{owner.lower()}_id"
    return Relation(
        name=name,
        kind=kind,
        target=target,
        foreign_key=value.get("foreign_key") or default_key,
    )
