# src/polyorm/relations.py
"""
Relation accessors resolved from the descriptors stored on a model definition.

Usage:
    author = await Author.find_by_id(1)
    posts = author.related("posts")
    await posts.create({"title": "Hello"})
    await posts.find({"where": {"published": True}})
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING, Union

from .errors import ModelNotRegisteredError
from .models import Relation, RelationKind

if TYPE_CHECKING:
    from .entity import Entity

logger = logging.getLogger(__name__)


def _ensure_foreign_key(connection: Any, model_name: str, foreign_key: str) -> None:
    """Add the foreign key field, typed by the adapter's identifier kind, on first use."""
    definition = connection.definitions[model_name]
    if definition.has_field(foreign_key):
        return
    kind = connection.adapter.identifier_kind.value
    connection.extend_model(model_name, {foreign_key: {"type": kind}})
    logger.debug(f"Added foreign key {model_name}.{foreign_key} ({kind})")


class OneToOneAccessor:
    """Foreign key lives on the owner and points at the related record."""

    def __init__(self, owner: Entity, relation: Relation, target: type):
        self.owner = owner
        self.relation = relation
        self.target = target
        _ensure_foreign_key(owner.connection, owner.model_name, relation.foreign_key)

    async def __call__(self, data: Optional[Dict[str, Any]] = None) -> Optional[Entity]:
        if data:
            record = await self.target.create(data)
            if record is None:
                return None
            pk = self.target.definition().primary_key_names[0]
            self.owner.set(self.relation.foreign_key, record.get(pk))
            return record

        key = self.owner.get(self.relation.foreign_key)
        if key is None:
            return None
        return await self.target.find_by_id(key)


class OneToManyAccessor:
    """Foreign key lives on the related model and points back at the owner."""

    def __init__(self, owner: Entity, relation: Relation, target: type):
        self.owner = owner
        self.relation = relation
        self.target = target
        _ensure_foreign_key(owner.connection, target.model_name, relation.foreign_key)

    @property
    def owner_id(self) -> Any:
        pk = self.owner.definition().primary_key_names[0]
        return self.owner.get(pk)

    def _scope(self, conditions: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        scoped = dict(conditions or {})
        scoped["where"] = {**(scoped.get("where") or {}), self.relation.foreign_key: self.owner_id}
        return scoped

    def __call__(self, data: Optional[Dict[str, Any]] = None) -> Any:
        """With data: an unsaved related instance. Without: a coroutine for ``fetch_all``."""
        if data:
            return self.target({**data, self.relation.foreign_key: self.owner_id})
        return self.fetch_all()

    async def fetch_all(self) -> Dict[str, Any]:
        records = await self.find() or []
        obj = self.owner.to_object()
        obj[self.relation.name] = [record.to_object() for record in records]
        return obj

    async def create(self, data: Optional[Dict[str, Any]] = None) -> Optional[Entity]:
        return await self.target.create({**(data or {}), self.relation.foreign_key: self.owner_id})

    async def find(self, conditions: Optional[Dict[str, Any]] = None) -> Optional[List[Entity]]:
        return await self.target.find(self._scope(conditions))

    async def update(self, conditions: Optional[Dict[str, Any]], data: Dict[str, Any]) -> Optional[List[Entity]]:
        return await self.target.update(self._scope(conditions), data)

    async def remove(self, conditions: Optional[Dict[str, Any]] = None) -> Optional[bool]:
        return await self.target.remove(self._scope(conditions))


def resolve_relation(entity: Entity, name: str) -> Union[OneToOneAccessor, OneToManyAccessor]:
    definition = entity.definition()
    try:
        relation = definition.relations[name]
    except KeyError:
        raise KeyError(f"{definition.name} has no relation '{name}'")

    models = entity.connection.models
    if relation.target not in models:
        raise ModelNotRegisteredError(
            f"Relation {definition.name}.{name} targets undefined model '{relation.target}'"
        )
    target = models[relation.target]

    if relation.kind == RelationKind.ONE_TO_ONE:
        return OneToOneAccessor(entity, relation, target)
    return OneToManyAccessor(entity, relation, target)
