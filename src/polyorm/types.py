# src/polyorm/types.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from .condition import Condition
    from .models import FieldSpec, ModelDefinition

JsonDict = Dict[str, Any]
Lookup = Dict[str, Any]
ConditionLike = Union["Condition", Lookup, None]

# Field types stored as-is; anything else gets a JSON parse attempt on load
BASE_TYPES = frozenset({"string", "boolean", "number", "date", "text", "json", "uuid"})


class IdentifierKind(Enum):
    """Native identifier type an adapter generates for synthesized primary keys"""
    NUMBER = "number"
    INT = "int"
    UUID = "uuid"
    OBJECT_ID = "objectId"


IDENTIFIER_TYPES = frozenset(kind.value for kind in IdentifierKind)


def is_primitive_type(type_name: str) -> bool:
    return type_name in BASE_TYPES or type_name in IDENTIFIER_TYPES


@runtime_checkable
class Adapter(Protocol):
    """Uniform backend contract; every data operation is a coroutine"""

    name: str
    identifier_kind: IdentifierKind

    def define(self, definition: ModelDefinition) -> None: ...

    def define_property(self, model_name: str, field: str, spec: FieldSpec) -> None: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def exists(self, model_name: str, id: Any) -> bool: ...

    async def count(self, model_name: str, condition: ConditionLike = None) -> int: ...

    async def create(self, model_name: str, data: JsonDict) -> JsonDict: ...

    async def save(self, model_name: str, data: JsonDict) -> JsonDict: ...

    async def find(self, model_name: str, condition: ConditionLike = None) -> List[JsonDict]: ...

    async def update(self, model_name: str, condition: ConditionLike, data: JsonDict) -> List[JsonDict]: ...

    async def update_or_create(
        self, model_name: str, condition: ConditionLike, data: JsonDict
    ) -> List[JsonDict]: ...

    async def remove(self, model_name: str, condition: ConditionLike) -> bool: ...

    async def remove_by_id(self, model_name: str, id: Any) -> bool: ...

    async def remove_all(self, model_name: str) -> None: ...

    async def ensure_index(
        self,
        model_name: str,
        fields: Union[str, Sequence[str]],
        options: Optional[Union[str, bool, Dict[str, Any]]] = None,
    ) -> None: ...
