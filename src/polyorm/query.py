# src/polyorm/query.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .condition import OR_KEY, parse_direction, split_order_term

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass(frozen=True)
class Selected:
    """A field name waiting for its operator."""
    field: str


# None | Selected(field)
PendingKey = Optional[Selected]


class QueryBuilder:
    """Fluent condition builder with primary-key shorthand.

    ``where("age")`` selects a pending key; the next one-argument operator
    (``gt(18)``, ``between([18, 30])`` ...) is applied to it and clears it.
    Two-argument calls name their field explicitly and always clear the
    pending key.
    """

    def __init__(
        self,
        model: Optional[type] = None,
        action: str = "find",
        conditions: Optional[Mapping[str, Any]] = None,
    ):
        self.model = model
        self.action = action or "find"
        params = dict(conditions) if isinstance(conditions, Mapping) else {}
        self.conditions: Dict[str, Any] = dict(params.pop("where", None) or {})
        self.params: Dict[str, Any] = params
        self.pending: PendingKey = None

    def __repr__(self) -> str:
        return (
            f"QueryBuilder(action={self.action!r}, where={self.conditions!r}, "
            f"params={self.params!r}, pending={self.pending!r})"
        )

    # -- internal -------------------------------------------------------

    def _constrain(self, field: str, op: str, operand: Any) -> None:
        current = self.conditions.get(field, _UNSET)
        if current is _UNSET:
            self.conditions[field] = {op: operand}
        elif isinstance(current, dict):
            self.conditions[field] = {**current, op: operand}
        else:
            self.conditions[field] = {"eq": current, op: operand}

    def _operator(self, op: str, key: Any, value: Any) -> QueryBuilder:
        if value is _UNSET:
            if self.pending is None:
                logger.debug(f"{op}({key!r}) ignored: no pending key")
                return self
            field = self.pending.field
            self.pending = None
            self._constrain(field, op, key)
        else:
            self.pending = None
            self._constrain(key, op, value)
        return self

    def _param(self, name: str, value: Any) -> QueryBuilder:
        self.pending = None
        self.params[name] = value
        return self

    # -- selection ------------------------------------------------------

    def where(self, key: str, value: Any = _UNSET) -> QueryBuilder:
        if value is _UNSET:
            self.pending = Selected(key)
        else:
            self.pending = None
            self.conditions[key] = value
        return self

    def or_(self, values: List[Mapping[str, Any]]) -> QueryBuilder:
        if isinstance(values, (list, tuple)):
            self.conditions[OR_KEY] = list(values)
        return self

    def range(self, key: Any, from_: Any = _UNSET, to: Any = _UNSET) -> QueryBuilder:
        """range(from, to) on the pending key, or range(field, from, to)."""
        if to is _UNSET:
            if self.pending is None or from_ is _UNSET:
                return self
            field, low, high = self.pending.field, key, from_
        else:
            field, low, high = key, from_, to
        self.pending = None
        self._constrain(field, "gt", low)
        self._constrain(field, "lt", high)
        return self

    # -- operators ------------------------------------------------------

    def gt(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("gt", key, value)

    def gte(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("gte", key, value)

    def lt(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("lt", key, value)

    def lte(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("lte", key, value)

    def ne(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("ne", key, value)

    def neq(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("neq", key, value)

    def in_(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("in", key, value)

    def inq(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("inq", key, value)

    def nin(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("nin", key, value)

    def like(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("like", key, value)

    def regex(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("regex", key, value)

    def nlike(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("nlike", key, value)

    def between(self, key: Any, value: Any = _UNSET) -> QueryBuilder:
        return self._operator("between", key, value)

    # -- parameters -----------------------------------------------------

    def order(self, key: str, direction: Any = None) -> QueryBuilder:
        if direction is None:
            # bare field names sort descending
            key, sign = split_order_term(key, default=-1)
        else:
            sign = parse_direction(direction)
        order = dict(self.params.get("order") or {})
        order[key] = sign
        return self._param("order", order)

    def asc(self, key: str) -> QueryBuilder:
        return self.order(key, 1)

    def desc(self, key: str) -> QueryBuilder:
        return self.order(key, -1)

    def fields(self, keys: Any) -> QueryBuilder:
        if isinstance(keys, (str, list, tuple, dict)):
            return self._param("fields", keys)
        return self

    def group(self, key: str) -> QueryBuilder:
        return self._param("group", key)

    def limit(self, limit: int) -> QueryBuilder:
        return self._param("limit", limit)

    def skip(self, skip: int) -> QueryBuilder:
        return self._param("skip", skip)

    def slice(self, skip: int, limit: Any = _UNSET) -> QueryBuilder:
        if limit is _UNSET:
            return self.limit(skip)
        self.skip(skip)
        return self.limit(limit)

    # -- execution ------------------------------------------------------

    def reset(self) -> None:
        self.conditions = {}
        self.params = {}
        self.pending = None

    @staticmethod
    def build(conditions: Optional[Mapping[str, Any]], builder: QueryBuilder) -> Dict[str, Any]:
        """Merge builder state into ``conditions`` and reset the builder.

        Predicates already present in ``conditions`` win; builder params
        (fields, order, skip, limit, group) overwrite.
        """
        result = dict(conditions or {})
        where = dict(result.get("where") or {})
        for key, value in builder.conditions.items():
            where.setdefault(key, value)
        result["where"] = where
        result.update(builder.params)
        builder.reset()
        return result

    async def exec(self, *args: Any) -> Any:
        if self.model is None:
            raise TypeError("QueryBuilder is not bound to a model")
        action = getattr(self.model, self.action)
        return await action(QueryBuilder.build({}, self), *args)
