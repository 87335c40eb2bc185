# src/polyorm/condition.py
"""
Backend-neutral condition model: predicates, projection, ordering, pagination
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import InvalidConditionError


class Operator(Enum):
    EQ = "eq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    NE = "ne"
    BETWEEN = "between"
    IN = "in"
    NIN = "nin"
    LIKE = "like"
    NLIKE = "nlike"


OR_KEY = "or"

OPERATOR_ALIASES: Dict[str, Operator] = {op.value: op for op in Operator}
OPERATOR_ALIASES.update({
    "neq": Operator.NE,
    "inq": Operator.IN,
    "regex": Operator.LIKE,
})

COMPARISONS = (Operator.GT, Operator.GTE, Operator.LT, Operator.LTE)

Direction = int  # 1 ascending, -1 descending
OrderSpec = List[Tuple[str, Direction]]


@dataclass(frozen=True)
class Predicate:
    field: str
    op: Operator
    operand: Any = None


@dataclass(frozen=True)
class Disjunction:
    """OR over branches; every branch is a conjunction of clauses."""
    branches: Tuple[Tuple["Clause", ...], ...]


Clause = Union[Predicate, Disjunction]


# ---------------------------------------------------------------------------
# where parsing
# ---------------------------------------------------------------------------

def parse_where(where: Optional[Mapping[str, Any]]) -> List[Clause]:
    """Turn a where map into a flat conjunction of clauses."""
    if not where:
        return []
    if not isinstance(where, Mapping):
        raise InvalidConditionError(f"where must be a mapping, got {type(where).__name__}")

    clauses: List[Clause] = []
    for key, constraint in where.items():
        if key == OR_KEY:
            clauses.append(_parse_or(constraint))
            continue
        clauses.extend(_parse_constraint(key, constraint))
    return clauses


def _parse_or(value: Any) -> Disjunction:
    if isinstance(value, Mapping):
        # {or: {a: 1, b: 2}} means a == 1 OR b == 2
        value = [{k: v} for k, v in value.items()]
    if not isinstance(value, (list, tuple)):
        raise InvalidConditionError("'or' expects a list of predicate maps")

    branches = []
    for sub in value:
        if not isinstance(sub, Mapping):
            raise InvalidConditionError("'or' branches must be predicate maps")
        branches.append(tuple(parse_where(sub)))
    return Disjunction(tuple(branches))


def _parse_constraint(name: str, constraint: Any) -> List[Predicate]:
    if isinstance(constraint, re.Pattern):
        return [Predicate(name, Operator.LIKE, constraint.pattern)]
    if not isinstance(constraint, Mapping):
        return [Predicate(name, Operator.EQ, constraint)]
    if not constraint:
        raise InvalidConditionError(f"Empty operator map for field '{name}'")

    predicates = []
    for raw_op, operand in constraint.items():
        op = OPERATOR_ALIASES.get(str(raw_op).lower())
        if op is None:
            raise InvalidConditionError(f"Unknown operator '{raw_op}' for field '{name}'")
        predicates.append(Predicate(name, op, normalize_operand(op, operand, name)))
    return predicates


def normalize_operand(op: Operator, operand: Any, name: str = "?") -> Any:
    if op == Operator.BETWEEN:
        if not isinstance(operand, (list, tuple)) or len(operand) != 2:
            raise InvalidConditionError(f"'between' on '{name}' expects [low, high]")
        return tuple(operand)
    if op in (Operator.IN, Operator.NIN):
        if isinstance(operand, (str, bytes, Mapping)) or not isinstance(operand, Iterable):
            raise InvalidConditionError(f"'{op.value}' on '{name}' expects a collection")
        return tuple(operand)
    if op in (Operator.LIKE, Operator.NLIKE):
        if isinstance(operand, re.Pattern):
            return operand.pattern
        if not isinstance(operand, str):
            raise InvalidConditionError(f"'{op.value}' on '{name}' expects a pattern string")
        return operand
    return operand


def iter_predicates(clauses: Sequence[Clause]) -> Iterable[Predicate]:
    """Every predicate in the tree, depth first."""
    for clause in clauses:
        if isinstance(clause, Disjunction):
            for branch in clause.branches:
                yield from iter_predicates(branch)
        else:
            yield clause


# ---------------------------------------------------------------------------
# in-process matching
# ---------------------------------------------------------------------------

def _loose_equal(value: Any, operand: Any) -> bool:
    # a number equals its text, as with SQLite NUMERIC affinity and PostgreSQL
    # literal coercion; MongoDB compares by BSON type and does not
    if value == operand:
        return True
    scalars = (str, int, float)
    if isinstance(value, scalars) and isinstance(operand, scalars) and not isinstance(value, bool):
        return str(value) == str(operand)
    return False


def _compare(op: Operator, value: Any, operand: Any) -> bool:
    if value is None or operand is None:
        return False
    try:
        if op == Operator.GT:
            return value > operand
        if op == Operator.GTE:
            return value >= operand
        if op == Operator.LT:
            return value < operand
        return value <= operand
    except TypeError:
        return False


def match_predicate(predicate: Predicate, record: Mapping[str, Any]) -> bool:
    value = record.get(predicate.field)
    op, operand = predicate.op, predicate.operand

    if op == Operator.EQ:
        if operand is None:
            return value is None
        return value is not None and _loose_equal(value, operand)
    if op == Operator.NE:
        if operand is None:
            return value is not None
        return value is None or not _loose_equal(value, operand)
    if op in COMPARISONS:
        return _compare(op, value, operand)
    if op == Operator.BETWEEN:
        low, high = operand
        return _compare(Operator.GTE, value, low) and _compare(Operator.LTE, value, high)
    if op == Operator.IN:
        return value is not None and any(_loose_equal(value, item) for item in operand)
    if op == Operator.NIN:
        return value is None or not any(_loose_equal(value, item) for item in operand)
    if op == Operator.LIKE:
        return value is not None and re.search(operand, str(value)) is not None
    if op == Operator.NLIKE:
        return value is None or re.search(operand, str(value)) is None
    raise InvalidConditionError(f"Unsupported operator {op}")


def matches(clauses: Sequence[Clause], record: Mapping[str, Any]) -> bool:
    """True when the record satisfies every clause."""
    for clause in clauses:
        if isinstance(clause, Disjunction):
            if not any(matches(branch, record) for branch in clause.branches):
                return False
        elif not match_predicate(clause, record):
            return False
    return True


# ---------------------------------------------------------------------------
# projection / ordering
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Projection:
    """Field selection: include list or exclude list."""
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, spec: Any) -> Optional["Projection"]:
        if spec is None or spec == "" or spec == []:
            return None
        if isinstance(spec, Projection):
            return spec

        if isinstance(spec, str):
            tokens = [t for t in re.split(r"[\s,]+", spec) if t]
        elif isinstance(spec, Mapping):
            tokens = [name if flag else f"-{name}" for name, flag in spec.items()]
        elif isinstance(spec, (list, tuple)):
            tokens = [str(t) for t in spec]
        else:
            raise InvalidConditionError(f"Unsupported projection spec: {spec!r}")

        include = tuple(t for t in tokens if not t.startswith("-"))
        exclude = tuple(t[1:] for t in tokens if t.startswith("-"))
        return cls(include=include, exclude=exclude)

    def resolve(self, all_fields: Sequence[str], primary_keys: Sequence[str]) -> List[str]:
        """Selected field names in definition order; primary keys are always kept."""
        include = set(self.include) | {name for name in self.exclude if name in primary_keys}
        exclude = {name for name in self.exclude if name not in primary_keys}
        include_mode = len(include) > len(exclude)

        if include_mode:
            wanted = include | set(primary_keys)
            return [name for name in all_fields if name in wanted]
        return [name for name in all_fields if name not in exclude]

    def to_spec(self) -> str:
        return " ".join(list(self.include) + [f"-{name}" for name in self.exclude])


def parse_direction(value: Any, default: Direction = 1) -> Direction:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        upper = value.strip().upper()
        if upper in ("DESC", "-1"):
            return -1
        if upper in ("ASC", "1"):
            return 1
        raise InvalidConditionError(f"Unknown sort direction: {value!r}")
    return -1 if value < 0 else 1


_ORDER_SUFFIX = re.compile(r"^\s*(\S+?)(?:\s+(ASC|DESC))?\s*$", re.IGNORECASE)


def split_order_term(term: str, default: Direction = 1) -> Tuple[str, Direction]:
    """'name DESC' -> ('name', -1)"""
    matched = _ORDER_SUFFIX.match(term)
    if not matched:
        raise InvalidConditionError(f"Malformed order term: {term!r}")
    name, suffix = matched.groups()
    return name, parse_direction(suffix, default)


def parse_order(spec: Any) -> OrderSpec:
    if not spec:
        return []
    if isinstance(spec, str):
        return [split_order_term(term) for term in spec.split(",") if term.strip()]
    if isinstance(spec, Mapping):
        return [(name, parse_direction(direction)) for name, direction in spec.items()]
    if isinstance(spec, (list, tuple)):
        order: OrderSpec = []
        for item in spec:
            if isinstance(item, str):
                order.append(split_order_term(item))
            else:
                name, direction = item
                order.append((name, parse_direction(direction)))
        return order
    raise InvalidConditionError(f"Unsupported order spec: {spec!r}")


# ---------------------------------------------------------------------------
# Condition
# ---------------------------------------------------------------------------

CONDITION_KEYS = {"where", "fields", "order", "skip", "limit", "group"}


@dataclass
class Condition:
    """Canonical query: where map, projection, ordering and pagination"""

    where: Dict[str, Any] = field(default_factory=dict)
    fields: Optional[Projection] = None
    order: OrderSpec = field(default_factory=list)
    skip: Optional[int] = None
    limit: Optional[int] = None
    # accepted and passed along; adapters do not group records
    group: Any = None

    @classmethod
    def from_value(cls, conditions: Union["Condition", Mapping[str, Any], None]) -> "Condition":
        if conditions is None:
            return cls()
        if isinstance(conditions, Condition):
            return conditions
        if not isinstance(conditions, Mapping):
            raise InvalidConditionError(f"Conditions must be a mapping, got {type(conditions).__name__}")

        unknown = set(conditions) - CONDITION_KEYS
        if unknown:
            raise InvalidConditionError(f"Unknown condition keys: {sorted(unknown)}")

        where = dict(conditions.get("where") or {})
        # fail fast on malformed predicates
        parse_where(where)

        return cls(
            where=where,
            fields=Projection.parse(conditions.get("fields")),
            order=parse_order(conditions.get("order")),
            skip=_as_count("skip", conditions.get("skip")),
            limit=_as_count("limit", conditions.get("limit")),
            group=conditions.get("group"),
        )

    @property
    def clauses(self) -> List[Clause]:
        return parse_where(self.where)

    def with_where(self, extra: Mapping[str, Any]) -> "Condition":
        """Copy with extra predicates ANDed in; extra keys win on collision."""
        return Condition(
            where={**self.where, **extra},
            fields=self.fields,
            order=list(self.order),
            skip=self.skip,
            limit=self.limit,
            group=self.group,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"where": dict(self.where)}
        if self.fields:
            result["fields"] = self.fields.to_spec()
        if self.order:
            result["order"] = {name: direction for name, direction in self.order}
        if self.skip is not None:
            result["skip"] = self.skip
        if self.limit is not None:
            result["limit"] = self.limit
        if self.group is not None:
            result["group"] = self.group
        return result


def _as_count(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise InvalidConditionError(f"'{name}' must be an integer, got {value!r}")
    if count < 0:
        raise InvalidConditionError(f"'{name}' must not be negative")
    return count


def sort_records(records: List[Dict[str, Any]], order: OrderSpec) -> List[Dict[str, Any]]:
    """Stable multi-key sort; nulls sort first ascending."""
    for name, direction in reversed(order):
        present = [r for r in records if r.get(name) is not None]
        missing = [r for r in records if r.get(name) is None]
        try:
            present = sorted(present, key=lambda r: r[name], reverse=direction < 0)
        except TypeError:
            present = sorted(present, key=lambda r: str(r[name]), reverse=direction < 0)
        records = missing + present if direction > 0 else present + missing
    return records


def paginate(records: List[Any], skip: Optional[int], limit: Optional[int]) -> List[Any]:
    if skip:
        records = records[skip:]
    if limit is not None:
        records = records[:limit]
    return records
