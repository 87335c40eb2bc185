# src/polyorm/validators.py
"""
Built-in field validators.

Each validator is a coroutine ``(entity, field, options)`` returning ``True``
when the value passes, or a failure kind string (``"null"``, ``"blank"``,
``"min"``, ``"max"``, ``"is"``, ``"int"``, ``"number"``, ``"other"``).
"""
from __future__ import annotations

import inspect
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from .utils import is_blank

logger = logging.getLogger(__name__)

Outcome = Union[bool, str]
Validator = Callable[[Any, str, Mapping[str, Any]], Awaitable[Outcome]]


def _null_check(value: Any, options: Mapping[str, Any]) -> Optional[Outcome]:
    """Outcome for null/blank values, or None to keep validating."""
    if value is None:
        return True if options.get("allow_null") else "null"
    if is_blank(value):
        return True if options.get("allow_blank") else "blank"
    return None


async def presence(entity: Any, field: str, options: Mapping[str, Any]) -> Outcome:
    value = entity.get(field)
    if value is None:
        return "null"
    return "blank" if is_blank(value) else True


async def length(entity: Any, field: str, options: Mapping[str, Any]) -> Outcome:
    value = entity.get(field)
    early = _null_check(value, options)
    if early is not None:
        return early
    try:
        size = len(value)
    except TypeError:
        size = len(str(value))
    if "min" in options and size < options["min"]:
        return "min"
    if "max" in options and size > options["max"]:
        return "max"
    if "is" in options and size != options["is"]:
        return "is"
    return True


async def numericality(entity: Any, field: str, options: Mapping[str, Any]) -> Outcome:
    value = entity.get(field)
    early = _null_check(value, options)
    if early is not None:
        return early
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "number"
    if options.get("int") and value != round(value):
        return "int"
    if "min" in options and value < options["min"]:
        return "min"
    if "max" in options and value > options["max"]:
        return "max"
    return True


async def inclusion(entity: Any, field: str, options: Mapping[str, Any]) -> Outcome:
    value = entity.get(field)
    early = _null_check(value, options)
    if early is not None:
        return early
    if "in" in options and value not in options["in"]:
        return False
    return True


async def exclusion(entity: Any, field: str, options: Mapping[str, Any]) -> Outcome:
    value = entity.get(field)
    early = _null_check(value, options)
    if early is not None:
        return early
    if "in" in options and value in options["in"]:
        return False
    return True


async def format(entity: Any, field: str, options: Mapping[str, Any]) -> Outcome:
    value = entity.get(field)
    early = _null_check(value, options)
    if early is not None:
        return early
    if not isinstance(value, str):
        return True
    return True if re.search(options["with"], value) else False


async def custom(entity: Any, field: str, options: Mapping[str, Any]) -> Outcome:
    """Run the caller's predicate; raising counts as rejection."""
    predicate = options["validator"]
    try:
        outcome = predicate(entity)
        if inspect.isawaitable(outcome):
            outcome = await outcome
    except Exception as e:
        logger.debug(f"Custom validator for '{field}' rejected: {e}")
        return "other"
    if isinstance(outcome, str):
        return outcome
    return bool(outcome)


async def uniqueness(entity: Any, field: str, options: Mapping[str, Any]) -> Outcome:
    value = entity.get(field)
    if value is None and options.get("allow_null"):
        return True

    model = type(entity)
    found = await model.find({"where": {field: value}})
    found = found or []
    if len(found) > 1:
        return False
    if len(found) == 1:
        pk = model.definition().primary_key_names[0]
        own_id = entity.get(pk)
        other_id = found[0].get(pk)
        if own_id is None or other_id is None or str(own_id) != str(other_id):
            return False
    return True


VALIDATORS: Dict[str, Validator] = {
    "presence": presence,
    "length": length,
    "numericality": numericality,
    "inclusion": inclusion,
    "exclusion": exclusion,
    "format": format,
    "custom": custom,
    "uniqueness": uniqueness,
}
