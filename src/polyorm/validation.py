# src/polyorm/validation.py
"""
Field validation engine: guards, concurrent validator fan-out, error messages
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .errors import InvalidModelDefinitionError
from .validators import VALIDATORS, Outcome

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "is invalid"

DEFAULT_MESSAGES: Dict[str, Union[str, Dict[str, str]]] = {
    "presence": "can't be blank",
    "length": {
        "min": "too short",
        "max": "too long",
        "is": "length is wrong",
    },
    "format": "don't match the format",
    "numericality": {
        "int": "is not an integer",
        "number": "is not a number",
        "min": "is too small",
        "max": "is too big",
    },
    "inclusion": "is not included in the list",
    "exclusion": "is reserved",
    "uniqueness": "is not unique",
}

COMMON_MESSAGES = {
    "null": "is null",
    "blank": "is blank",
    "other": GENERIC_MESSAGE,
}

_OPTION_ALIASES = {
    "allowNull": "allow_null",
    "allowBlank": "allow_blank",
    "customValidator": "validator",
}

_REQUIRED_OPTIONS = {
    "format": "with",
    "custom": "validator",
}


@dataclass
class Validation:
    """One (field, kind, options) entry of a model's validation list"""

    field: str
    kind: str
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in VALIDATORS:
            raise InvalidModelDefinitionError(
                f"Unknown validator '{self.kind}' on '{self.field}'. Valid: {sorted(VALIDATORS)}"
            )
        self.options = {_OPTION_ALIASES.get(k, k): v for k, v in self.options.items()}
        required = _REQUIRED_OPTIONS.get(self.kind)
        if required and required not in self.options:
            raise InvalidModelDefinitionError(
                f"Validator '{self.kind}' on '{self.field}' requires option '{required}'"
            )
        if self.kind == "custom" and not callable(self.options["validator"]):
            raise InvalidModelDefinitionError(f"Custom validator on '{self.field}' must be callable")

    @classmethod
    def from_value(cls, value: Any) -> Validation:
        """Accept a Validation, a (field, kind[, options]) tuple or a mapping."""
        if isinstance(value, Validation):
            return value
        if isinstance(value, (tuple, list)) and len(value) in (2, 3):
            options = dict(value[2]) if len(value) == 3 else {}
            return cls(value[0], value[1], options)
        if isinstance(value, Mapping):
            options = dict(value)
            try:
                name = options.pop("field")
                kind = options.pop("kind", None) or options.pop("validation")
            except KeyError:
                raise InvalidModelDefinitionError(f"Validation needs 'field' and 'kind': {value!r}")
            options.update(options.pop("options", {}) or {})
            return cls(name, kind, options)
        raise InvalidModelDefinitionError(f"Unsupported validation entry: {value!r}")


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass
class ValidationResult:
    valid: bool
    errors: List[FieldError]


def should_skip(entity: Any, options: Mapping[str, Any]) -> bool:
    """Evaluate ``if``/``unless`` guards: a callable, a method name or a field name."""
    for key, wanted in (("if", True), ("unless", False)):
        guard = options.get(key)
        if guard is None:
            continue
        if bool(_guard_value(entity, guard)) != wanted:
            return True
    return False


def _guard_value(entity: Any, guard: Any) -> Any:
    if callable(guard):
        return guard(entity)
    attr = getattr(type(entity), guard, None)
    if callable(attr):
        return getattr(entity, guard)()
    return entity.get(guard) if entity.has_field(guard) else None


def resolve_message(validation: Validation, failure: str) -> str:
    """explicit message -> validator default -> common sub-kind message -> 'is invalid'"""
    message = validation.options.get("message") or DEFAULT_MESSAGES.get(validation.kind)
    if isinstance(message, Mapping):
        message = message.get(failure)
    if not message:
        message = COMMON_MESSAGES.get(failure)
    return message or GENERIC_MESSAGE


async def run_validation(entity: Any, validation: Validation) -> Optional[FieldError]:
    """None when the entry passes or is skipped."""
    if should_skip(entity, validation.options):
        return None
    validator = VALIDATORS[validation.kind]
    outcome: Outcome = await validator(entity, validation.field, validation.options)
    if outcome is True:
        return None
    failure = outcome if isinstance(outcome, str) and outcome else "other"
    return FieldError(validation.field, resolve_message(validation, failure))


async def validate_entity(entity: Any, validations: Sequence[Validation]) -> ValidationResult:
    """Run every validation concurrently and collect failures in declaration order."""
    if not validations:
        return ValidationResult(valid=True, errors=[])

    results = await asyncio.gather(
        *(run_validation(entity, v) for v in validations),
        return_exceptions=True,
    )

    errors: List[FieldError] = []
    for validation, result in zip(validations, results):
        if isinstance(result, BaseException):
            logger.error(f"Validator '{validation.kind}' on '{validation.field}' raised: {result}")
            raise result
        if result is not None:
            errors.append(result)

    return ValidationResult(valid=not errors, errors=errors)
