# src/polyorm/registry.py
from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple, Type, Union

from .errors import ModelNotRegisteredError, UnknownBackendError
from .models import ModelDefinition

AdapterFactory = Callable[..., Any]


class AdapterRegistry:
    """
    Process-wide backend registry.

    Supports:
    - register(name, factory, aliases)
    - resolve(name) → factory
    """

    _factories: Dict[str, AdapterFactory] = {}
    _aliases: Dict[str, str] = {}

    @classmethod
    def register(cls, name: str, factory: AdapterFactory, aliases: Tuple[str, ...] = ()):
        key = name.lower()
        cls._factories[key] = factory
        for alias in aliases:
            cls._aliases[alias.lower()] = key

    @classmethod
    def resolve(cls, name: str) -> AdapterFactory:
        if not name:
            raise UnknownBackendError("No backend driver configured")

        key = name.lower()
        key = cls._aliases.get(key, key)
        try:
            return cls._factories[key]
        except KeyError:
            raise UnknownBackendError(
                f"Unknown backend '{name}'. Registered backends: {', '.join(cls.names()) or 'none'}"
            )

    @classmethod
    def names(cls) -> List[str]:
        return sorted(cls._factories)

    @classmethod
    def unregister(cls, name: str) -> None:
        key = name.lower()
        cls._factories.pop(key, None)
        for alias in [a for a, target in cls._aliases.items() if target == key]:
            del cls._aliases[alias]


class ModelRegistry:
    """
    Connection-local model registry.

    Supports:
    - register(model, definition)
    - resolve(model_or_name) → model class
    - get(model_or_name) → ModelDefinition
    """

    def __init__(self):
        self.models: Dict[str, Type] = {}
        self.definitions: Dict[str, ModelDefinition] = {}

    def register(self, model: Type, definition: ModelDefinition) -> None:
        self.models[definition.name] = model
        self.definitions[definition.name] = definition

    def resolve(self, model: Union[Type, str]) -> Type:
        """
        Resolve model class from:
        - class
        - model name string
        """
        if isinstance(model, type):
            name = getattr(model, "model_name", None)
            if name in self.models and self.models[name] is model:
                return model
            raise ModelNotRegisteredError(f"Model not registered: {model.__name__}")

        if isinstance(model, str):
            try:
                return self.models[model]
            except KeyError:
                raise ModelNotRegisteredError(f"Model not registered: '{model}'")

        raise TypeError(f"Invalid model reference {model!r}. Must be class or model name.")

    def get(self, model: Union[Type, str]) -> ModelDefinition:
        model_cls = self.resolve(model)
        return self.definitions[model_cls.model_name]

    def __contains__(self, name: str) -> bool:
        return name in self.models
