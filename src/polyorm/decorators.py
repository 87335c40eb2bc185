# src/polyorm/decorators.py
from __future__ import annotations

from typing import Any, Callable, TypeVar

from .hooks import Hook
from .registry import AdapterRegistry

T = TypeVar("T", bound=type)
F = TypeVar("F", bound=Callable[..., Any])


def backend(name: str, *aliases: str) -> Callable[[T], T]:
    """
    Register an adapter class under a driver name at import time.

    Usage:
        @backend("sqlite", "sqlite3")
        class SQLiteAdapter(SQLAdapter):
            ...
    """

    def decorator(cls: T) -> T:
        AdapterRegistry.register(name, cls, aliases)
        return cls

    return decorator


def hook(kind: Any) -> Callable[[F], F]:
    """
    Mark an entity method as a lifecycle hook.

    Usage:
        class User(Entity):
            @hook(Hook.BEFORE_CREATE)
            def stamp(target):
                ...
    """
    parsed = Hook.parse(kind)

    def decorator(fn: F) -> F:
        fn.__polyorm_hook__ = parsed  # type: ignore[attr-defined]
        return fn

    return decorator
