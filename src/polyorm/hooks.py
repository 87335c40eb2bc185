# src/polyorm/hooks.py
"""
Lifecycle hook kinds and per-model dispatch table
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Set

logger = logging.getLogger(__name__)

HookFn = Callable[..., Any]


class Hook(Enum):
    BEFORE_INITIALIZE = "before_initialize"
    AFTER_INITIALIZE = "after_initialize"
    BEFORE_VALIDATE = "before_validate"
    AFTER_VALIDATE = "after_validate"
    BEFORE_SAVE = "before_save"
    AFTER_SAVE = "after_save"
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_REMOVE = "before_remove"
    AFTER_REMOVE = "after_remove"

    @classmethod
    def parse(cls, value: Any) -> Hook:
        """Accept a Hook, 'before_create' or 'beforeCreate'."""
        if isinstance(value, Hook):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid hook reference {value!r}")
        text = value.lower() if value.isupper() else value
        snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in text).lstrip("_")
        try:
            return cls(snake)
        except ValueError:
            raise ValueError(f"Unknown hook '{value}'. Valid hooks: {[h.value for h in cls]}")


class HookTable:
    """Maps each Hook to at most one callback.

    Before hooks receive ``(target)`` and may be coroutines; they finish before
    the operation starts. After hooks receive ``(target, result)``; they are
    called once the result is known and are never awaited.
    """

    def __init__(self, callbacks: Optional[Mapping[Any, HookFn]] = None):
        self._callbacks: Dict[Hook, HookFn] = {}
        self._pending: Set[asyncio.Future] = set()
        for kind, fn in (callbacks or {}).items():
            self.register(kind, fn)

    def register(self, kind: Any, fn: HookFn) -> None:
        if not callable(fn):
            raise TypeError(f"Hook {kind} must be callable")
        self._callbacks[Hook.parse(kind)] = fn

    def get(self, kind: Hook) -> Optional[HookFn]:
        return self._callbacks.get(kind)

    def __contains__(self, kind: Hook) -> bool:
        return kind in self._callbacks

    def __len__(self) -> int:
        return len(self._callbacks)

    async def run_before(self, kind: Hook, target: Any) -> None:
        fn = self._callbacks.get(kind)
        if fn is None:
            return
        result = fn(target)
        if inspect.isawaitable(result):
            await result

    def run_before_sync(self, kind: Hook, target: Any) -> None:
        """Before hook for synchronous steps (construction)."""
        fn = self._callbacks.get(kind)
        if fn is None:
            return
        self._detach(kind, fn(target))

    def run_after(self, kind: Hook, target: Any, result: Any = None) -> None:
        fn = self._callbacks.get(kind)
        if fn is None:
            return
        try:
            outcome = fn(target, result)
        except Exception as e:
            logger.error(f"Hook {kind.value} failed: {e}", exc_info=True)
            return
        self._detach(kind, outcome)

    def _detach(self, kind: Hook, outcome: Any) -> None:
        if not inspect.isawaitable(outcome):
            return
        future = asyncio.ensure_future(outcome)
        self._pending.add(future)

        def _done(fut: asyncio.Future) -> None:
            self._pending.discard(fut)
            if not fut.cancelled() and fut.exception() is not None:
                logger.error(f"Hook {kind.value} failed: {fut.exception()}")

        future.add_done_callback(_done)
