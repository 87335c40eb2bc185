# src/polyorm/connection.py
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Type

from tenacity import AsyncRetrying, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from .errors import ConnectionError, DriverNotInstalledError, OperationNotSupportedError
from .factory import ConnectionSettings, create_adapter
from .models import FieldSpec, ModelDefinition
from .monitoring import MetricsCollector, PerformanceMonitor
from .registry import ModelRegistry
from .utils import setup_logger

Listener = Callable[..., Any]


class Connection:
    """
    Owns one adapter and the models defined on it.

    Operations issued by entities before ``connect()`` completes are queued
    and replayed once the ``connected`` event fires.

    Events:
    - connected
    - disconnected
    - error(exc)
    - log(statement, duration_ms)
    """

    def __init__(
        self,
        settings: Optional[ConnectionSettings] = None,
        *,
        enable_monitoring: bool = False,
        **overrides: Any,
    ):
        self.logger = setup_logger(__name__)

        if settings is None:
            settings = ConnectionSettings() if "driver" in overrides else ConnectionSettings.from_env()
        self.settings = settings.merged(**overrides) if overrides else settings

        self.registry = ModelRegistry()
        self.connected = False
        self.metrics: Optional[MetricsCollector] = MetricsCollector() if enable_monitoring else None

        self._listeners: Dict[str, List[Listener]] = {}
        self._once: Set[int] = set()
        self._deferred: Set[asyncio.Future] = set()

        # raises UnknownBackendError for unregistered drivers
        self.adapter = create_adapter(self.settings, self)

    def __repr__(self) -> str:
        return f"Connection(driver={self.adapter.name!r}, connected={self.connected})"

    @property
    def models(self) -> Dict[str, Type]:
        return self.registry.models

    @property
    def definitions(self) -> Dict[str, ModelDefinition]:
        return self.registry.definitions

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, listener: Listener) -> Listener:
        self._listeners.setdefault(event, []).append(listener)
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        self.on(event, listener)
        self._once.add(id(listener))
        return listener

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)
            self._once.discard(id(listener))

    def emit(self, event: str, *args: Any) -> bool:
        """Call listeners in registration order; returns False when nobody listened."""
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            if id(listener) in self._once:
                self.off(event, listener)
            try:
                listener(*args)
            except Exception as e:
                self.logger.error(f"Listener for '{event}' failed: {e}")
        return bool(listeners)

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def define_model(self, model: Type, **options: Any) -> Type:
        """Register an entity class; ``options`` override its ``__polyorm__`` metadata."""
        meta = {**(getattr(model, "__polyorm__", None) or {}), **options}
        definition = ModelDefinition.from_meta(model, meta)
        definition.ensure_primary_key(self.adapter.identifier_kind)

        model.connection = self
        model.model_name = definition.name
        self.registry.register(model, definition)
        self.adapter.define(definition)

        self.logger.debug(
            f"Model defined: {definition.name} ({', '.join(definition.field_names)}) "
            f"pk={definition.primary_key_names}"
        )
        return model

    def model(self, cls: Optional[Type] = None, **options: Any):
        """
        Decorator form of define_model.

        Usage:
            @conn.model
            class User(Entity): ...

            @conn.model(table="people")
            class Person(Entity): ...
        """
        if cls is not None:
            return self.define_model(cls, **options)

        def decorator(target: Type) -> Type:
            return self.define_model(target, **options)

        return decorator

    def extend_model(self, model_name: str, fields: Mapping[str, Any]) -> None:
        """Add fields to a defined model; existing fields are left untouched."""
        definition = self.definitions[model_name]
        for name, spec in fields.items():
            if definition.has_field(name):
                continue
            self.adapter.define_property(model_name, name, FieldSpec.from_value(spec))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self.connected:
            return

        retries = max(1, self.settings.connect_retries)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(retries),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=6),
                retry=retry_if_not_exception_type(DriverNotInstalledError),
                reraise=True,
            ):
                with attempt:
                    await self.adapter.connect()
        except DriverNotInstalledError as e:
            self.logger.error(str(e))
            self.emit("error", e)
            raise
        except Exception as e:
            self.logger.error(f"Connect to {self.adapter.name} failed: {e}")
            self.emit("error", e)
            raise ConnectionError(f"Failed to connect to {self.adapter.name}: {str(e)}") from e

        self.connected = True
        self.logger.info(f"Connected: {self.adapter.name}")
        self.emit("connected")

    async def disconnect(self) -> None:
        await self.flush()
        self.connected = False
        await self.adapter.disconnect()
        self.emit("disconnected")

    async def __aenter__(self) -> Connection:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Deferred dispatch
    # ------------------------------------------------------------------

    def defer(self, operation: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Re-run ``operation(*args)`` once, when ``connected`` fires."""
        name = getattr(operation, "__qualname__", repr(operation))
        self.logger.debug(f"Deferring {name} until connected")

        def replay() -> None:
            task = asyncio.ensure_future(operation(*args))
            self._deferred.add(task)
            task.add_done_callback(lambda t: self._deferred_done(name, t))

        self.once("connected", replay)

    def _deferred_done(self, name: str, task: asyncio.Future) -> None:
        self._deferred.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Deferred {name} failed: {task.exception()}")

    async def flush(self) -> None:
        """Wait for every replayed operation; failures were already logged."""
        while self._deferred:
            await asyncio.gather(*list(self._deferred), return_exceptions=True)

    # ------------------------------------------------------------------
    # Adapter plumbing
    # ------------------------------------------------------------------

    def log(self, statement: str, started: Optional[float] = None) -> None:
        duration_ms = (time.perf_counter() - started) * 1000 if started is not None else None
        self.logger.debug(statement if duration_ms is None else f"{statement} ({duration_ms:.2f}ms)")
        self.emit("log", statement, duration_ms)

    async def execute(self, operation: str, model_name: str, awaitable: Awaitable[Any]) -> Any:
        """Await one adapter call, timing it when monitoring is enabled."""
        if self.metrics is None:
            return await awaitable
        with PerformanceMonitor(self.metrics, operation, model_name) as monitor:
            result = await awaitable
            if isinstance(result, list):
                monitor.rows_affected = len(result)
            return result

    async def _schema(self, method: str) -> Any:
        call = getattr(self.adapter, method, None)
        if call is None:
            raise OperationNotSupportedError(f"{self.adapter.name} adapter does not support {method}")
        try:
            return await call()
        except Exception as e:
            self.emit("error", e)
            raise

    async def automigrate(self) -> None:
        """Drop and recreate every model's table. Existing data is lost."""
        await self._schema("automigrate")

    async def autoupdate(self) -> None:
        await self._schema("autoupdate")

    async def is_actual(self) -> bool:
        return await self._schema("is_actual")
