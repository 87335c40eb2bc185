"""Tests for Connection: model registration, events, deferral and connect retries."""

from __future__ import annotations

import time

import pytest

from polyorm import (
    AdapterRegistry,
    Connection,
    ConnectionError,
    DriverNotInstalledError,
    Entity,
    OperationNotSupportedError,
    UnknownBackendError,
)
from polyorm.adapters import MemoryAdapter

from conftest import define_user


class FlakyAdapter(MemoryAdapter):
    """Memory adapter whose connect fails a configurable number of times."""

    name = "flaky"
    failures = 0
    attempts = 0
    error = OSError

    async def _connect(self) -> None:
        type(self).attempts += 1
        if type(self).attempts <= type(self).failures:
            raise type(self).error("backend unavailable")


@pytest.fixture
def flaky():
    AdapterRegistry.register("flaky", FlakyAdapter)
    FlakyAdapter.failures = 0
    FlakyAdapter.attempts = 0
    FlakyAdapter.error = OSError
    yield FlakyAdapter
    AdapterRegistry.unregister("flaky")


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_unknown_backend(self):
        with pytest.raises(UnknownBackendError):
            Connection(driver="cassandra")

    def test_unknown_backend_is_a_connection_error(self):
        with pytest.raises(ConnectionError):
            Connection(driver="")

    def test_driver_aliases(self):
        assert Connection(driver="sqlite3").adapter.name == "sqlite"
        assert Connection(driver="PG").adapter.name == "postgresql"
        assert Connection(driver="mongo").adapter.name == "mongodb"

    def test_unknown_overrides_land_in_options(self):
        conn = Connection(driver="memory", pool_size=3)
        assert conn.settings.options == {"pool_size": 3}

    def test_repr(self):
        assert repr(Connection(driver="memory")) == "Connection(driver='memory', connected=False)"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestModels:
    def test_define_model_synthesizes_primary_key(self, idle_conn):
        User = define_user(idle_conn)
        definition = User.definition()
        assert definition.primary_key_names == ["id"]
        assert definition.fields["id"].type == "number"
        assert definition.field_names[0] == "id"
        assert idle_conn.models["User"] is User
        assert User.model_name == "User"

    def test_options_override_metadata(self, idle_conn):
        User = define_user(idle_conn, name="Person", table="people")
        assert User.model_name == "Person"
        assert User.definition().table == "people"
        assert "Person" in idle_conn.definitions

    def test_declared_primary_key(self, idle_conn):
        class Country(Entity):
            __polyorm__ = {
                "fields": {"code": "string", "name": "string"},
                "primary_keys": ["code"],
            }

        idle_conn.define_model(Country)
        definition = Country.definition()
        assert definition.primary_key_names == ["code"]
        assert "id" not in definition.fields

    def test_model_decorator(self, idle_conn):
        @idle_conn.model
        class Tag(Entity):
            __polyorm__ = {"fields": {"label": "string"}}

        @idle_conn.model(table="categories")
        class Category(Entity):
            __polyorm__ = {"fields": {"label": "string"}}

        assert Tag.model_name == "Tag"
        assert Category.definition().table == "categories"

    def test_extend_model_adds_fields_only_once(self, idle_conn):
        User = define_user(idle_conn)
        idle_conn.extend_model("User", {"nickname": "string", "name": "number"})
        assert User.definition().fields["nickname"].type == "string"
        assert User.definition().fields["name"].type == "string"
        assert User({"nickname": "Al"}).get("nickname") == "Al"

    def test_define_property(self, idle_conn):
        User = define_user(idle_conn)
        User.define_property("score", {"type": "number", "default": 0})
        assert User().get("score") == 0

    def test_define_foreign_key_uses_identifier_kind(self, idle_conn):
        User = define_user(idle_conn)
        User.define_foreign_key("team_id")
        assert User.field_type_name("team_id") == "number"
        User.define_foreign_key("team_id")
        assert User.field_type_name("missing") == ""


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEvents:
    def test_on_emit_off(self, idle_conn):
        seen = []
        listener = idle_conn.on("custom", lambda *args: seen.append(args))
        assert idle_conn.emit("custom", 1, 2)
        idle_conn.off("custom", listener)
        assert not idle_conn.emit("custom", 3)
        assert seen == [(1, 2)]

    def test_once(self, idle_conn):
        seen = []
        idle_conn.once("custom", lambda: seen.append("x"))
        idle_conn.emit("custom")
        idle_conn.emit("custom")
        assert seen == ["x"]

    def test_listener_failure_does_not_stop_others(self, idle_conn):
        seen = []

        def broken():
            raise RuntimeError("boom")

        idle_conn.on("custom", broken)
        idle_conn.on("custom", lambda: seen.append("ok"))
        idle_conn.emit("custom")
        assert seen == ["ok"]

    async def test_lifecycle_events(self, idle_conn):
        seen = []
        idle_conn.on("connected", lambda: seen.append("connected"))
        idle_conn.on("disconnected", lambda: seen.append("disconnected"))
        async with idle_conn as conn:
            assert conn.connected
        assert not idle_conn.connected
        assert seen == ["connected", "disconnected"]

    def test_log_event(self, idle_conn):
        logged = []
        idle_conn.on("log", lambda statement, duration: logged.append((statement, duration)))
        idle_conn.log("SELECT 1", time.perf_counter())
        idle_conn.log("PING")
        assert logged[0][0] == "SELECT 1"
        assert logged[0][1] >= 0
        assert logged[1] == ("PING", None)


# ---------------------------------------------------------------------------
# Deferred dispatch
# ---------------------------------------------------------------------------


class TestDeferral:
    async def test_operations_before_connect_replay_once(self, idle_conn):
        User = define_user(idle_conn)

        assert await User.create({"name": "Al"}) is None
        assert await User.count() is None

        await idle_conn.connect()
        await idle_conn.flush()
        assert await User.count() == 1

        # a second connected event must not replay again
        idle_conn.emit("connected")
        await idle_conn.flush()
        assert await User.count() == 1

    async def test_instance_save_is_deferred(self, idle_conn):
        User = define_user(idle_conn)
        user = User({"name": "Al"})
        assert await user.save() is None

        await idle_conn.connect()
        await idle_conn.flush()
        assert user.get("id") == 1

    async def test_failed_replay_is_logged_not_raised(self, idle_conn):
        User = define_user(idle_conn)
        await User.update({"where": {"name": {"bogus": 1}}}, {"age": 1})
        await idle_conn.connect()
        await idle_conn.flush()
        assert not idle_conn._deferred

    async def test_disconnect_flushes(self, idle_conn):
        User = define_user(idle_conn)
        await User.create({"name": "Al"})
        await idle_conn.connect()
        await idle_conn.disconnect()
        assert await idle_conn.adapter.count("User") == 1


# ---------------------------------------------------------------------------
# Connect retries
# ---------------------------------------------------------------------------


class TestConnect:
    async def test_retries_transient_failures(self, flaky):
        flaky.failures = 1
        conn = Connection(driver="flaky", connect_retries=2)
        await conn.connect()
        assert conn.connected
        assert flaky.attempts == 2
        await conn.disconnect()

    async def test_gives_up_with_connection_error(self, flaky):
        flaky.failures = 5
        errors = []
        conn = Connection(driver="flaky", connect_retries=1)
        conn.on("error", errors.append)
        with pytest.raises(ConnectionError):
            await conn.connect()
        assert not conn.connected
        assert len(errors) == 1

    async def test_missing_driver_is_not_retried(self, flaky):
        flaky.failures = 5
        flaky.error = DriverNotInstalledError
        conn = Connection(driver="flaky", connect_retries=3)
        with pytest.raises(DriverNotInstalledError):
            await conn.connect()
        assert flaky.attempts == 1

    async def test_connect_is_idempotent(self, flaky):
        conn = Connection(driver="flaky")
        await conn.connect()
        await conn.connect()
        assert flaky.attempts == 1
        await conn.disconnect()


# ---------------------------------------------------------------------------
# Schema operations and metrics
# ---------------------------------------------------------------------------


class TestSchemaAndMetrics:
    async def test_schema_operations_unsupported_on_memory(self, memory_conn):
        with pytest.raises(OperationNotSupportedError):
            await memory_conn.automigrate()
        with pytest.raises(OperationNotSupportedError):
            await memory_conn.is_actual()

    async def test_metrics_collected_per_operation(self):
        conn = Connection(driver="memory", enable_monitoring=True)
        User = define_user(conn)
        await conn.connect()

        await User.create({"name": "Al"})
        await User.create({"name": "Bo"})
        await User.find()

        finds = conn.metrics.get_metrics(operation="find")
        assert len(finds) == 1
        assert finds[0].rows_affected == 2
        assert finds[0].model == "User"

        summary = conn.metrics.aggregate(model="User")
        assert summary.total_queries == 3
        assert summary.queries_by_operation == {"create": 2, "find": 1}
        await conn.disconnect()

    def test_metrics_disabled_by_default(self, idle_conn):
        assert idle_conn.metrics is None


class TestMetricsCollector:
    def test_bounded_history_and_hooks(self):
        from polyorm.monitoring import MetricsCollector, PerformanceMonitor

        seen = []
        collector = MetricsCollector(max_entries=2)
        collector.register_hook(seen.append)
        for operation in ("create", "find", "count"):
            with PerformanceMonitor(collector, operation, "User"):
                pass

        assert len(collector) == 2
        assert [m.operation for m in collector.get_metrics()] == ["find", "count"]
        assert len(seen) == 3

    def test_failures_are_recorded(self):
        from polyorm.monitoring import MetricsCollector, PerformanceMonitor

        collector = MetricsCollector()
        with pytest.raises(ValueError):
            with PerformanceMonitor(collector, "update", "User"):
                raise ValueError("bad")

        (metric,) = collector.get_metrics()
        assert not metric.success
        assert metric.error == "bad"
        assert collector.aggregate().failed_queries == 1

    def test_clear_old_metrics(self):
        from datetime import timedelta

        from polyorm.monitoring import MetricsCollector, QueryMetrics, _utcnow

        collector = MetricsCollector()
        collector.record(QueryMetrics("find", "User", 1.0, True, timestamp=_utcnow() - timedelta(hours=2)))
        collector.record(QueryMetrics("find", "User", 1.0, True))
        collector.clear_old_metrics(timedelta(hours=1))
        assert len(collector) == 1
