"""Tests for ConnectionSettings, environment detection and the backend registry."""

from __future__ import annotations

import pytest

from polyorm import AdapterRegistry, Connection, ConnectionSettings, UnknownBackendError, backend
from polyorm.adapters import MemoryAdapter, SQLiteAdapter

_ENV = [
    "POLYORM_DRIVER",
    "POLYORM_URL",
    "POLYORM_HOST",
    "POLYORM_PORT",
    "POLYORM_DATABASE",
    "POLYORM_USERNAME",
    "POLYORM_PASSWORD",
    "POLYORM_CONNECT_RETRIES",
    "MONGODB_URI",
    "POSTGRES_CONNECTION_STRING",
    "POSTGRES_URL",
    "DATABASE_URL",
    "SQLITE_PATH",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


class TestFromEnv:
    def test_defaults_to_memory(self, clean_env):
        settings = ConnectionSettings.from_env()
        assert settings.driver == "memory"
        assert settings.connect_retries == 3
        assert Connection().adapter.name == "memory"

    def test_explicit_values(self, clean_env):
        clean_env.setenv("POLYORM_DRIVER", "postgresql")
        clean_env.setenv("POLYORM_HOST", "db")
        clean_env.setenv("POLYORM_PORT", "5433")
        clean_env.setenv("POLYORM_DATABASE", "app")
        clean_env.setenv("POLYORM_CONNECT_RETRIES", "1")
        settings = ConnectionSettings.from_env()
        assert (settings.driver, settings.host, settings.port, settings.database) == (
            "postgresql",
            "db",
            5433,
            "app",
        )
        assert settings.connect_retries == 1

    def test_custom_prefix(self, clean_env):
        clean_env.setenv("APP_DRIVER", "sqlite")
        assert ConnectionSettings.from_env(prefix="APP_").driver == "sqlite"

    @pytest.mark.parametrize(
        "var,driver",
        [
            ("MONGODB_URI", "mongodb"),
            ("POSTGRES_CONNECTION_STRING", "postgresql"),
            ("POSTGRES_URL", "postgresql"),
            ("DATABASE_URL", "postgresql"),
        ],
    )
    def test_driver_detection(self, clean_env, var, driver):
        clean_env.setenv(var, "x")
        assert ConnectionSettings.from_env().driver == driver

    def test_sqlite_path_detection(self, clean_env):
        clean_env.setenv("SQLITE_PATH", "/tmp/app.db")
        settings = ConnectionSettings.from_env()
        assert settings.driver == "sqlite"
        assert settings.database == "/tmp/app.db"

    def test_mongo_wins_over_sql(self, clean_env):
        clean_env.setenv("DATABASE_URL", "postgresql://x")
        clean_env.setenv("MONGODB_URI", "mongodb://x")
        assert ConnectionSettings.from_env().driver == "mongodb"


# ---------------------------------------------------------------------------
# Settings objects
# ---------------------------------------------------------------------------


class TestSettings:
    def test_merged_copies(self):
        base = ConnectionSettings(driver="sqlite", database="a.db")
        merged = base.merged(database="b.db", journal="wal")
        assert merged.database == "b.db"
        assert merged.options == {"journal": "wal"}
        assert base.database == "a.db"
        assert base.options == {}

    def test_sqlite_database_resolution(self, clean_env):
        assert SQLiteAdapter(ConnectionSettings(driver="sqlite")).database == ":memory:"
        clean_env.setenv("SQLITE_PATH", "env.db")
        assert SQLiteAdapter(ConnectionSettings(driver="sqlite")).database == "env.db"
        assert SQLiteAdapter(ConnectionSettings(driver="sqlite", database="x.db")).database == "x.db"

    def test_connection_accepts_settings_object(self):
        conn = Connection(ConnectionSettings(driver="sqlite"), database="y.db")
        assert conn.adapter.database == "y.db"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestAdapterRegistry:
    def test_builtin_backends(self):
        assert {"memory", "sqlite", "postgresql", "mongodb"} <= set(AdapterRegistry.names())
        assert AdapterRegistry.resolve("Memory") is MemoryAdapter

    def test_unknown(self):
        with pytest.raises(UnknownBackendError, match="Registered backends"):
            AdapterRegistry.resolve("oracle")

    def test_backend_decorator_registers_aliases(self):
        @backend("scratch", "tmp")
        class ScratchAdapter(MemoryAdapter):
            name = "scratch"

        try:
            assert AdapterRegistry.resolve("TMP") is ScratchAdapter
            assert Connection(driver="tmp").adapter.name == "scratch"
        finally:
            AdapterRegistry.unregister("scratch")

        with pytest.raises(UnknownBackendError):
            AdapterRegistry.resolve("tmp")
