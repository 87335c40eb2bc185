"""Condition -> SQL translation and DDL generation, without a live database."""

from __future__ import annotations

import pytest

from polyorm import Condition, Connection, ConnectionSettings, UnsafeIdentifierError
from polyorm.adapters import PostgreSQLAdapter
from polyorm.condition import parse_where
from polyorm.models import FieldSpec
from polyorm.schema import Dialect, SchemaBuilder, column_type

from conftest import define_user


@pytest.fixture
def sqlite_user():
    conn = Connection(driver="sqlite", database=":memory:")
    User = define_user(conn)
    return conn.adapter, User.definition()


@pytest.fixture
def pg_user():
    conn = Connection(driver="postgresql", url="postgresql://u:p@localhost/app")
    User = define_user(conn)
    return conn.adapter, User.definition()


def _compile(adapter, where):
    return adapter.compile_where(parse_where(where))


# ---------------------------------------------------------------------------
# WHERE
# ---------------------------------------------------------------------------


class TestCompileWhere:
    @pytest.mark.parametrize(
        "where,sql,params",
        [
            ({"email": None}, '"email" IS NULL', []),
            ({"email": "a"}, '"email" = ?', ["a"]),
            ({"age": {"ne": 5}}, '("age" IS NULL OR "age" <> ?)', [5]),
            ({"age": {"ne": None}}, '"age" IS NOT NULL', []),
            ({"age": {"gte": 5}}, '"age" >= ?', [5]),
            ({"age": {"lt": None}}, "1 = 0", []),
            ({"age": {"between": [1, 2]}}, '"age" BETWEEN ? AND ?', [1, 2]),
            ({"age": {"in": [1, None, 2]}}, '"age" IN (?, ?)', [1, 2]),
            ({"age": {"in": [None]}}, "1 = 0", []),
            ({"age": {"nin": []}}, "1 = 1", []),
            ({"age": {"nin": [1]}}, '("age" IS NULL OR "age" NOT IN (?))', [1]),
            ({"name": {"like": "^A"}}, '"name" REGEXP ?', ["^A"]),
            ({"name": {"nlike": "^A"}}, '("name" IS NULL OR NOT "name" REGEXP ?)', ["^A"]),
        ],
    )
    def test_predicates(self, sqlite_user, where, sql, params):
        adapter, _ = sqlite_user
        assert _compile(adapter, where) == (sql, params)

    def test_conjunction(self, sqlite_user):
        adapter, _ = sqlite_user
        sql, params = _compile(adapter, {"age": {"gt": 1, "lt": 9}, "name": "Al"})
        assert sql == '"age" > ? AND "age" < ? AND "name" = ?'
        assert params == [1, 9, "Al"]

    def test_disjunction(self, sqlite_user):
        adapter, _ = sqlite_user
        sql, params = _compile(adapter, {"or": [{"name": "Al"}, {"age": {"gt": 3}, "active": True}]})
        assert sql == '(("name" = ?) OR ("age" > ? AND "active" = ?))'
        assert params == ["Al", 3, True]

    def test_empty_disjunctions(self, sqlite_user):
        adapter, _ = sqlite_user
        assert _compile(adapter, {"or": []}) == ("1 = 0", [])
        assert _compile(adapter, {"or": [{}]}) == ("(1 = 1)", [])

    def test_empty_where(self, sqlite_user):
        adapter, _ = sqlite_user
        assert _compile(adapter, {}) == ("", [])

    def test_unsafe_column_rejected(self, sqlite_user):
        adapter, _ = sqlite_user
        with pytest.raises(UnsafeIdentifierError):
            _compile(adapter, {'name" OR 1=1 --': 1})

    def test_postgres_dialect(self, pg_user):
        adapter, _ = pg_user
        assert _compile(adapter, {"name": {"like": "^A"}}) == ('CAST("name" AS TEXT) ~ %s', ["^A"])
        assert _compile(adapter, {"age": {"in": [1, 2]}}) == ('"age" IN (%s, %s)', [1, 2])


# ---------------------------------------------------------------------------
# SELECT
# ---------------------------------------------------------------------------


class TestBuildSelect:
    def test_sqlite_select(self, sqlite_user):
        adapter, definition = sqlite_user
        condition = Condition.from_value(
            {"where": {"age": {"gt": 18}}, "order": "name DESC", "limit": 5, "skip": 10}
        )
        sql, params = adapter.build_select(definition, condition)
        assert sql == (
            'SELECT * FROM "User" WHERE "age" > ? ORDER BY "name" DESC, rowid LIMIT ? OFFSET ?'
        )
        assert params == [18, 5, 10]

    def test_sqlite_offset_without_limit(self, sqlite_user):
        adapter, definition = sqlite_user
        sql, params = adapter.build_select(definition, Condition.from_value({"skip": 2}))
        assert sql == 'SELECT * FROM "User" ORDER BY rowid LIMIT -1 OFFSET ?'
        assert params == [2]

    def test_projection_and_value_conversion(self, sqlite_user):
        adapter, definition = sqlite_user
        condition = Condition.from_value({"where": {"active": True}, "fields": "name"})
        sql, params = adapter.build_select(definition, condition)
        assert sql == 'SELECT "id", "name" FROM "User" WHERE "active" = ? ORDER BY rowid'
        assert params == [1]

    def test_postgres_select(self, pg_user):
        adapter, definition = pg_user
        condition = Condition.from_value({"order": {"age": 1, "name": -1}, "skip": 3})
        sql, params = adapter.build_select(definition, condition)
        assert sql == (
            'SELECT * FROM "User" ORDER BY "age" ASC NULLS FIRST, "name" DESC NULLS LAST, "id" OFFSET %s'
        )
        assert params == [3]

    def test_postgres_skips_default_order_when_key_named(self, pg_user):
        adapter, definition = pg_user
        sql, _ = adapter.build_select(definition, Condition.from_value({"order": "id DESC"}))
        assert sql == 'SELECT * FROM "User" ORDER BY "id" DESC NULLS LAST'

    def test_json_values_are_serialized(self, sqlite_user):
        adapter, _ = sqlite_user
        assert adapter.to_database("User", {"tags": ["a"]}) == {"tags": '["a"]'}
        assert adapter.from_database("User", {"tags": '["a"]', "active": 0}) == {
            "tags": ["a"],
            "active": False,
        }


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------


class TestSchemaBuilder:
    def test_sqlite_create_table(self, sqlite_user):
        _, definition = sqlite_user
        sql = SchemaBuilder.from_definition(definition, Dialect.SQLITE).to_create_table("User")
        assert sql.startswith('CREATE TABLE IF NOT EXISTS "User" (')
        assert '"id" INTEGER PRIMARY KEY AUTOINCREMENT' in sql
        assert '"tags" TEXT' in sql
        assert '"active" INTEGER' in sql
        assert "PRIMARY KEY (" not in sql

    def test_postgres_create_table(self, pg_user):
        _, definition = pg_user
        sql = SchemaBuilder.from_definition(definition, Dialect.POSTGRESQL).to_create_table("User")
        assert '"id" BIGSERIAL NOT NULL' in sql
        assert '"tags" JSONB' in sql
        assert '"age" DOUBLE PRECISION' in sql
        assert 'PRIMARY KEY ("id")' in sql

    def test_column_types(self):
        assert column_type(FieldSpec(type="number", precision=10, decimals=2), Dialect.POSTGRESQL) == "NUMERIC(10, 2)"
        assert column_type(FieldSpec(type="array"), Dialect.SQLITE) == "TEXT"
        assert column_type(FieldSpec(type="uuid"), Dialect.POSTGRESQL) == "UUID"

    def test_indexes_and_add_column(self, sqlite_user):
        _, definition = sqlite_user
        definition.fields["email"].unique = True
        definition.fields["name"].index = True
        builder = SchemaBuilder.from_definition(definition, Dialect.SQLITE)
        assert builder.to_create_indexes("User") == [
            'CREATE INDEX IF NOT EXISTS "idx_User_name" ON "User" ("name")'
        ]
        assert builder.to_add_column("User", "email") == 'ALTER TABLE "User" ADD COLUMN "email" TEXT UNIQUE'
        assert builder.to_add_column("User", "missing") is None


# ---------------------------------------------------------------------------
# PostgreSQL settings
# ---------------------------------------------------------------------------


class TestPostgresSettings:
    def test_url_wins(self):
        adapter = PostgreSQLAdapter(ConnectionSettings(driver="postgresql", url="postgresql://x/y", host="h"))
        assert adapter.connection_string == "postgresql://x/y"

    def test_dsn_from_parts(self):
        settings = ConnectionSettings(
            driver="postgresql", host="db", port=5433, database="app", username="u", password="p"
        )
        adapter = PostgreSQLAdapter(settings)
        assert adapter.connection_string == "host=db port=5433 dbname=app user=u password=p"

    def test_env_fallback(self, monkeypatch):
        monkeypatch.delenv("POSTGRES_CONNECTION_STRING", raising=False)
        monkeypatch.delenv("POSTGRES_URL", raising=False)
        monkeypatch.setenv("DATABASE_URL", "postgresql://env/db")
        adapter = PostgreSQLAdapter(ConnectionSettings(driver="postgresql"))
        assert adapter.connection_string == "postgresql://env/db"

    def test_construction_does_not_connect(self):
        adapter = PostgreSQLAdapter(ConnectionSettings(driver="postgresql"))
        assert adapter._pool is None
        assert not adapter.connected
