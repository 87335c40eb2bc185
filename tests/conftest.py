"""Shared fixtures: fresh connections and model factories per test."""

from __future__ import annotations

import pytest

from polyorm import Connection, Entity


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


def define_user(conn: Connection, **options):
    """User{name, age >= 0, email, active=True, tags: array}."""

    class User(Entity):
        __polyorm__ = {
            "fields": {
                "name": "string",
                "age": "number",
                "email": "string",
                "active": {"type": "boolean", "default": True},
                "tags": {"type": "array", "default": list},
            },
            "validations": [
                ("age", "numericality", {"min": 0, "allow_null": True}),
            ],
        }

    return conn.define_model(User, **options)


def define_author_and_posts(conn: Connection):
    class Post(Entity):
        __polyorm__ = {
            "fields": {"title": "string", "published": "boolean"},
        }

    class Author(Entity):
        __polyorm__ = {
            "fields": {"name": "string"},
            "relations": {
                "posts": {"kind": "one_to_many", "model": "Post"},
                "profile": {"kind": "one_to_one", "model": "Profile"},
            },
        }

    class Profile(Entity):
        __polyorm__ = {
            "fields": {"bio": "text"},
        }

    conn.define_model(Post)
    conn.define_model(Author)
    conn.define_model(Profile)
    return Author, Post, Profile


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


@pytest.fixture
async def memory_conn():
    """Connected in-memory connection."""
    conn = Connection(driver="memory")
    await conn.connect()
    yield conn
    await conn.disconnect()


@pytest.fixture
async def idle_conn():
    """In-memory connection that has not connected yet."""
    conn = Connection(driver="memory")
    yield conn
    if conn.connected:
        await conn.disconnect()


@pytest.fixture
async def sqlite_conn():
    """aiosqlite :memory: connection; define models, then call connect()."""
    conn = Connection(driver="sqlite", database=":memory:")
    yield conn
    if conn.connected:
        await conn.disconnect()
