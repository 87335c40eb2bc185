"""Tests for one-to-one and one-to-many relation accessors."""

from __future__ import annotations

import pytest

from polyorm import Connection, Entity, ModelNotRegisteredError, Relation, RelationKind

from conftest import define_author_and_posts


@pytest.fixture
async def library(memory_conn):
    Author, Post, Profile = define_author_and_posts(memory_conn)
    ann = await Author.create({"name": "Ann"})
    bob = await Author.create({"name": "Bob"})
    return Author, Post, Profile, ann, bob


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


class TestRelationDefinitions:
    def test_default_foreign_keys(self, idle_conn):
        Author, _, _ = define_author_and_posts(idle_conn)
        relations = Author.definition().relations
        assert relations["posts"] == Relation("posts", RelationKind.ONE_TO_MANY, "Post", "author_id")
        assert relations["profile"] == Relation("profile", RelationKind.ONE_TO_ONE, "Profile", "profile_id")

    def test_foreign_key_added_on_first_use(self, idle_conn):
        Author, Post, _ = define_author_and_posts(idle_conn)
        assert not Post.definition().has_field("author_id")
        Author({"id": 1}).related("posts")
        assert Post.field_type_name("author_id") == "number"

    def test_unknown_relation(self, idle_conn):
        Author, _, _ = define_author_and_posts(idle_conn)
        with pytest.raises(KeyError):
            Author().related("comments")

    def test_undefined_target(self):
        conn = Connection(driver="memory")

        class Lonely(Entity):
            __polyorm__ = {
                "fields": {"name": "string"},
                "relations": {"friends": {"kind": "one_to_many", "model": "Friend"}},
            }

        conn.define_model(Lonely)
        with pytest.raises(ModelNotRegisteredError):
            Lonely().related("friends")


# ---------------------------------------------------------------------------
# One to many
# ---------------------------------------------------------------------------


class TestOneToMany:
    async def test_create_sets_foreign_key(self, library):
        _, Post, _, ann, _ = library
        post = await ann.related("posts").create({"title": "Hello"})
        assert post.get("author_id") == ann.get("id")
        assert await Post.count() == 1

    async def test_find_is_scoped_to_owner(self, library):
        _, _, _, ann, bob = library
        await ann.related("posts").create({"title": "a1"})
        await ann.related("posts").create({"title": "a2", "published": True})
        await bob.related("posts").create({"title": "b1"})

        titles = [p.get("title") for p in await ann.related("posts").find()]
        assert titles == ["a1", "a2"]

        published = await ann.related("posts").find({"where": {"published": True}})
        assert [p.get("title") for p in published] == ["a2"]

    async def test_owner_foreign_key_wins(self, library):
        _, _, _, ann, bob = library
        await bob.related("posts").create({"title": "b1"})
        found = await ann.related("posts").find({"where": {"author_id": bob.get("id")}})
        assert found == []

    async def test_update_and_remove_are_scoped(self, library):
        _, Post, _, ann, bob = library
        await ann.related("posts").create({"title": "a1"})
        await bob.related("posts").create({"title": "b1"})

        updated = await ann.related("posts").update(None, {"published": True})
        assert [p.get("title") for p in updated] == ["a1"]

        assert await ann.related("posts").remove()
        remaining = await Post.find()
        assert [p.get("title") for p in remaining] == ["b1"]

    async def test_call_with_data_builds_unsaved_instance(self, library):
        _, Post, _, ann, _ = library
        post = ann.related("posts")({"title": "draft"})
        assert isinstance(post, Post)
        assert post.get("author_id") == ann.get("id")
        assert post.get("id") is None
        assert await Post.count() == 0

    async def test_call_without_data_embeds_related(self, library):
        _, _, _, ann, _ = library
        await ann.related("posts").create({"title": "a1"})
        result = await ann.related("posts")()
        assert result["name"] == "Ann"
        assert [p["title"] for p in result["posts"]] == ["a1"]


# ---------------------------------------------------------------------------
# One to one
# ---------------------------------------------------------------------------


class TestOneToOne:
    async def test_create_links_owner(self, library):
        Author, _, Profile, ann, _ = library
        profile = await ann.related("profile")({"bio": "writer"})
        assert profile.get("id") is not None
        assert ann.get("profile_id") == profile.get("id")

        await ann.save()
        stored = await Author.find_by_id(ann.get("id"))
        assert stored.get("profile_id") == profile.get("id")

    async def test_fetch(self, library):
        _, _, _, ann, bob = library
        created = await ann.related("profile")({"bio": "writer"})
        fetched = await ann.related("profile")()
        assert fetched.to_object() == created.to_object()
        assert await bob.related("profile")() is None
