# examples/complete_usage.py
"""
Complete PolyORM usage example: models, validation, hooks, queries, relations
"""

import asyncio

from polyorm import Connection, Entity, hook


# 1. Initialize connection (POLYORM_DRIVER / SQLITE_PATH / DATABASE_URL / MONGODB_URI also work)
conn = Connection(driver="sqlite", database=":memory:", enable_monitoring=True)


# 2. Define models
@conn.model
class Post(Entity):
    __polyorm__ = {
        "fields": {
            "title": {"type": "string", "index": True},
            "published": {"type": "boolean", "default": False},
            "author_id": "number",
        },
    }


@conn.model
class Author(Entity):
    __polyorm__ = {
        "table": "authors",
        "fields": {
            "name": "string",
            "email": {"type": "string", "unique": True},
            "age": "number",
            "tags": {"type": "array", "default": list},
        },
        "validations": [
            ("name", "presence"),
            ("email", "format", {"with": r"^[^@]+@[^@]+$"}),
            ("age", "numericality", {"int": True, "min": 0, "allow_null": True}),
        ],
        "relations": {
            "posts": {"kind": "one_to_many", "model": "Post"},
        },
    }

    @hook("before_create")
    def announce(target):
        print(f"creating a {target.__name__}")


# 3. Log every statement
conn.on("log", lambda statement, duration: print(f"  [sql] {statement}"))


async def main():
    # Operations issued before connect are replayed once connected
    pending = await Author.create({"name": "Early", "email": "early@example.com"})
    print("Before connect:", pending)

    await conn.connect()
    await conn.flush()

    # 4. Create with validation
    ann = await Author.create({"name": "Ann", "email": "ann@example.com", "age": 34})
    bad = await Author.create({"name": "", "email": "nope", "age": -1})
    print("Created:", ann.to_json())
    print("Rejected:", [e.to_dict() for e in bad.errors])

    # 5. Query
    adults = await Author.find({"where": {"age": {"gte": 18}}, "order": "name ASC"})
    print("Adults:", [a.get("name") for a in adults])

    early = await Author.where("email").like("^early").exec()
    print("Matched:", [a.get("name") for a in early])

    # 6. Dirty tracking and save
    ann.set("age", 35)
    print("Changes:", ann.changes())
    await ann.save()

    # 7. Relations
    posts = ann.related("posts")
    await posts.create({"title": "Hello"})
    await posts.create({"title": "Again", "published": True})
    print("Published:", [p.get("title") for p in await posts.find({"where": {"published": True}})])
    print("Embedded:", await posts())

    # 8. Bulk update and remove
    await Author.update({"where": {"name": "Early"}}, {"tags": ["backfilled"]})
    await Author.remove({"where": {"name": "Early"}})
    print("Authors left:", await Author.count())

    # 9. Metrics
    summary = conn.metrics.aggregate()
    print(f"Calls: {summary.total_queries}, avg {summary.avg_duration_ms:.2f}ms")

    await conn.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
