"""The same operations against the memory and SQLite backends return the same records."""

from __future__ import annotations

import datetime

import pytest

from polyorm import AdapterError, Connection, Entity

from conftest import define_user


def define_models(conn: Connection):
    """Event{title, at: date}, Task{title, status} and Code{code pk, name present}."""

    class Event(Entity):
        __polyorm__ = {"fields": {"title": "string", "at": "date"}}

    class Task(Entity):
        __polyorm__ = {"fields": {"title": "string", "status": "string"}}

    class Code(Entity):
        __polyorm__ = {
            "fields": {"code": "string", "name": "string"},
            "primary_keys": ["code"],
            "validations": [("name", "presence")],
        }

    for model in (Event, Task, Code):
        conn.define_model(model)
    return Event, Task, Code


@pytest.fixture(params=["memory", "sqlite"])
async def backend(request):
    options = {"database": ":memory:"} if request.param == "sqlite" else {}
    conn = Connection(driver=request.param, **options)
    User = define_user(conn)
    Event, Task, Code = define_models(conn)
    await conn.connect()
    yield {"User": User, "Event": Event, "Task": Task, "Code": Code}
    await conn.disconnect()


def _titles(entities):
    return [e.get("title") for e in entities]


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


class TestDates:
    async def _seed(self, Event):
        await Event.create({"title": "jan", "at": datetime.date(2024, 1, 1)})
        await Event.create({"title": "may", "at": datetime.datetime(2024, 5, 1, 12, 30)})

    async def test_date_value_compares_with_datetime_operand(self, backend):
        Event = backend["Event"]
        await self._seed(Event)
        found = await Event.find({"where": {"at": {"gte": datetime.datetime(2023, 12, 1)}}})
        assert _titles(found) == ["jan", "may"]

    async def test_datetime_value_compares_with_date_operand(self, backend):
        Event = backend["Event"]
        await self._seed(Event)
        found = await Event.find({"where": {"at": {"gt": datetime.date(2024, 2, 1)}}})
        assert _titles(found) == ["may"]

    async def test_between_dates(self, backend):
        Event = backend["Event"]
        await self._seed(Event)
        found = await Event.find(
            {"where": {"at": {"between": [datetime.date(2024, 1, 1), datetime.date(2024, 3, 1)]}}}
        )
        assert _titles(found) == ["jan"]

    async def test_dates_come_back_as_datetimes(self, backend):
        Event = backend["Event"]
        await self._seed(Event)
        found = await Event.find({"order": "at ASC"})
        assert [e.get("at") for e in found] == [
            datetime.datetime(2024, 1, 1),
            datetime.datetime(2024, 5, 1, 12, 30),
        ]

    async def test_equality_on_date(self, backend):
        Event = backend["Event"]
        await self._seed(Event)
        found = await Event.find({"where": {"at": datetime.date(2024, 1, 1)}})
        assert _titles(found) == ["jan"]


# ---------------------------------------------------------------------------
# Between and or
# ---------------------------------------------------------------------------


class TestScenarios:
    async def test_between_is_inclusive_in_insertion_order(self, backend):
        User = backend["User"]
        for name, age in [("Ed", 31), ("Al", 30), ("Bo", 12), ("Cy", 18), ("Di", None)]:
            await User.create({"name": name, "age": age})

        found = await User.find({"where": {"age": {"between": [18, 30]}}})
        assert [u.get("name") for u in found] == ["Al", "Cy"]

    async def test_or_matches_union(self, backend):
        Task = backend["Task"]
        for title, status in [("a", "active"), ("b", "done"), ("c", "pending"), ("d", None)]:
            await Task.create({"title": title, "status": status})

        found = await Task.find({"where": {"or": [{"status": "active"}, {"status": "pending"}]}})
        assert _titles(found) == ["a", "c"]

    async def test_textual_operand_matches_number(self, backend):
        User = backend["User"]
        await User.create({"name": "Al", "age": 30})
        await User.create({"name": "Bo", "age": 12})

        assert [u.get("name") for u in await User.find({"where": {"age": "30"}})] == ["Al"]
        assert [u.get("name") for u in await User.find({"where": {"age": {"like": "^1"}}})] == ["Bo"]


# ---------------------------------------------------------------------------
# Natural primary keys
# ---------------------------------------------------------------------------


class TestNaturalKeys:
    async def test_create_validates_data_with_its_key(self, backend):
        Code = backend["Code"]
        code = await Code.create({"code": "a", "name": ""})
        assert code.get("code") is None
        assert [e.field for e in code.errors] == ["name"]
        assert await Code.count() == 0

    async def test_key_change_onto_existing_key_fails(self, backend):
        Code = backend["Code"]
        await Code.create({"code": "a", "name": "A"})
        await Code.create({"code": "b", "name": "B"})

        with pytest.raises(AdapterError):
            await Code.update({"where": {"code": "a"}}, {"code": "b"})

        rows = await Code.find({"order": "code ASC"})
        assert [(c.get("code"), c.get("name")) for c in rows] == [("a", "A"), ("b", "B")]

    async def test_key_change_onto_free_key(self, backend):
        Code = backend["Code"]
        await Code.create({"code": "a", "name": "A"})

        updated = await Code.update({"where": {"code": "a"}}, {"code": "c"})
        assert [(c.get("code"), c.get("name")) for c in updated] == [("c", "A")]
        assert await Code.find_by_id("a") is None
        assert (await Code.find_by_id("c")).get("name") == "A"
