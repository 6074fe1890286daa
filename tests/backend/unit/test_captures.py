import asyncio
import json
from datetime import datetime, timezone

import psycopg
import pytest

from creaturehunt.backend.captures import (
    InMemoryCaptureStore,
    PostgresCaptureStore,
    create_capture_store,
    format_rank,
    trainer_rank,
)
from creaturehunt.backend.errors import PersistenceError
from creaturehunt.backend.models import CaptureRecord


def _record(identity: int, captured_at: str) -> CaptureRecord:
    return CaptureRecord(
        identity=identity,
        display_name=f"creature-{identity}",
        image_ref=f"https://img/{identity}.png",
        category_tags=("grass",),
        mass_units=10,
        size_units=3,
        captured_at=captured_at,
    )


def test_create_capture_store_returns_postgres_store_when_database_url_present() -> None:
    store = create_capture_store(database_url="postgresql://local")

    assert isinstance(store, PostgresCaptureStore)


def test_create_capture_store_returns_in_memory_store_when_database_url_missing() -> None:
    assert isinstance(create_capture_store(database_url=None), InMemoryCaptureStore)


def test_in_memory_store_writes_each_identity_once_per_user() -> None:
    store = InMemoryCaptureStore()

    async def scenario():
        first = await store.write_capture("ash", _record(1, "2024-01-01T00:00:00+00:00"))
        duplicate = await store.write_capture("ash", _record(1, "2024-01-02T00:00:00+00:00"))
        other_user = await store.write_capture("misty", _record(1, "2024-01-02T00:00:00+00:00"))
        return first, duplicate, other_user, await store.list_captures("ash")

    first, duplicate, other_user, records = asyncio.run(scenario())

    assert (first, duplicate, other_user) == (True, False, True)
    assert len(records) == 1
    assert records[0].captured_at == "2024-01-01T00:00:00+00:00"


def test_in_memory_store_lists_newest_first() -> None:
    store = InMemoryCaptureStore()

    async def scenario():
        await store.write_capture("ash", _record(1, "2024-01-01T00:00:00+00:00"))
        await store.write_capture("ash", _record(4, "2024-03-01T00:00:00+00:00"))
        await store.write_capture("ash", _record(7, "2024-02-01T00:00:00+00:00"))
        return await store.list_captures("ash")

    assert [record.identity for record in asyncio.run(scenario())] == [4, 7, 1]


def test_trainer_rank_increases_every_five_captures() -> None:
    assert trainer_rank(0) == 1
    assert trainer_rank(4) == 1
    assert trainer_rank(5) == 2
    assert trainer_rank(12) == 3
    assert format_rank(trainer_rank(12)) == "003"


class _FakeCursor:
    def __init__(self, rows: list) -> None:
        self.commands: list[tuple[str, tuple]] = []
        self._rows = rows

    async def execute(self, sql: str, params: tuple) -> None:
        self.commands.append((sql, params))

    async def fetchone(self):
        return self._rows[0] if self._rows else None

    async def fetchall(self):
        return list(self._rows)

    async def __aenter__(self) -> "_FakeCursor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None


class _FakeConnection:
    def __init__(self, rows: list) -> None:
        self.cursor_instance = _FakeCursor(rows)
        self.committed = False

    def cursor(self) -> _FakeCursor:
        return self.cursor_instance

    async def commit(self) -> None:
        self.committed = True

    async def __aenter__(self) -> "_FakeConnection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None


class _PostgresStoreWithFakeConnection(PostgresCaptureStore):
    def __init__(self, rows: list) -> None:
        super().__init__(database_url="postgresql://local")
        self.fake_connection = _FakeConnection(rows)

    async def _connect(self) -> _FakeConnection:
        return self.fake_connection


def test_postgres_write_inserts_with_conflict_guard() -> None:
    store = _PostgresStoreWithFakeConnection(rows=[(25,)])

    created = asyncio.run(store.write_capture("ash", _record(25, "2024-01-01T00:00:00+00:00")))

    sql, params = store.fake_connection.cursor_instance.commands[0]
    assert created is True
    assert store.fake_connection.committed is True
    assert "INSERT INTO captures" in sql
    assert "ON CONFLICT (user_id, identity) DO NOTHING" in sql
    assert params[0] == "ash"
    assert params[1] == 25
    assert json.loads(params[4]) == ["grass"]


def test_postgres_duplicate_write_is_not_an_error() -> None:
    store = _PostgresStoreWithFakeConnection(rows=[])

    created = asyncio.run(store.write_capture("ash", _record(25, "2024-01-01T00:00:00+00:00")))

    assert created is False


def test_postgres_list_maps_rows_to_records() -> None:
    captured_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    store = _PostgresStoreWithFakeConnection(
        rows=[(25, "pikachu", "https://img/25.png", ["electric"], 60, 4, captured_at)]
    )

    records = asyncio.run(store.list_captures("ash"))

    assert records[0].identity == 25
    assert records[0].category_tags == ("electric",)
    assert records[0].captured_at == "2024-05-01T12:00:00+00:00"
    assert "ORDER BY captured_at DESC" in store.fake_connection.cursor_instance.commands[0][0]


def test_postgres_failure_becomes_persistence_error() -> None:
    class _BrokenStore(PostgresCaptureStore):
        async def _connect(self):
            raise psycopg.OperationalError("connection refused")

    store = _BrokenStore(database_url="postgresql://local")

    with pytest.raises(PersistenceError):
        asyncio.run(store.write_capture("ash", _record(1, "2024-01-01T00:00:00+00:00")))
