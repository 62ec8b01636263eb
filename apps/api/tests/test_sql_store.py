"""SqlNoteStore against an in-memory SQLite database."""
from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from conftest import START, DummyConnection, make_settings
from notesync.core.errors import StoreFailure
from notesync.core.security import ContentCipher
from notesync.db.session import build_session_factory
from notesync.models import Note
from notesync.services.presence import PresenceChannel
from notesync.services.registry import ClientSession, SessionRegistry
from notesync.services.store import SqlNoteStore


class Clock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self):
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest_asyncio.fixture
async def sql_store(clock):
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    store = SqlNoteStore(
        engine,
        build_session_factory(engine),
        ContentCipher(Fernet.generate_key().decode("ascii")),
        clock=clock,
    )
    await store.initialize()
    yield store
    await store.close()


async def make_room(store: SqlNoteStore, room_id: str = "room-1", **overrides):
    values = {
        "room_id": room_id,
        "room_name": "Notes",
        "password": None,
        "auto_delete_hours": 24,
        "created_by": "Alice",
        "owner_id": "u-1",
    }
    values.update(overrides)
    return await store.create_room(**values)


@pytest.mark.asyncio
async def test_health(sql_store):
    assert await sql_store.health() is True


@pytest.mark.asyncio
async def test_create_room_and_read_back(sql_store):
    created = await make_room(sql_store, password="s3cret")

    room = await sql_store.get_room_info("room-1")

    assert created.has_password is True
    assert room.room_name == "Notes"
    assert room.has_password is True
    assert room.auto_delete_hours == 24
    assert room.content == ""
    assert room.owner_id == "u-1"
    assert room.created_at == START
    assert await sql_store.get_room_info("missing") is None


@pytest.mark.asyncio
async def test_duplicate_room_id_is_a_store_failure(sql_store):
    await make_room(sql_store)

    with pytest.raises(StoreFailure):
        await make_room(sql_store)


@pytest.mark.asyncio
async def test_password_is_stored_hashed(sql_store):
    await make_room(sql_store, password="s3cret")

    async with sql_store._session_factory() as session:
        stored = (await session.execute(select(Note.password_hash).where(Note.room_id == "room-1"))).scalar_one()

    assert stored and stored != "s3cret"
    assert await sql_store.verify_password("room-1", "s3cret")
    assert not await sql_store.verify_password("room-1", "nope")
    assert not await sql_store.verify_password("missing", "s3cret")


@pytest.mark.asyncio
async def test_get_note_creates_missing_room_once(sql_store):
    room, created = await sql_store.get_note("fresh-room", auto_delete_hours=168)
    again, created_again = await sql_store.get_note("fresh-room", auto_delete_hours=168)

    assert created is True
    assert created_again is False
    assert room.room_name == "fresh-room"
    assert room.has_password is False
    assert again.auto_delete_hours == 168


@pytest.mark.asyncio
async def test_upsert_note_encrypts_at_rest(sql_store):
    await make_room(sql_store)

    plain = await sql_store.upsert_note("room-1", "visible")
    secret = await sql_store.upsert_note("room-1", "hidden", encrypt=True)
    kept = await sql_store.upsert_note("room-1", "still hidden")

    async with sql_store._session_factory() as session:
        raw = (await session.execute(select(Note.content).where(Note.room_id == "room-1"))).scalar_one()

    assert plain.is_encrypted is False
    assert secret.is_encrypted is True and secret.content == "hidden"
    assert kept.is_encrypted is True
    assert raw != "still hidden"
    assert (await sql_store.get_room_info("room-1")).content == "still hidden"


@pytest.mark.asyncio
async def test_versions_are_numbered_per_room(sql_store, clock):
    await make_room(sql_store)
    await make_room(sql_store, "room-2")

    await sql_store.save_version("room-1", "one", "Alice")
    clock.now = START + timedelta(minutes=1)
    second = await sql_store.save_version("room-1", "two", "Bob")
    other = await sql_store.save_version("room-2", "elsewhere", "Carol")

    history = await sql_store.list_versions("room-1", 10)

    assert [v.version_number for v in history] == [2, 1]
    assert history[0].content == "two"
    assert history[0].created_by == "Bob"
    assert other.version_number == 1
    assert await sql_store.list_versions("room-1", 1) == [history[0]]
    assert (await sql_store.get_version("room-1", second.id)).content == "two"
    assert await sql_store.get_version("room-2", second.id) is None


@pytest.mark.asyncio
async def test_presence_upsert_and_stale_purge(sql_store, clock):
    await make_room(sql_store)
    await make_room(sql_store, "room-2")
    common = {"color": "#FF6B6B", "selection_start": 0, "selection_end": 0}

    await sql_store.upsert_cursor(room_id="room-1", user_id="u-1", user_name="Alice", cursor_position=1, **common)
    await sql_store.upsert_cursor(room_id="room-2", user_id="u-3", user_name="Carol", cursor_position=0, **common)
    clock.now = START + timedelta(seconds=20)
    await sql_store.upsert_cursor(room_id="room-1", user_id="u-1", user_name="Alice", cursor_position=5, **common)
    await sql_store.upsert_cursor(room_id="room-1", user_id="u-2", user_name="Bob", cursor_position=2, **common)

    rows = await sql_store.list_active_sessions("room-1", timedelta(seconds=30))
    assert sorted((row.user_id, row.cursor_position) for row in rows) == [("u-1", 5), ("u-2", 2)]

    clock.now = START + timedelta(seconds=45)
    assert len(await sql_store.list_active_sessions("room-1", timedelta(seconds=30))) == 2
    assert await sql_store.list_active_sessions("room-2", timedelta(seconds=30)) == []

    await sql_store.delete_session("room-1", "u-2")
    assert [row.user_id for row in await sql_store.list_active_sessions("room-1", timedelta(seconds=30))] == ["u-1"]


@pytest.mark.asyncio
async def test_delete_room_removes_everything(sql_store):
    await make_room(sql_store)
    await sql_store.save_version("room-1", "one", "Alice")
    await sql_store.upsert_cursor(
        room_id="room-1",
        user_id="u-1",
        user_name="Alice",
        color="#FF6B6B",
        cursor_position=0,
        selection_start=0,
        selection_end=0,
    )

    assert await sql_store.delete_room("room-1") is True
    assert await sql_store.delete_room("room-1") is False
    assert await sql_store.get_room_info("room-1") is None
    assert await sql_store.list_versions("room-1", 10) == []
    assert await sql_store.list_active_sessions("room-1", timedelta(days=1)) == []


@pytest.mark.asyncio
async def test_sweep_removes_only_idle_rooms(sql_store, clock):
    await make_room(sql_store, "idle-room", auto_delete_hours=1)
    await make_room(sql_store, "busy-room", auto_delete_hours=1)
    await make_room(sql_store, "forever", auto_delete_hours=0)

    clock.now = START + timedelta(minutes=90)
    await sql_store.touch_room("busy-room")

    removed = await sql_store.sweep_expired(START + timedelta(hours=2))

    assert removed == ["idle-room"]
    assert await sql_store.get_room_info("idle-room") is None
    assert await sql_store.get_room_info("busy-room") is not None
    assert await sql_store.get_room_info("forever") is not None


def refused_session_factory():
    raise ConnectionRefusedError("connection refused")


@pytest.mark.asyncio
async def test_driver_connection_errors_become_store_failures():
    engine = create_async_engine("sqlite+aiosqlite://")
    store = SqlNoteStore(engine, refused_session_factory, ContentCipher(Fernet.generate_key().decode("ascii")))

    try:
        with pytest.raises(StoreFailure):
            await store.delete_session("room-1", "u-1")
        with pytest.raises(StoreFailure):
            await store.get_note("room-1", auto_delete_hours=1)
        assert await store.health() is False
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_presence_writes_survive_unreachable_database():
    engine = create_async_engine("sqlite+aiosqlite://")
    store = SqlNoteStore(engine, refused_session_factory, ContentCipher(Fernet.generate_key().decode("ascii")))
    registry = SessionRegistry()
    presence = PresenceChannel(store, registry, make_settings())
    conn = DummyConnection()
    session = ClientSession(session_id="alice-session", send=conn.send, room_id="room-1")
    await registry.add_session("room-1", session)

    try:
        await presence.record_cursor(session)
        await presence.forget(session, "room-1")
        await presence.announce("room-1")
    finally:
        await engine.dispose()

    assert conn.messages == [{"event": "users-count", "data": 1}]
