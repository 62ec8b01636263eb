"""Shared fakes for the synchronization tests."""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from notesync.core.config import Settings
from notesync.core.errors import StoreFailure
from notesync.services.hub import SyncHub
from notesync.services.registry import ClientSession
from notesync.services.store import PresenceRecord, RoomRecord, VersionRecord

START = datetime(2025, 10, 10, 12, 0, tzinfo=timezone.utc)


class InMemoryNoteStore:
    """Dict-backed NoteStore. Add method names to ``fail`` to make them raise."""

    def __init__(self) -> None:
        self.now = START
        self.rooms: dict[str, RoomRecord] = {}
        self.passwords: dict[str, str] = {}
        self.versions: list[VersionRecord] = []
        self.presence: dict[tuple[str, str], PresenceRecord] = {}
        self.fail: set[str] = set()
        self.initialized = False
        self.closed = False
        self._next_version_id = 1

    def _check(self, name: str) -> None:
        if name in self.fail:
            raise StoreFailure(f"Failed to {name}")

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def health(self) -> bool:
        return "health" not in self.fail

    async def create_room(self, *, room_id, room_name, password, auto_delete_hours, created_by, owner_id):
        self._check("create_room")
        room = RoomRecord(
            room_id=room_id,
            room_name=room_name,
            has_password=bool(password),
            auto_delete_hours=auto_delete_hours,
            content="",
            is_encrypted=False,
            created_at=self.now,
            last_accessed=self.now,
            created_by=created_by,
            owner_id=owner_id,
        )
        self.rooms[room_id] = room
        if password:
            self.passwords[room_id] = password
        return replace(room)

    async def get_room_info(self, room_id):
        self._check("get_room_info")
        room = self.rooms.get(room_id)
        return replace(room) if room else None

    async def get_note(self, room_id, *, auto_delete_hours):
        self._check("get_note")
        if room_id in self.rooms:
            return replace(self.rooms[room_id]), False
        room = await self.create_room(
            room_id=room_id,
            room_name=room_id,
            password=None,
            auto_delete_hours=auto_delete_hours,
            created_by="anonymous",
            owner_id=None,
        )
        return room, True

    async def verify_password(self, room_id, password):
        self._check("verify_password")
        if room_id not in self.rooms:
            return False
        expected = self.passwords.get(room_id)
        return expected is None or password == expected

    async def upsert_note(self, room_id, content, *, encrypt=None):
        self._check("upsert_note")
        room = self.rooms.get(room_id)
        if room is None:
            room, _ = await self.get_note(room_id, auto_delete_hours=168)
            room = self.rooms[room_id]
        room.content = content
        if encrypt is not None:
            room.is_encrypted = encrypt
        room.last_accessed = self.now
        return replace(room)

    async def touch_room(self, room_id):
        self._check("touch_room")
        if room_id in self.rooms:
            self.rooms[room_id].last_accessed = self.now

    async def save_version(self, room_id, content, created_by):
        self._check("save_version")
        numbers = [v.version_number for v in self.versions if v.room_id == room_id]
        version = VersionRecord(
            id=self._next_version_id,
            room_id=room_id,
            content=content,
            version_number=max(numbers, default=0) + 1,
            created_by=created_by,
            created_at=self.now,
        )
        self._next_version_id += 1
        self.versions.append(version)
        return version

    async def list_versions(self, room_id, limit):
        self._check("list_versions")
        versions = [v for v in self.versions if v.room_id == room_id]
        versions.sort(key=lambda v: v.version_number, reverse=True)
        return versions[:limit]

    async def get_version(self, room_id, version_id):
        self._check("get_version")
        for version in self.versions:
            if version.id == version_id and version.room_id == room_id:
                return version
        return None

    async def upsert_cursor(
        self, *, room_id, user_id, user_name, color, cursor_position, selection_start, selection_end
    ):
        self._check("upsert_cursor")
        record = PresenceRecord(
            room_id=room_id,
            user_id=user_id,
            user_name=user_name,
            color=color,
            cursor_position=cursor_position,
            selection_start=selection_start,
            selection_end=selection_end,
            last_seen=self.now,
        )
        self.presence[(room_id, user_id)] = record
        return record

    async def list_active_sessions(self, room_id, stale_after):
        self._check("list_active_sessions")
        cutoff = self.now - stale_after
        for key, record in list(self.presence.items()):
            if record.last_seen < cutoff:
                del self.presence[key]
        rows = [record for (room, _), record in self.presence.items() if room == room_id]
        return sorted(rows, key=lambda record: record.last_seen, reverse=True)

    async def delete_session(self, room_id, user_id):
        self._check("delete_session")
        self.presence.pop((room_id, user_id), None)

    async def delete_room(self, room_id):
        self._check("delete_room")
        existed = self.rooms.pop(room_id, None) is not None
        self.passwords.pop(room_id, None)
        self.versions = [v for v in self.versions if v.room_id != room_id]
        for key in [key for key in self.presence if key[0] == room_id]:
            del self.presence[key]
        return existed

    async def sweep_expired(self, now=None):
        self._check("sweep_expired")
        now = now or self.now
        expired = [
            room.room_id
            for room in self.rooms.values()
            if room.auto_delete_hours > 0 and room.last_accessed < now - timedelta(hours=room.auto_delete_hours)
        ]
        for room_id in expired:
            await self.delete_room(room_id)
        return expired


class DummyConnection:
    """Capture frames sent to one session."""

    def __init__(self) -> None:
        self.messages: list[dict] = []
        self.closed = False
        self.broken = False

    async def send(self, message: dict) -> None:
        if self.broken:
            raise ConnectionError("socket gone")
        self.messages.append(message)

    async def close(self) -> None:
        self.closed = True

    def events(self) -> list[str]:
        return [message["event"] for message in self.messages]

    def of(self, event: str) -> list:
        return [message["data"] for message in self.messages if message["event"] == event]

    def last(self, event: str):
        found = self.of(event)
        assert found, f"no {event!r} in {self.events()}"
        return found[-1]

    def clear(self) -> None:
        self.messages.clear()


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def make_hub(store: InMemoryNoteStore | None = None, *, snapshot: bool = False, **overrides) -> SyncHub:
    return SyncHub(
        store or InMemoryNoteStore(),
        make_settings(**overrides),
        snapshot_policy=lambda edit_count, content: snapshot,
    )


def connect(hub: SyncHub, session_id: str | None = None) -> tuple[ClientSession, DummyConnection]:
    conn = DummyConnection()
    session = hub.open_session(conn.send, conn.close, session_id=session_id)
    return session, conn


async def join(hub: SyncHub, session: ClientSession, room_id: str, user_name: str = "", password: str | None = None):
    data = {"roomId": room_id, "userName": user_name}
    if password is not None:
        data["password"] = password
    await hub.dispatch(session, {"event": "join-room", "data": data})


@pytest.fixture
def store() -> InMemoryNoteStore:
    return InMemoryNoteStore()


@pytest.fixture
def hub(store: InMemoryNoteStore) -> SyncHub:
    return make_hub(store)
