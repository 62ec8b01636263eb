"""Persistent store for rooms, content, versions and presence rows.

The synchronization engine talks to storage only through the :class:`NoteStore`
protocol. Every call is an independent unit of work; sequences of calls made by
a handler are not transactional. :class:`SqlNoteStore` is the async SQLAlchemy
implementation used in production.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..core.errors import StoreFailure
from ..core.security import ContentCipher, hash_password, verify_password
from ..db.session import init_models
from ..models.note import Note
from ..models.note_version import NoteVersion
from ..models.user_presence import UserPresence
from ..repositories import notes as notes_repo
from ..repositories import presence as presence_repo
from ..repositories import versions as versions_repo

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(slots=True)
class RoomRecord:
    room_id: str
    room_name: str
    has_password: bool
    auto_delete_hours: int
    content: str
    is_encrypted: bool
    created_at: datetime
    last_accessed: datetime
    created_by: str
    owner_id: str | None = None


@dataclass(slots=True)
class VersionRecord:
    id: int
    room_id: str
    content: str
    version_number: int
    created_by: str
    created_at: datetime


@dataclass(slots=True)
class PresenceRecord:
    room_id: str
    user_id: str
    user_name: str
    color: str
    cursor_position: int
    selection_start: int
    selection_end: int
    last_seen: datetime


class NoteStore(Protocol):
    """Operations the synchronization engine needs from storage."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def health(self) -> bool: ...

    async def create_room(
        self,
        *,
        room_id: str,
        room_name: str,
        password: str | None,
        auto_delete_hours: int,
        created_by: str,
        owner_id: str | None,
    ) -> RoomRecord: ...

    async def get_room_info(self, room_id: str) -> RoomRecord | None: ...

    async def get_note(self, room_id: str, *, auto_delete_hours: int) -> tuple[RoomRecord, bool]: ...

    async def verify_password(self, room_id: str, password: str | None) -> bool: ...

    async def upsert_note(self, room_id: str, content: str, *, encrypt: bool | None = None) -> RoomRecord: ...

    async def touch_room(self, room_id: str) -> None: ...

    async def save_version(self, room_id: str, content: str, created_by: str) -> VersionRecord: ...

    async def list_versions(self, room_id: str, limit: int) -> list[VersionRecord]: ...

    async def get_version(self, room_id: str, version_id: int) -> VersionRecord | None: ...

    async def upsert_cursor(
        self,
        *,
        room_id: str,
        user_id: str,
        user_name: str,
        color: str,
        cursor_position: int,
        selection_start: int,
        selection_end: int,
    ) -> PresenceRecord: ...

    async def list_active_sessions(self, room_id: str, stale_after: timedelta) -> list[PresenceRecord]: ...

    async def delete_session(self, room_id: str, user_id: str) -> None: ...

    async def delete_room(self, room_id: str) -> bool: ...

    async def sweep_expired(self, now: datetime | None = None) -> list[str]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlNoteStore:
    """:class:`NoteStore` backed by an async SQLAlchemy engine."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: ContentCipher,
        *,
        clock: Clock = _utcnow,
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory
        self._cipher = cipher
        self._clock = clock

    @asynccontextmanager
    async def _transaction(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Store call failed (%s): %s", action, exc)
            raise StoreFailure(f"Failed to {action}") from exc

    async def initialize(self) -> None:
        try:
            await init_models(self._engine)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreFailure("Failed to initialize database") from exc
        logger.info("Database tables created successfully")

    async def close(self) -> None:
        await self._engine.dispose()

    async def health(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Database health check failed: %s", exc)
            return False
        return True

    async def create_room(
        self,
        *,
        room_id: str,
        room_name: str,
        password: str | None,
        auto_delete_hours: int,
        created_by: str,
        owner_id: str | None,
    ) -> RoomRecord:
        password_hash = password_salt = None
        if password:
            password_hash, password_salt = hash_password(password)
        async with self._transaction("create room") as session:
            note = await notes_repo.create(
                session,
                room_id=room_id,
                room_name=room_name,
                auto_delete_hours=auto_delete_hours,
                now=self._clock(),
                password_hash=password_hash,
                password_salt=password_salt,
                created_by=created_by,
                owner_id=owner_id,
            )
            return self._to_room(note)

    async def get_room_info(self, room_id: str) -> RoomRecord | None:
        async with self._transaction("get room info") as session:
            note = await notes_repo.get_by_id(session, room_id)
            return self._to_room(note) if note else None

    async def get_note(self, room_id: str, *, auto_delete_hours: int) -> tuple[RoomRecord, bool]:
        """Return the room, creating an empty unprotected one when it is missing."""

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    note = await notes_repo.get_by_id(session, room_id)
                    created = note is None
                    if note is None:
                        note = await notes_repo.create(
                            session,
                            room_id=room_id,
                            room_name=room_id,
                            auto_delete_hours=auto_delete_hours,
                            now=self._clock(),
                        )
                    return self._to_room(note), created
        except IntegrityError:
            logger.info("Room %s was created concurrently; loading it", room_id)
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Store call failed (get note): %s", exc)
            raise StoreFailure("Failed to load room") from exc

        record = await self.get_room_info(room_id)
        if record is None:
            raise StoreFailure("Failed to load room")
        return record, False

    async def verify_password(self, room_id: str, password: str | None) -> bool:
        async with self._transaction("verify password") as session:
            note = await notes_repo.get_by_id(session, room_id)
            if note is None:
                return False
            return verify_password(password, note.password_hash, note.password_salt)

    async def upsert_note(self, room_id: str, content: str, *, encrypt: bool | None = None) -> RoomRecord:
        """Replace the content of a room, creating the room when it vanished."""

        async with self._transaction("update content") as session:
            now = self._clock()
            note = await notes_repo.get_by_id(session, room_id)
            if note is None:
                note = Note(room_id=room_id, room_name=room_id, created_at=now)
                session.add(note)
            is_encrypted = note.is_encrypted if encrypt is None else encrypt
            note.content = self._cipher.encrypt(content) if is_encrypted else content
            note.is_encrypted = bool(is_encrypted)
            note.last_accessed = now
            await session.flush()
            return self._to_room(note)

    async def touch_room(self, room_id: str) -> None:
        async with self._transaction("update last accessed") as session:
            await notes_repo.touch(session, room_id, self._clock())

    async def save_version(self, room_id: str, content: str, created_by: str) -> VersionRecord:
        async with self._transaction("save version") as session:
            note = await notes_repo.get_by_id(session, room_id)
            is_encrypted = bool(note and note.is_encrypted)
            number = await versions_repo.next_version_number(session, room_id)
            version = await versions_repo.add(
                session,
                room_id=room_id,
                content=self._cipher.encrypt(content) if is_encrypted else content,
                version_number=number,
                created_by=created_by,
                is_encrypted=is_encrypted,
                now=self._clock(),
            )
            return self._to_version(version)

    async def list_versions(self, room_id: str, limit: int) -> list[VersionRecord]:
        async with self._transaction("get version history") as session:
            versions = await versions_repo.list_for_room(session, room_id, limit)
            return [self._to_version(version) for version in versions]

    async def get_version(self, room_id: str, version_id: int) -> VersionRecord | None:
        async with self._transaction("load version") as session:
            version = await versions_repo.get(session, room_id, version_id)
            return self._to_version(version) if version else None

    async def upsert_cursor(
        self,
        *,
        room_id: str,
        user_id: str,
        user_name: str,
        color: str,
        cursor_position: int,
        selection_start: int,
        selection_end: int,
    ) -> PresenceRecord:
        async with self._transaction("update cursor") as session:
            presence = await presence_repo.upsert(
                session,
                room_id=room_id,
                user_id=user_id,
                user_name=user_name,
                color=color,
                cursor_position=cursor_position,
                selection_start=selection_start,
                selection_end=selection_end,
                now=self._clock(),
            )
            return self._to_presence(presence)

    async def list_active_sessions(self, room_id: str, stale_after: timedelta) -> list[PresenceRecord]:
        """Purge stale presence rows everywhere, then list the room's remaining rows."""

        async with self._transaction("get active users") as session:
            purged = await presence_repo.purge_stale(session, self._clock() - stale_after)
            if purged:
                logger.debug("Purged %d stale presence rows", purged)
            rows = await presence_repo.list_for_room(session, room_id)
            return [self._to_presence(row) for row in rows]

    async def delete_session(self, room_id: str, user_id: str) -> None:
        async with self._transaction("remove user from room") as session:
            await presence_repo.delete_one(session, room_id, user_id)

    async def delete_room(self, room_id: str) -> bool:
        async with self._transaction("delete room") as session:
            deleted = await notes_repo.delete_cascade(session, room_id)
        if deleted:
            logger.info("Room %s deleted from store", room_id)
        return deleted

    async def sweep_expired(self, now: datetime | None = None) -> list[str]:
        """Delete every room idle past its auto-delete horizon and return their ids."""

        now = notes_repo.ensure_tz(now or self._clock())
        async with self._transaction("clean up expired notes") as session:
            expired = await notes_repo.list_expired(session, now)
            for room_id in expired:
                await notes_repo.delete_cascade(session, room_id)
        return expired

    def _to_room(self, note: Note) -> RoomRecord:
        content = note.content or ""
        if note.is_encrypted and content:
            content = self._cipher.decrypt(content)
        return RoomRecord(
            room_id=note.room_id,
            room_name=note.room_name or "",
            has_password=note.has_password,
            auto_delete_hours=note.auto_delete_hours,
            content=content,
            is_encrypted=note.is_encrypted,
            created_at=notes_repo.ensure_tz(note.created_at),
            last_accessed=notes_repo.ensure_tz(note.last_accessed),
            created_by=note.created_by,
            owner_id=note.owner_id,
        )

    def _to_version(self, version: NoteVersion) -> VersionRecord:
        content = version.content
        if version.is_encrypted:
            content = self._cipher.decrypt(content)
        return VersionRecord(
            id=version.id,
            room_id=version.room_id,
            content=content,
            version_number=version.version_number,
            created_by=version.created_by,
            created_at=notes_repo.ensure_tz(version.created_at),
        )

    @staticmethod
    def _to_presence(presence: UserPresence) -> PresenceRecord:
        return PresenceRecord(
            room_id=presence.room_id,
            user_id=presence.user_id,
            user_name=presence.user_name,
            color=presence.color,
            cursor_position=presence.cursor_position,
            selection_start=presence.selection_start,
            selection_end=presence.selection_end,
            last_seen=notes_repo.ensure_tz(presence.last_seen),
        )
