"""Note (room) repository helpers."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.note import Note
from ..models.note_version import NoteVersion
from ..models.user_presence import UserPresence


async def get_by_id(session: AsyncSession, room_id: str) -> Note | None:
    """Return a room by identifier."""

    return await session.get(Note, room_id)


async def create(
    session: AsyncSession,
    *,
    room_id: str,
    room_name: str,
    auto_delete_hours: int,
    now: datetime,
    password_hash: str | None = None,
    password_salt: str | None = None,
    created_by: str = "anonymous",
    owner_id: str | None = None,
) -> Note:
    """Insert a new room with empty content."""

    note = Note(
        room_id=room_id,
        room_name=room_name,
        content="",
        password_hash=password_hash,
        password_salt=password_salt,
        is_encrypted=False,
        auto_delete_hours=auto_delete_hours,
        created_at=now,
        last_accessed=now,
        created_by=created_by,
        owner_id=owner_id,
    )
    session.add(note)
    await session.flush()
    return note


async def touch(session: AsyncSession, room_id: str, now: datetime) -> None:
    """Refresh the last access timestamp of a room."""

    await session.execute(update(Note).where(Note.room_id == room_id).values(last_accessed=now))


async def list_expired(session: AsyncSession, now: datetime) -> list[str]:
    """Return ids of rooms idle for longer than their auto-delete horizon."""

    stmt = select(Note.room_id, Note.last_accessed, Note.auto_delete_hours).where(Note.auto_delete_hours > 0)
    result = await session.execute(stmt)
    expired: list[str] = []
    for room_id, last_accessed, hours in result.all():
        if ensure_tz(last_accessed) < now - timedelta(hours=hours):
            expired.append(room_id)
    return expired


async def delete_cascade(session: AsyncSession, room_id: str) -> bool:
    """Delete a room together with its versions and presence rows."""

    await session.execute(delete(NoteVersion).where(NoteVersion.room_id == room_id))
    await session.execute(delete(UserPresence).where(UserPresence.room_id == room_id))
    result = await session.execute(delete(Note).where(Note.room_id == room_id))
    return bool(result.rowcount)


def ensure_tz(value: datetime) -> datetime:
    """Ensure the provided datetime is timezone-aware in UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
