"""Version snapshot repository helpers."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.note_version import NoteVersion


async def next_version_number(session: AsyncSession, room_id: str) -> int:
    """Return the number the next snapshot of a room should carry."""

    stmt = select(func.coalesce(func.max(NoteVersion.version_number), 0)).where(NoteVersion.room_id == room_id)
    current = (await session.execute(stmt)).scalar_one()
    return int(current) + 1


async def add(
    session: AsyncSession,
    *,
    room_id: str,
    content: str,
    version_number: int,
    created_by: str,
    is_encrypted: bool,
    now: datetime,
) -> NoteVersion:
    version = NoteVersion(
        room_id=room_id,
        content=content,
        version_number=version_number,
        created_by=created_by,
        is_encrypted=is_encrypted,
        created_at=now,
    )
    session.add(version)
    await session.flush()
    return version


async def list_for_room(session: AsyncSession, room_id: str, limit: int) -> list[NoteVersion]:
    """Return the newest snapshots of a room first."""

    stmt: Select[tuple[NoteVersion]] = (
        select(NoteVersion)
        .where(NoteVersion.room_id == room_id)
        .order_by(NoteVersion.version_number.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get(session: AsyncSession, room_id: str, version_id: int) -> NoteVersion | None:
    stmt = select(NoteVersion).where(NoteVersion.id == version_id, NoteVersion.room_id == room_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
