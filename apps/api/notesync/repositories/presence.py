"""Presence (cursor state) repository helpers."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.user_presence import UserPresence


async def upsert(
    session: AsyncSession,
    *,
    room_id: str,
    user_id: str,
    user_name: str,
    color: str,
    cursor_position: int,
    selection_start: int,
    selection_end: int,
    now: datetime,
) -> UserPresence:
    """Insert or update the cursor row keyed by ``(room_id, user_id)``."""

    stmt = select(UserPresence).where(UserPresence.room_id == room_id, UserPresence.user_id == user_id)
    presence = (await session.execute(stmt)).scalar_one_or_none()
    if presence is None:
        presence = UserPresence(room_id=room_id, user_id=user_id)
        session.add(presence)

    presence.user_name = user_name
    presence.color = color
    presence.cursor_position = cursor_position
    presence.selection_start = selection_start
    presence.selection_end = selection_end
    presence.last_seen = now
    await session.flush()
    return presence


async def purge_stale(session: AsyncSession, cutoff: datetime) -> int:
    """Delete presence rows not refreshed since ``cutoff`` across all rooms."""

    result = await session.execute(delete(UserPresence).where(UserPresence.last_seen < cutoff))
    return result.rowcount or 0


async def list_for_room(session: AsyncSession, room_id: str) -> list[UserPresence]:
    stmt = select(UserPresence).where(UserPresence.room_id == room_id).order_by(UserPresence.last_seen.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def delete_one(session: AsyncSession, room_id: str, user_id: str) -> None:
    await session.execute(
        delete(UserPresence).where(UserPresence.room_id == room_id, UserPresence.user_id == user_id)
    )
