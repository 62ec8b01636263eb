"""Read access to stored version snapshots."""
from __future__ import annotations

from ..core.config import Settings
from ..core.errors import AccessDenied
from ..schemas.events import VersionSnapshot
from .registry import ClientSession
from .store import NoteStore, VersionRecord


def to_snapshot(record: VersionRecord) -> VersionSnapshot:
    return VersionSnapshot(
        id=record.id,
        room_id=record.room_id,
        content=record.content,
        version_number=record.version_number,
        created_by=record.created_by,
        created_at=record.created_at,
    )


class VersionArchive:
    def __init__(self, store: NoteStore, settings: Settings) -> None:
        self._store = store
        self._default_limit = settings.version_history_default_limit
        self._max_limit = settings.version_history_max_limit

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._default_limit
        return max(1, min(limit, self._max_limit))

    async def list_versions(self, session: ClientSession, room_id: str, limit: int | None = None) -> list[VersionSnapshot]:
        """Return the newest snapshots of the session's room first."""

        if not session.is_member(room_id):
            raise AccessDenied("Access denied")
        records = await self._store.list_versions(room_id, self.clamp_limit(limit))
        return [to_snapshot(record) for record in records]
