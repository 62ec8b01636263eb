"""Cursor, typing and presence propagation.

Presence is advisory: cursor rows are persisted only so late joiners can see
who is around, and storage failures on this path are logged, never surfaced.
"""
from __future__ import annotations

import logging
from datetime import timedelta

from ..core.config import Settings
from ..core.errors import StoreFailure
from ..schemas.events import PresenceSummary, ServerEvent, envelope
from .registry import ClientSession, SessionRegistry
from .store import NoteStore, PresenceRecord

logger = logging.getLogger(__name__)


def to_summary(record: PresenceRecord) -> PresenceSummary:
    return PresenceSummary(
        user_id=record.user_id,
        user_name=record.user_name,
        color=record.color,
        cursor_position=record.cursor_position,
        selection_start=record.selection_start,
        selection_end=record.selection_end,
        last_seen=record.last_seen,
    )


class PresenceChannel:
    def __init__(self, store: NoteStore, registry: SessionRegistry, settings: Settings) -> None:
        self._store = store
        self._registry = registry
        self._stale_after = timedelta(seconds=settings.presence_stale_seconds)

    async def update_cursor(
        self,
        session: ClientSession,
        room_id: str,
        position: int,
        selection_start: int | None = None,
        selection_end: int | None = None,
    ) -> bool:
        """Record and relay a cursor move; returns ``False`` when the session is not in the room."""

        if not session.is_member(room_id):
            logger.debug("Ignoring cursor update from %s outside room %s", session.session_id, room_id)
            return False

        session.cursor_position = position
        session.selection_start = position if selection_start is None else selection_start
        session.selection_end = position if selection_end is None else selection_end
        await self.record_cursor(session)

        await self._registry.broadcast(
            room_id,
            envelope(
                ServerEvent.CURSOR_UPDATE,
                {
                    "userId": session.user_id,
                    "userName": session.user_name,
                    "color": session.color,
                    "cursorPosition": position,
                    "selectionStart": session.selection_start,
                    "selectionEnd": session.selection_end,
                },
            ),
            exclude=session.session_id,
        )
        return True

    async def set_typing(self, session: ClientSession, room_id: str, is_typing: bool) -> bool:
        if not session.is_member(room_id):
            return False
        await self._registry.broadcast(
            room_id,
            envelope(
                ServerEvent.USER_TYPING,
                {"userId": session.user_id, "userName": session.user_name, "isTyping": bool(is_typing)},
            ),
            exclude=session.session_id,
        )
        return True

    async def record_cursor(self, session: ClientSession) -> None:
        """Upsert the session's latest cursor row, logging storage failures."""

        if not session.room_id:
            return
        try:
            await self._store.upsert_cursor(
                room_id=session.room_id,
                user_id=session.user_id,
                user_name=session.user_name,
                color=session.color,
                cursor_position=session.cursor_position,
                selection_start=session.selection_start,
                selection_end=session.selection_end,
            )
        except StoreFailure as exc:
            logger.warning("Cursor update for %s not persisted: %s", session.user_id, exc.message)

    async def forget(self, session: ClientSession, room_id: str) -> None:
        try:
            await self._store.delete_session(room_id, session.user_id)
        except StoreFailure as exc:
            logger.warning("Presence row for %s in %s not removed: %s", session.user_id, room_id, exc.message)

    async def list_active_presence(self, room_id: str) -> list[PresenceSummary]:
        """Return live presence for a room after purging rows older than the stale threshold."""

        records = await self._store.list_active_sessions(room_id, self._stale_after)
        return [to_summary(record) for record in records]

    async def announce(self, room_id: str) -> None:
        """Send the current presence list and member count to everyone in the room."""

        try:
            active = await self.list_active_presence(room_id)
        except StoreFailure as exc:
            logger.warning("Active users for room %s unavailable: %s", room_id, exc.message)
        else:
            await self._registry.broadcast(
                room_id, envelope(ServerEvent.ACTIVE_USERS, [summary.to_wire() for summary in active])
            )
        await self._registry.broadcast(room_id, envelope(ServerEvent.USERS_COUNT, self._registry.count_of(room_id)))
