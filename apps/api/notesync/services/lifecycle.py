"""Connection bookkeeping, room teardown, idle sweep and liveness heartbeat."""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Dict

from ..core.config import RoomDeletePolicy, Settings
from ..core.errors import AccessDenied, StoreFailure
from ..schemas.events import ServerEvent, envelope
from .content import ContentChannel
from .presence import PresenceChannel
from .registry import ClientSession, SessionRegistry
from .store import NoteStore

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Own the transitions of sessions in and out of rooms.

    Every path that takes a session out of a room (leave, disconnect, room
    deletion, idle sweep) goes through here so the registry count and the
    session's own membership never disagree.
    """

    def __init__(
        self,
        store: NoteStore,
        registry: SessionRegistry,
        presence: PresenceChannel,
        content: ContentChannel,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._registry = registry
        self._presence = presence
        self._content = content
        self._settings = settings
        self._clock = clock
        self._connections: Dict[str, ClientSession] = {}

    def connect(self, session: ClientSession) -> None:
        self._connections[session.session_id] = session
        logger.info("User connected: %s", session.session_id)

    def connections(self) -> list[ClientSession]:
        return list(self._connections.values())

    async def enter_room(self, session: ClientSession, room_id: str) -> int:
        """Move an admitted session into ``room_id``, leaving any previous room first."""

        if session.room_id and session.room_id != room_id:
            await self._detach(session, session.room_id)
        session.room_id = room_id
        return await self._registry.add_session(room_id, session)

    async def leave_room(self, session: ClientSession, room_id: object) -> bool:
        if not session.is_member(room_id):
            return False
        await self._detach(session, session.room_id)
        logger.info("User %s left room %s", session.user_name, room_id)
        return True

    async def handle_disconnect(self, session: ClientSession) -> None:
        """Tear down a session whose transport went away. Safe to call twice."""

        known = self._connections.pop(session.session_id, None) is not None
        if session.room_id:
            await self._detach(session, session.room_id)
        if known:
            logger.info("User disconnected: %s", session.session_id)

    async def delete_room(self, session: ClientSession, room_id: object) -> None:
        """Delete the session's current room, notifying every member first."""

        if not session.is_member(room_id):
            raise AccessDenied("Access denied")
        if self._settings.room_delete_policy is RoomDeletePolicy.CREATOR:
            room = await self._store.get_room_info(session.room_id)
            if room is None or room.owner_id != session.user_id:
                raise AccessDenied("Only the room creator can delete this room")

        room_id = session.room_id
        await self._evict(room_id)
        await self._store.delete_room(room_id)
        logger.info("Room %s deleted by %s", room_id, session.user_name)

    async def sweep_expired(self, now: datetime | None = None) -> list[str]:
        """Delete rooms idle past their auto-delete horizon and evict their members."""

        expired = await self._store.sweep_expired(now)
        for room_id in expired:
            if self._registry.count_of(room_id):
                await self._evict(room_id)
            else:
                self._content.forget_room(room_id)
        if expired:
            logger.info("Cleaned up %d expired notes", len(expired))
        return expired

    async def heartbeat_once(self) -> list[ClientSession]:
        """Ping live sessions and reap the ones silent past the timeout."""

        now = self._clock()
        timeout = self._settings.heartbeat_timeout_seconds
        stale: list[ClientSession] = []
        live: list[ClientSession] = []
        for session in self.connections():
            (stale if now - session.last_seen > timeout else live).append(session)

        if live:
            ping = envelope(ServerEvent.PING)
            await asyncio.gather(*(session.send(ping) for session in live), return_exceptions=True)

        for session in stale:
            logger.info("Session %s missed heartbeat; closing", session.session_id)
            if session.close is not None:
                try:
                    await session.close()
                except Exception as exc:  # transport may already be gone
                    logger.debug("Closing %s failed: %s", session.session_id, exc)
            try:
                await self.handle_disconnect(session)
            except Exception:
                logger.exception("Teardown of %s failed", session.session_id)
        return stale

    async def run_sweeper(self) -> None:
        interval = self._settings.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_expired()
            except StoreFailure as exc:
                logger.warning("Idle room sweep failed: %s", exc.message)
            except Exception:
                logger.exception("Idle room sweep crashed; retrying next interval")

    async def run_heartbeat(self) -> None:
        interval = self._settings.heartbeat_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.heartbeat_once()
            except Exception:
                logger.exception("Heartbeat pass crashed; retrying next interval")

    async def _detach(self, session: ClientSession, room_id: str) -> None:
        remaining = await self._registry.remove_session(room_id, session.session_id)
        session.room_id = None
        await self._presence.forget(session, room_id)
        if remaining:
            await self._presence.announce(room_id)
        else:
            self._content.forget_room(room_id)

    async def _evict(self, room_id: str) -> list[ClientSession]:
        members = await self._registry.evict_room(room_id)
        for member in members:
            member.room_id = None
        self._content.forget_room(room_id)

        notice = envelope(ServerEvent.ROOM_DELETED, {"roomId": room_id})
        await asyncio.gather(*(member.send(notice) for member in members), return_exceptions=True)
        return members
