"""Last-write-wins content updates, snapshots and restores."""
from __future__ import annotations

import asyncio
import logging
import random
import weakref
from typing import Callable, Dict

from ..core.config import Settings
from ..core.errors import AccessDenied, ContentTooLarge, InvalidInput, NotFound, StoreFailure
from ..schemas.events import ServerEvent, envelope
from .registry import ClientSession, SessionRegistry
from .store import NoteStore, RoomRecord

logger = logging.getLogger(__name__)

SnapshotPolicy = Callable[[int, str], bool]


def random_snapshot_policy(probability: float, rng: random.Random | None = None) -> SnapshotPolicy:
    """Snapshot each edit independently with the given probability."""

    draw = (rng or random.Random()).random

    def policy(edit_count: int, content: str) -> bool:
        return draw() < probability

    return policy


class ContentChannel:
    """Apply edits from admitted sessions and fan them out to the room.

    Writes and broadcasts for one room run under that room's lock, so members
    receive updates in the order the store applied them.
    """

    def __init__(
        self,
        store: NoteStore,
        registry: SessionRegistry,
        settings: Settings,
        *,
        snapshot_policy: SnapshotPolicy | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._max_bytes = settings.max_content_bytes
        self._snapshot_policy = snapshot_policy or random_snapshot_policy(settings.snapshot_probability)
        self._edit_counts: Dict[str, int] = {}
        # A lock lives as long as some edit holds or awaits it.
        self._room_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def check_content(self, content: object) -> str:
        if not isinstance(content, str):
            raise InvalidInput("Invalid data")
        if len(content.encode("utf-8")) > self._max_bytes:
            raise ContentTooLarge("Content too large")
        return content

    async def submit_edit(
        self,
        session: ClientSession,
        room_id: str,
        content: object,
        *,
        should_encrypt: bool | None = None,
    ) -> str:
        """Persist an edit and send it to every other member of the room."""

        content = self.check_content(content)
        if not session.is_member(room_id):
            raise AccessDenied("Access denied")

        async with self._lock_for(room_id):
            room = await self._apply(session, room_id, content, encrypt=should_encrypt)
            await self._registry.broadcast(
                room_id,
                envelope(
                    ServerEvent.UPDATE_CONTENT,
                    {
                        "content": room.content,
                        "updatedBy": session.user_name,
                        "isEncrypted": room.is_encrypted,
                    },
                ),
                exclude=session.session_id,
            )

        logger.info("Content updated in room %s by %s", room_id, session.user_name)
        return room.content

    async def restore_version(self, session: ClientSession, room_id: str, version_id: int) -> str:
        """Make a stored snapshot the current content and announce it to everyone."""

        if not session.is_member(room_id):
            raise AccessDenied("Access denied")

        version = await self._store.get_version(room_id, version_id)
        if version is None:
            raise NotFound("Version not found")

        async with self._lock_for(room_id):
            room = await self._apply(session, room_id, version.content)
            await self._registry.broadcast(
                room_id,
                envelope(
                    ServerEvent.UPDATE_CONTENT,
                    {
                        "content": room.content,
                        "updatedBy": session.user_name,
                        "isEncrypted": room.is_encrypted,
                        "isRestored": True,
                    },
                ),
            )

        logger.info("Version %s restored in room %s by %s", version.version_number, room_id, session.user_name)
        return room.content

    async def load(self, room_id: str) -> RoomRecord | None:
        """Read the current content of a room without racing an in-flight edit."""

        async with self._lock_for(room_id):
            return await self._store.get_room_info(room_id)

    def forget_room(self, room_id: str) -> None:
        """Release per-room state once a room has no members or was deleted."""

        self._edit_counts.pop(room_id, None)

    async def _apply(
        self,
        session: ClientSession,
        room_id: str,
        content: str,
        *,
        encrypt: bool | None = None,
    ) -> RoomRecord:
        room = await self._store.upsert_note(room_id, content, encrypt=encrypt)
        edit_count = self._edit_counts.get(room_id, 0) + 1
        self._edit_counts[room_id] = edit_count

        if self._snapshot_policy(edit_count, content):
            try:
                version = await self._store.save_version(room_id, content, session.user_name)
            except StoreFailure as exc:
                logger.warning("Skipped snapshot for room %s: %s", room_id, exc.message)
            else:
                logger.debug("Saved version %s for room %s", version.version_number, room_id)
        return room

    def _lock_for(self, room_id: str) -> asyncio.Lock:
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = self._room_locks[room_id] = asyncio.Lock()
        return lock
