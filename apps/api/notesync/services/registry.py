"""In-memory registry of live sessions per room."""
from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict
from uuid import uuid4

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]
CloseCallable = Callable[[], Awaitable[None]]

USER_COLORS = (
    "#007bff",
    "#28a745",
    "#dc3545",
    "#ffc107",
    "#17a2b8",
    "#6610f2",
    "#e83e8c",
    "#fd7e14",
)


def pick_color() -> str:
    return random.choice(USER_COLORS)


@dataclass(slots=True, eq=False)
class ClientSession:
    """One live connection and its participation in at most one room."""

    session_id: str
    send: SendCallable
    close: CloseCallable | None = None
    user_id: str = field(default_factory=lambda: str(uuid4()))
    user_name: str = ""
    color: str = field(default_factory=pick_color)
    room_id: str | None = None
    cursor_position: int = 0
    selection_start: int = 0
    selection_end: int = 0
    last_seen: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        if not self.user_name:
            self.user_name = f"User_{self.session_id[:6]}"

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def is_member(self, room_id: object) -> bool:
        return bool(room_id) and self.room_id == room_id


class SessionRegistry:
    """Track which sessions are connected to which room and fan out messages.

    Mutations are serialized by a single lock so concurrent joins, leaves and
    disconnects for the same room cannot lose updates. A room entry exists only
    while it has at least one session.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Dict[str, ClientSession]] = {}
        self._lock = asyncio.Lock()

    async def add_session(self, room: str, session: ClientSession) -> int:
        """Register a session with the room and return the new member count."""

        async with self._lock:
            members = self._rooms.setdefault(room, {})
            members[session.session_id] = session
            return len(members)

    async def remove_session(self, room: str, session_id: str) -> int:
        """Remove a session from the room, pruning the room when it becomes empty."""

        async with self._lock:
            members = self._rooms.get(room)
            if not members:
                return 0
            members.pop(session_id, None)
            remaining = len(members)
            if not remaining:
                self._rooms.pop(room, None)
            return remaining

    async def evict_room(self, room: str) -> list[ClientSession]:
        """Drop the whole room entry and return the sessions it held."""

        async with self._lock:
            members = self._rooms.pop(room, {})
        return list(members.values())

    def count_of(self, room: str) -> int:
        return len(self._rooms.get(room, {}))

    def list_sessions(self, room: str) -> list[ClientSession]:
        return list(self._rooms.get(room, {}).values())

    def rooms(self) -> list[str]:
        return list(self._rooms)

    async def broadcast(self, room: str, message: dict, *, exclude: str | None = None) -> int:
        """Send a message to every session in the room except ``exclude``.

        Delivery is fire-and-forget: failed sends are logged and otherwise ignored.
        """

        async with self._lock:
            targets = [session for session in self._rooms.get(room, {}).values() if session.session_id != exclude]

        if not targets:
            return 0

        results = await asyncio.gather(*(session.send(message) for session in targets), return_exceptions=True)
        for session, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.debug("Dropped %s for session %s: %s", message.get("event"), session.session_id, result)
        return len(targets)
