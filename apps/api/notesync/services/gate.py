"""Room creation and admission checks."""
from __future__ import annotations

import enum
import logging
import re
import secrets
import string
from dataclasses import dataclass
from typing import Callable

from ..core.config import Settings
from ..core.errors import InvalidInput, StoreFailure
from ..schemas.events import RoomInfo
from .store import NoteStore, RoomRecord

logger = logging.getLogger(__name__)

ROOM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
ROOM_ID_ALPHABET = string.ascii_lowercase + string.digits
ROOM_ID_LENGTH = 12
ROOM_NAME_MAX_LENGTH = 255
CREATE_ATTEMPTS = 5


def generate_room_id() -> str:
    """Return a fresh short room token."""

    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


class AdmitOutcome(str, enum.Enum):
    CREATED = "created"
    EXISTING = "existing"
    PASSWORD_REQUIRED = "password_required"


@dataclass(slots=True)
class Admission:
    """Result of a join attempt.

    ``room`` is only populated when access was granted, so callers cannot leak
    content or metadata of a protected room by accident.
    """

    outcome: AdmitOutcome
    room_id: str
    room: RoomRecord | None = None

    @property
    def granted(self) -> bool:
        return self.outcome is not AdmitOutcome.PASSWORD_REQUIRED

    def room_info(self) -> RoomInfo:
        if self.room is None:
            raise InvalidInput("Room not admitted")
        return RoomInfo(
            name=self.room.room_name,
            has_password=self.room.has_password,
            auto_delete_hours=self.room.auto_delete_hours,
        )


class RoomGate:
    """Validate rooms and passwords before a session may see a room."""

    def __init__(
        self,
        store: NoteStore,
        settings: Settings,
        *,
        id_factory: Callable[[], str] = generate_room_id,
    ) -> None:
        self._store = store
        self._settings = settings
        self._id_factory = id_factory

    def validate_room_id(self, room_id: object) -> str:
        """Return the room id when it is well formed, else raise ``InvalidInput``."""

        if not isinstance(room_id, str):
            raise InvalidInput("Invalid room ID")
        room_id = room_id.strip()
        if not (self._settings.room_id_min_length <= len(room_id) <= self._settings.room_id_max_length):
            raise InvalidInput("Invalid room ID")
        if not ROOM_ID_PATTERN.match(room_id):
            raise InvalidInput("Invalid room ID")
        return room_id

    async def create_room(
        self,
        name: object,
        *,
        password: str | None = None,
        has_password: bool = False,
        auto_delete_hours: int | None = 0,
        created_by: str = "anonymous",
        owner_id: str | None = None,
    ) -> RoomRecord:
        if not isinstance(name, str) or not name.strip():
            raise InvalidInput("Invalid room name")
        name = name.strip()
        if len(name) > ROOM_NAME_MAX_LENGTH:
            raise InvalidInput("Room name too long")
        if has_password and not password:
            raise InvalidInput("Password is required")
        hours = auto_delete_hours or 0
        if hours < 0:
            raise InvalidInput("Invalid auto-delete hours")

        room_id = await self._unused_room_id()
        room = await self._store.create_room(
            room_id=room_id,
            room_name=name,
            password=password if has_password else None,
            auto_delete_hours=hours,
            created_by=created_by,
            owner_id=owner_id,
        )
        logger.info("Room created: %s (%s) by %s", room.room_id, room.room_name, created_by)
        return room

    async def admit(self, room_id: object, password: str | None = None) -> Admission:
        """Check access to a room, creating it when the id is unknown."""

        room_id = self.validate_room_id(room_id)
        room = await self._store.get_room_info(room_id)

        if room is None:
            room, created = await self._store.get_note(
                room_id, auto_delete_hours=self._settings.default_auto_delete_hours
            )
            if created:
                logger.info("Room %s created implicitly on join", room_id)
                return Admission(AdmitOutcome.CREATED, room_id, room)

        if room.has_password and not await self._store.verify_password(room_id, password):
            logger.info("Password check failed for room %s", room_id)
            return Admission(AdmitOutcome.PASSWORD_REQUIRED, room_id)

        await self._store.touch_room(room_id)
        return Admission(AdmitOutcome.EXISTING, room_id, room)

    async def _unused_room_id(self) -> str:
        for _ in range(CREATE_ATTEMPTS):
            candidate = self._id_factory()
            if await self._store.get_room_info(candidate) is None:
                return candidate
            logger.warning("Generated room id %s already exists; retrying", candidate)
        raise StoreFailure("Failed to create room")
