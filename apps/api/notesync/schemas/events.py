"""Wire contracts for the room synchronization WebSocket.

Every frame is ``{"event": <name>, "data": <payload>}``. Payload fields are
camelCase on the wire and snake_case in Python.
"""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ClientEvent(str, enum.Enum):
    CREATE_ROOM = "create-room"
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    DELETE_ROOM = "delete-room"
    UPDATE_CONTENT = "update-content"
    CURSOR_UPDATE = "cursor-update"
    TYPING = "typing"
    GET_VERSION_HISTORY = "get-version-history"
    RESTORE_VERSION = "restore-version"
    PONG = "pong"


class ServerEvent(str, enum.Enum):
    ROOM_CREATED = "room-created"
    LOAD_CONTENT = "load-content"
    ROOM_PASSWORD_REQUIRED = "room-password-required"
    USERS_COUNT = "users-count"
    ACTIVE_USERS = "active-users"
    ROOM_DELETED = "room-deleted"
    UPDATE_CONTENT = "update-content"
    CURSOR_UPDATE = "cursor-update"
    USER_TYPING = "user-typing"
    VERSION_HISTORY = "version-history"
    PING = "ping"
    ERROR = "error"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CreateRoomRequest(WireModel):
    room_name: Any = None
    password: str | None = None
    auto_delete_hours: int | None = Field(default=None, ge=0)
    has_password: bool = False


class JoinRoomRequest(WireModel):
    room_id: Any = None
    password: str | None = None
    user_name: str | None = Field(default=None, max_length=255)


class RoomRequest(WireModel):
    """Payload carrying only the target room, used by leave and delete."""

    room_id: Any = None


class UpdateContentRequest(WireModel):
    room_id: Any = None
    content: str
    should_encrypt: bool | None = None


class CursorUpdateRequest(WireModel):
    room_id: Any = None
    cursor_position: int = Field(ge=0)
    selection_start: int | None = Field(default=None, ge=0)
    selection_end: int | None = Field(default=None, ge=0)


class TypingRequest(WireModel):
    room_id: Any = None
    is_typing: bool = False


class VersionHistoryRequest(WireModel):
    room_id: Any = None
    limit: int | None = None


class RestoreVersionRequest(WireModel):
    room_id: Any = None
    version_id: int


class RoomInfo(WireModel):
    name: str
    has_password: bool
    auto_delete_hours: int


class VersionSnapshot(WireModel):
    id: int
    room_id: str
    content: str
    version_number: int
    created_by: str
    created_at: datetime


class PresenceSummary(WireModel):
    user_id: str
    user_name: str
    color: str
    cursor_position: int
    selection_start: int
    selection_end: int
    last_seen: datetime


def envelope(event: ServerEvent, data: Any = None) -> dict[str, Any]:
    """Build an outbound frame."""

    return {"event": event.value, "data": data}
