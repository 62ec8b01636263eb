"""Route inbound session events to the room synchronization components."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict
from uuid import uuid4

from pydantic import ValidationError

from ..core.config import Settings
from ..core.errors import SyncError
from ..schemas import events as schemas
from ..schemas.events import ClientEvent, ServerEvent, envelope
from .content import ContentChannel, SnapshotPolicy
from .gate import RoomGate, generate_room_id
from .history import VersionArchive
from .lifecycle import LifecycleManager
from .presence import PresenceChannel
from .registry import ClientSession, CloseCallable, SendCallable, SessionRegistry
from .store import NoteStore

logger = logging.getLogger(__name__)

Handler = Callable[[ClientSession, Dict[str, Any]], Awaitable[None]]

FAILURE_MESSAGES = {
    ClientEvent.CREATE_ROOM: "Failed to create room",
    ClientEvent.JOIN_ROOM: "Failed to join room",
    ClientEvent.LEAVE_ROOM: "Failed to leave room",
    ClientEvent.DELETE_ROOM: "Failed to delete room",
    ClientEvent.UPDATE_CONTENT: "Failed to update content",
    ClientEvent.CURSOR_UPDATE: "Failed to update cursor",
    ClientEvent.TYPING: "Failed to update typing state",
    ClientEvent.GET_VERSION_HISTORY: "Failed to get version history",
    ClientEvent.RESTORE_VERSION: "Failed to restore version",
}


class SyncHub:
    """Own one server's registry and wire the per-event handlers around it.

    Errors raised by a handler are reported to the originating session only and
    never affect other sessions or the registry.
    """

    def __init__(
        self,
        store: NoteStore,
        settings: Settings,
        *,
        registry: SessionRegistry | None = None,
        snapshot_policy: SnapshotPolicy | None = None,
        room_id_factory: Callable[[], str] = generate_room_id,
    ) -> None:
        self.store = store
        self.settings = settings
        self.registry = registry or SessionRegistry()
        self.gate = RoomGate(store, settings, id_factory=room_id_factory)
        self.content = ContentChannel(store, self.registry, settings, snapshot_policy=snapshot_policy)
        self.presence = PresenceChannel(store, self.registry, settings)
        self.archive = VersionArchive(store, settings)
        self.lifecycle = LifecycleManager(store, self.registry, self.presence, self.content, settings)
        self._tasks: list[asyncio.Task[None]] = []
        self._handlers: Dict[ClientEvent, Handler] = {
            ClientEvent.CREATE_ROOM: self._create_room,
            ClientEvent.JOIN_ROOM: self._join_room,
            ClientEvent.LEAVE_ROOM: self._leave_room,
            ClientEvent.DELETE_ROOM: self._delete_room,
            ClientEvent.UPDATE_CONTENT: self._update_content,
            ClientEvent.CURSOR_UPDATE: self._cursor_update,
            ClientEvent.TYPING: self._typing,
            ClientEvent.GET_VERSION_HISTORY: self._get_version_history,
            ClientEvent.RESTORE_VERSION: self._restore_version,
        }

    def open_session(
        self,
        send: SendCallable,
        close: CloseCallable | None = None,
        *,
        session_id: str | None = None,
    ) -> ClientSession:
        session = ClientSession(session_id=session_id or uuid4().hex, send=send, close=close)
        self.lifecycle.connect(session)
        return session

    async def close_session(self, session: ClientSession) -> None:
        await self.lifecycle.handle_disconnect(session)

    async def dispatch(self, session: ClientSession, message: object) -> None:
        """Handle one inbound frame from ``session``."""

        session.touch()
        if not isinstance(message, dict):
            await self.emit_error(session, "Invalid message")
            return

        name = message.get("event")
        try:
            event = ClientEvent(name)
        except ValueError:
            await self.emit_error(session, f"Unknown event: {name}")
            return
        if event is ClientEvent.PONG:
            return

        data = message.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            await self.emit_error(session, "Invalid data")
            return

        try:
            await self._handlers[event](session, data)
        except ValidationError as exc:
            logger.debug("Rejected %s payload from %s: %s", event.value, session.session_id, exc)
            await self.emit_error(session, "Invalid data")
        except SyncError as exc:
            await self.emit_error(session, exc.message)
        except Exception:
            logger.exception("Error handling %s from %s", event.value, session.session_id)
            await self.emit_error(session, FAILURE_MESSAGES[event])

    async def emit(self, session: ClientSession, event: ServerEvent, data: Any = None) -> None:
        try:
            await session.send(envelope(event, data))
        except Exception as exc:  # the session may have dropped mid-handler
            logger.debug("Could not send %s to %s: %s", event.value, session.session_id, exc)

    async def emit_error(self, session: ClientSession, message: str) -> None:
        await self.emit(session, ServerEvent.ERROR, {"message": message})

    def start_background_tasks(self) -> None:
        self._tasks = [
            asyncio.create_task(self.lifecycle.run_sweeper(), name="idle-room-sweeper"),
            asyncio.create_task(self.lifecycle.run_heartbeat(), name="session-heartbeat"),
        ]

    async def stop_background_tasks(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _create_room(self, session: ClientSession, data: Dict[str, Any]) -> None:
        payload = schemas.CreateRoomRequest.model_validate(data)
        room = await self.gate.create_room(
            payload.room_name,
            password=payload.password,
            has_password=payload.has_password,
            auto_delete_hours=payload.auto_delete_hours,
            created_by=session.user_name,
            owner_id=session.user_id,
        )
        await self.emit(session, ServerEvent.ROOM_CREATED, {"roomId": room.room_id, "roomName": room.room_name})

    async def _join_room(self, session: ClientSession, data: Dict[str, Any]) -> None:
        payload = schemas.JoinRoomRequest.model_validate(data)
        admission = await self.gate.admit(payload.room_id, payload.password)
        if not admission.granted:
            await self.emit(session, ServerEvent.ROOM_PASSWORD_REQUIRED, {"roomId": admission.room_id})
            return

        room_id = admission.room_id
        if payload.user_name and payload.user_name.strip():
            session.user_name = payload.user_name.strip()
        session.cursor_position = session.selection_start = session.selection_end = 0

        await self.lifecycle.enter_room(session, room_id)
        await self.presence.record_cursor(session)

        current = await self.content.load(room_id) or admission.room
        await self.emit(
            session,
            ServerEvent.LOAD_CONTENT,
            {"content": current.content if current else "", "roomInfo": admission.room_info().to_wire()},
        )
        await self.presence.announce(room_id)
        logger.info("User %s (%s) joined room %s", session.user_name, session.session_id, room_id)

    async def _leave_room(self, session: ClientSession, data: Dict[str, Any]) -> None:
        payload = schemas.RoomRequest.model_validate(data)
        await self.lifecycle.leave_room(session, payload.room_id)

    async def _delete_room(self, session: ClientSession, data: Dict[str, Any]) -> None:
        payload = schemas.RoomRequest.model_validate(data)
        await self.lifecycle.delete_room(session, payload.room_id)

    async def _update_content(self, session: ClientSession, data: Dict[str, Any]) -> None:
        payload = schemas.UpdateContentRequest.model_validate(data)
        await self.content.submit_edit(session, payload.room_id, payload.content, should_encrypt=payload.should_encrypt)

    async def _cursor_update(self, session: ClientSession, data: Dict[str, Any]) -> None:
        payload = schemas.CursorUpdateRequest.model_validate(data)
        await self.presence.update_cursor(
            session,
            payload.room_id,
            payload.cursor_position,
            payload.selection_start,
            payload.selection_end,
        )

    async def _typing(self, session: ClientSession, data: Dict[str, Any]) -> None:
        payload = schemas.TypingRequest.model_validate(data)
        await self.presence.set_typing(session, payload.room_id, payload.is_typing)

    async def _get_version_history(self, session: ClientSession, data: Dict[str, Any]) -> None:
        payload = schemas.VersionHistoryRequest.model_validate(data)
        versions = await self.archive.list_versions(session, payload.room_id, payload.limit)
        await self.emit(session, ServerEvent.VERSION_HISTORY, [version.to_wire() for version in versions])

    async def _restore_version(self, session: ClientSession, data: Dict[str, Any]) -> None:
        payload = schemas.RestoreVersionRequest.model_validate(data)
        await self.content.restore_version(session, payload.room_id, payload.version_id)
