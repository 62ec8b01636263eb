"""WebSocket endpoint carrying room synchronization events."""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..services.hub import SyncHub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def sync_endpoint(websocket: WebSocket) -> None:
    """Accept a session and feed its frames to the hub until it disconnects."""

    hub: SyncHub = websocket.app.state.hub
    await websocket.accept()
    session = hub.open_session(websocket.send_json, websocket.close)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Malformed frame from %s", session.session_id)
                await hub.emit_error(session, "Invalid message")
                continue
            await hub.dispatch(session, message)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.close_session(session)
