"""
Live feed WebSocket route.

Browsers connect to ``/ws/live-feed`` and receive ``rfid-scanned`` events
as ``{"event": ..., "data": {...}}`` JSON messages. Messages sent by the
client are ignored.
"""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from rfid_api.src.dependencies import get_broadcaster
from rfid_api.src.services.broadcast_service import LiveFeedBroadcaster

router = APIRouter(tags=["Live Feed"])


@router.websocket("/ws/live-feed")
async def live_feed(
    websocket: WebSocket,
    broadcaster: LiveFeedBroadcaster = Depends(get_broadcaster)
) -> None:
    await broadcaster.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)
