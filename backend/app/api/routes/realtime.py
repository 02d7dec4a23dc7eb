from fastapi import APIRouter, WebSocket
from app.services.broadcaster import RosterBroadcaster

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def roster_updates(websocket: WebSocket):
    """
    Push channel for roster change signals.

    No authentication: the channel only says "something changed", and clients
    re-fetch through the authenticated list endpoint. Inbound frames, text or
    binary, are read only so a disconnect is noticed.
    """
    broadcaster: RosterBroadcaster = websocket.app.state.broadcaster
    await broadcaster.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        broadcaster.disconnect(websocket)
