from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from atelier.api.deps import verify_ws_token
from atelier.db import jobs_repo
from atelier.utils.time import utc_now
from atelier.websocket.manager import manager

router = APIRouter()


@router.websocket("/events")
async def events(websocket: WebSocket) -> None:
    if not await verify_ws_token(websocket):
        return
    await manager.connect(websocket)
    await websocket.send_json(
        {
            "type": "connected",
            "timestamp": utc_now(),
            "active_jobs": await jobs_repo.count_active_jobs(),
        }
    )
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
