from typing import Optional

from fastapi import Header, HTTPException, Request, WebSocket

from atelier.core.config import BACKEND_TOKEN


async def verify_token(request: Request) -> None:
    if BACKEND_TOKEN and request.headers.get("X-Backend-Token") != BACKEND_TOKEN:
        raise HTTPException(status_code=401, detail="unauthorized")


async def verify_ws_token(websocket: WebSocket) -> bool:
    if BACKEND_TOKEN and websocket.headers.get("x-backend-token") != BACKEND_TOKEN:
        await websocket.close(code=1008)
        return False
    return True


async def require_owner(x_owner_id: Optional[str] = Header(default=None)) -> str:
    if not x_owner_id:
        raise HTTPException(status_code=401, detail="missing X-Owner-Id")
    return x_owner_id


async def optional_owner(x_owner_id: Optional[str] = Header(default=None)) -> Optional[str]:
    return x_owner_id or None
