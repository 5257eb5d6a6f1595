from typing import Any, Dict

from fastapi import APIRouter, Depends

from atelier.api.deps import verify_token
from atelier.services import dispatch
from atelier.services.scheduler import scheduler_snapshot

router = APIRouter()


@router.get("/status")
async def status(_: None = Depends(verify_token)) -> Dict[str, Any]:
    invoker = dispatch.get_invoker()
    return {
        "invoker": invoker.snapshot() if invoker else {"mode": "none"},
        "scheduler": scheduler_snapshot(),
    }
