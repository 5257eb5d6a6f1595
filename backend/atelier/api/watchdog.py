from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from atelier.api.deps import verify_token
from atelier.services import watchdog
from atelier.services.scheduler import scheduler_snapshot

router = APIRouter()


@router.post("/watchdog/{family}")
async def trigger_sweep(
    family: str,
    threshold_sec: Optional[float] = None,
    _: None = Depends(verify_token),
) -> Dict[str, Any]:
    try:
        return await watchdog.sweep(family, threshold=threshold_sec)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"unknown family {family}")


@router.get("/watchdog")
async def watchdog_status(_: None = Depends(verify_token)) -> Dict[str, Any]:
    return scheduler_snapshot()
