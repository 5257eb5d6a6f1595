import sqlite3
from typing import Any, Dict

from fastapi import APIRouter, Depends

from atelier.api.deps import verify_token
from atelier.core.logging import logger
from atelier.db import jobs_repo
from atelier.services import dispatch
from atelier.utils.time import utc_now

router = APIRouter()


@router.get("/health")
async def health(_: None = Depends(verify_token)) -> Dict[str, Any]:
    invoker = dispatch.get_invoker()
    try:
        active = await jobs_repo.count_active_jobs()
        database = "ok"
    except (sqlite3.Error, RuntimeError) as exc:
        logger.warning(f"health: database check failed: {exc}")
        active = {}
        database = "unavailable"
    healthy = database == "ok" and invoker is not None
    return {
        "status": "ok" if healthy else "degraded",
        "time": utc_now(),
        "database": database,
        "invoker": invoker.snapshot()["mode"] if invoker else None,
        "active_jobs": sum(active.values()),
    }
