from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from atelier.api.deps import verify_token
from atelier.schemas.jobs import UnitInvocation
from atelier.services.units import get_unit, run_unit, unit_names

router = APIRouter()


@router.get("/units")
async def list_units(_: None = Depends(verify_token)) -> Dict[str, Any]:
    return {"units": unit_names()}


@router.post("/units/{unit}", status_code=202)
async def invoke_unit(
    unit: str,
    request: UnitInvocation,
    background_tasks: BackgroundTasks,
    _: None = Depends(verify_token),
) -> Dict[str, Any]:
    if get_unit(unit) is None:
        raise HTTPException(status_code=404, detail=f"unknown unit {unit}")
    background_tasks.add_task(run_unit, unit, request.job_id, request.body)
    return {"accepted": True, "unit": unit, "job_id": request.job_id}
