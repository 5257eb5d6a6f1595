from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends

from atelier.api.deps import optional_owner, require_owner, verify_token
from atelier.db import jobs_repo
from atelier.schemas.jobs import ApproveRequest, JobEvent, JobList, JobRecord, JobResponse
from atelier.services import control, orchestrator

router = APIRouter()


@router.post("/jobs/cancel-all")
async def cancel_all_jobs(
    owner_id: str = Depends(require_owner), _: None = Depends(verify_token)
) -> Dict[str, Any]:
    cancelled = await control.cancel_all(owner_id)
    return {"cancelled": cancelled, "count": len(cancelled)}


@router.post("/jobs/{job_type}", response_model=JobResponse, status_code=202)
async def create_job_api(
    job_type: str,
    request: Optional[Dict[str, Any]] = Body(default=None),
    owner_id: str = Depends(require_owner),
    _: None = Depends(verify_token),
) -> JobResponse:
    job = await orchestrator.create(job_type, owner_id, request or {})
    return JobResponse(job_id=job["job_id"], status=job["status"])


@router.get("/jobs", response_model=JobList)
async def list_jobs(
    job_type: Optional[str] = None,
    active_only: bool = False,
    limit: int = 200,
    owner_id: Optional[str] = Depends(optional_owner),
    _: None = Depends(verify_token),
) -> JobList:
    jobs = await jobs_repo.list_jobs(
        owner_id=owner_id,
        job_type=job_type,
        active_only=active_only,
        limit=max(1, min(limit, 1000)),
    )
    return JobList(jobs=jobs)


@router.get("/jobs/{job_id}", response_model=JobRecord)
async def get_job(
    job_id: str,
    owner_id: Optional[str] = Depends(optional_owner),
    _: None = Depends(verify_token),
) -> Dict[str, Any]:
    return await control.get_owned_job(job_id, owner_id)


@router.get("/jobs/{job_id}/children", response_model=JobList)
async def list_children(
    job_id: str,
    owner_id: Optional[str] = Depends(optional_owner),
    _: None = Depends(verify_token),
) -> JobList:
    await control.get_owned_job(job_id, owner_id)
    return JobList(jobs=await jobs_repo.list_children(job_id))


@router.get("/jobs/{job_id}/events")
async def list_events(
    job_id: str,
    limit: int = 200,
    owner_id: Optional[str] = Depends(optional_owner),
    _: None = Depends(verify_token),
) -> Dict[str, Any]:
    await control.get_owned_job(job_id, owner_id)
    events = await jobs_repo.fetch_events(job_id, limit=max(1, min(limit, 1000)))
    return {"events": [JobEvent(**event) for event in events]}


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: str,
    owner_id: str = Depends(require_owner),
    _: None = Depends(verify_token),
) -> JobResponse:
    job = await control.cancel(job_id, owner_id)
    return JobResponse(job_id=job_id, status=job["status"])


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
async def retry_job(
    job_id: str,
    owner_id: str = Depends(require_owner),
    _: None = Depends(verify_token),
) -> JobResponse:
    job = await control.retry(job_id, owner_id)
    return JobResponse(job_id=job_id, status=job["status"])


@router.post("/jobs/{job_id}/approve", response_model=JobResponse)
async def approve_job(
    job_id: str,
    request: ApproveRequest,
    owner_id: str = Depends(require_owner),
    _: None = Depends(verify_token),
) -> JobResponse:
    job = await control.approve(job_id, owner_id, request.image_index)
    return JobResponse(job_id=job_id, status=job["status"])
