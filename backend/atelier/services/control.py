"""User-initiated actions: cancel, retry and approve.

These are the only writes that do not come from the unit owning a job's
active stage. Cancellation is unconditional and always wins over a late
unit result; retry only ever starts from ``failed``.
"""

from typing import Any, Dict, List, Optional

from atelier.core.errors import ConflictError, NotFoundError, ValidationError
from atelier.core.logging import logger
from atelier.db import jobs_repo
from atelier.schemas.jobs import FAILED, TERMINAL_STATUSES, JobType
from atelier.services import dispatch, transitions
from atelier.services.stages import AGGREGATE_UNIT, graph_for
from atelier.services.workers import dispatch_next

CANCEL_MESSAGE = "Cancelled by user."


async def get_owned_job(job_id: str, owner_id: Optional[str]) -> Dict[str, Any]:
    job = await jobs_repo.get_job(job_id)
    if owner_id and job["owner_id"] != owner_id:
        raise NotFoundError(f"job {job_id} not found")
    return job


async def cancel(job_id: str, owner_id: Optional[str]) -> Dict[str, Any]:
    job = await get_owned_job(job_id, owner_id)
    if job["status"] in TERMINAL_STATUSES:
        raise ConflictError(f"job {job_id} is already {job['status']}", reason="terminal")
    # Parent first, so aggregation triggered by the children's cancellation no-ops.
    updated = await transitions.fail(job, CANCEL_MESSAGE, note="cancelled by user")
    if graph_for(job["job_type"]).is_fan_out:
        for child in await jobs_repo.list_children(job_id):
            if child["status"] in TERMINAL_STATUSES:
                continue
            try:
                await transitions.fail(child, CANCEL_MESSAGE, note="cancelled with parent")
            except ConflictError:
                logger.info(f"cancel: child {child['job_id']} finished first")
    return updated


async def cancel_all(owner_id: str) -> List[str]:
    cancelled = []
    for job in await jobs_repo.list_jobs(owner_id=owner_id, active_only=True, limit=1000):
        try:
            await cancel(job["job_id"], owner_id)
        except ConflictError:
            continue
        cancelled.append(job["job_id"])
    return cancelled


async def retry(job_id: str, owner_id: Optional[str]) -> Dict[str, Any]:
    job = await get_owned_job(job_id, owner_id)
    if job["status"] != FAILED:
        raise ConflictError(
            f"job {job_id} is {job['status']}, only failed jobs can be retried",
            reason="not_failed",
        )
    if job["parent_id"]:
        parent = await jobs_repo.get_job(job["parent_id"])
        if parent["status"] in TERMINAL_STATUSES:
            raise ConflictError(
                f"parent {parent['job_id']} is {parent['status']}; retry the parent",
                reason="parent_terminal",
            )

    graph = graph_for(job["job_type"])
    if not graph.is_fan_out:
        updated = await transitions.reset(job, graph.retry_status)
        await dispatch_next(updated)
        return updated

    updated = await transitions.reset(job, graph.retry_status)
    child_graph = graph_for(graph.child_type.value)
    restarted = []
    for child in await jobs_repo.list_children(job_id):
        if child["status"] != FAILED:
            continue
        restarted.append(
            await transitions.reset(
                child, child_graph.retry_status, note="retried with parent"
            )
        )
    for child in restarted:
        await dispatch_next(child)
    await dispatch.dispatch(AGGREGATE_UNIT, job_id)
    return updated


async def approve(
    job_id: str, owner_id: Optional[str], image_index: int
) -> Dict[str, Any]:
    job = await get_owned_job(job_id, owner_id)
    if job["job_type"] != JobType.MODEL_GENERATION.value:
        raise ValidationError(
            f"{job['job_type']} jobs have no approval step", reason="not_approvable"
        )
    if job["status"] != "awaiting_approval":
        raise ConflictError(
            f"job {job_id} is {job['status']}, not awaiting approval",
            reason="not_awaiting_approval",
        )
    base_images: List[Any] = job["payload"].get("base_images") or []
    if image_index >= len(base_images):
        raise ValidationError(
            f"image_index {image_index} out of range ({len(base_images)} candidates)",
            reason="invalid_request",
        )
    updated = await transitions.transition(
        job,
        "generating_poses",
        payload_patch={
            "base_model_image": base_images[image_index],
            "selected_index": image_index,
        },
        expected_status="awaiting_approval",
        note=f"base candidate {image_index} approved",
    )
    await dispatch_next(updated)
    return updated
