"""Status-changing writes shared by every unit.

Each write goes through the Job Store guards, is appended to the job's
event log and broadcast to dashboards. When a child job lands in a
terminal status its parent's aggregation is dispatched.
"""

import logging
from typing import Any, Dict, Optional

from atelier.core.errors import ConflictError
from atelier.core.logging import logger
from atelier.db import jobs_repo
from atelier.schemas.jobs import FAILED, TERMINAL_STATUSES
from atelier.services import dispatch
from atelier.services.stages import AGGREGATE_UNIT, graph_for
from atelier.websocket.manager import manager


async def transition(
    job: Dict[str, Any],
    status: str,
    payload_patch: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
    retry_count: Optional[int] = None,
    expected_status: Optional[str] = None,
    note: Optional[str] = None,
) -> Dict[str, Any]:
    """Move ``job`` to ``status``; raises ConflictError if the graph forbids it."""
    current = job["status"]
    if status != current and not graph_for(job["job_type"]).can_transition(
        current, status
    ):
        raise ConflictError(
            f"{job['job_type']} cannot move from {current} to {status}",
            reason="illegal_transition",
        )
    updated = await jobs_repo.update_job(
        job["job_id"],
        status=status,
        payload_patch=payload_patch,
        error_message=error_message,
        retry_count=retry_count,
        expected_status=expected_status,
    )
    level = "error" if status == FAILED else "info"
    message = note or f"{current} -> {status}"
    meta = {"error": error_message} if error_message else None
    await jobs_repo.record_event(job["job_id"], level, message, meta)
    logger.log(
        logging.WARNING if status == FAILED else logging.INFO,
        f"job {job['job_id']} ({job['job_type']}) {message}"
        + (f": {error_message}" if error_message else ""),
    )
    await manager.job_status(updated)
    if status in TERMINAL_STATUSES:
        await notify_parent(updated)
    return updated


async def fail(
    job: Dict[str, Any],
    error_message: str,
    expected_status: Optional[str] = None,
    note: Optional[str] = None,
) -> Dict[str, Any]:
    return await transition(
        job,
        FAILED,
        error_message=error_message,
        expected_status=expected_status,
        note=note or f"{job['status']} -> failed",
    )


async def touch(
    job: Dict[str, Any],
    payload_patch: Optional[Dict[str, Any]] = None,
    retry_count: Optional[int] = None,
) -> Dict[str, Any]:
    """Refresh ``updated_at`` without changing status (liveness proof)."""
    return await jobs_repo.update_job(
        job["job_id"],
        payload_patch=payload_patch,
        retry_count=retry_count,
        expected_status=job["status"],
    )


async def notify_parent(job: Dict[str, Any]) -> None:
    if job.get("parent_id"):
        await dispatch.dispatch(AGGREGATE_UNIT, job["parent_id"])


async def reset(
    job: Dict[str, Any],
    status: str,
    payload_patch: Optional[Dict[str, Any]] = None,
    note: str = "retried by user",
) -> Dict[str, Any]:
    """Explicit retry from ``failed`` back to a re-entry status."""
    updated = await jobs_repo.reset_job(job["job_id"], status, payload_patch)
    await jobs_repo.record_event(job["job_id"], "info", f"{note}: failed -> {status}")
    logger.info(f"job {job['job_id']} ({job['job_type']}) {note}, now {status}")
    await manager.job_status(updated)
    return updated
