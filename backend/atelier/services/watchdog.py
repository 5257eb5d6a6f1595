"""Watchdog sweeps, one per job family.

A sweep finds jobs in the family whose owned status has not moved within
the family's stall threshold and hands each back to the unit that owns
its status. The unit's status gate makes the re-dispatch safe if the
original invocation is merely slow. Jobs that keep stalling are failed
once they reach the retry cap. Fan-out parents are only re-aggregated:
their progress is their children's, so they carry no retry budget.
"""

from typing import Any, Dict, Optional

from atelier.core.config import MAX_WATCHDOG_RETRIES, watchdog_timing
from atelier.core.errors import ConflictError, JobTimeoutError
from atelier.core.logging import logger
from atelier.db import jobs_repo
from atelier.services import dispatch, transitions
from atelier.services.stages import (
    AGGREGATE_UNIT,
    GRAPHS,
    StageGraph,
    families,
    job_types_in_family,
)

_running: set[str] = set()
_last_sweeps: Dict[str, Dict[str, Any]] = {}


def timeout_error(job: Dict[str, Any], threshold: float) -> JobTimeoutError:
    return JobTimeoutError(
        f"Timed out in '{job['status']}': no progress for {int(threshold)}s "
        f"after {job['retry_count']} recovery attempts."
    )


async def recover(
    job: Dict[str, Any], graph: StageGraph, threshold: float, max_retries: int
) -> str:
    unit_name = graph.unit_for(job["status"])
    if unit_name is None:
        return "skipped"
    if unit_name == AGGREGATE_UNIT:
        await dispatch.dispatch(AGGREGATE_UNIT, job["job_id"])
        return "redispatched"
    try:
        if job["retry_count"] >= max_retries:
            error = timeout_error(job, threshold)
            await transitions.fail(
                job, error.message, expected_status=job["status"], note="watchdog timeout"
            )
            return "failed"
        await transitions.touch(job, retry_count=job["retry_count"] + 1)
    except ConflictError as exc:
        logger.info(f"watchdog: {job['job_id']} moved on during sweep ({exc.message})")
        return "skipped"
    await jobs_repo.record_event(
        job["job_id"],
        "warning",
        f"watchdog re-dispatched {unit_name}",
        {"retry_count": job["retry_count"] + 1},
    )
    await dispatch.dispatch(unit_name, job["job_id"])
    return "redispatched"


async def sweep(
    family: str,
    threshold: Optional[float] = None,
    max_retries: Optional[int] = None,
) -> Dict[str, Any]:
    """Run one sweep of ``family``; raises KeyError for unknown families."""
    if family not in families():
        raise KeyError(f"unknown watchdog family {family}")
    if threshold is None:
        threshold = watchdog_timing(family)[1]
    if max_retries is None:
        max_retries = MAX_WATCHDOG_RETRIES

    summary: Dict[str, Any] = {
        "family": family,
        "threshold_sec": threshold,
        "found": 0,
        "redispatched": 0,
        "failed": 0,
        "skipped": 0,
    }
    if family in _running:
        summary["skipped_sweep"] = True
        return summary
    _running.add(family)
    try:
        for job_type in job_types_in_family(family):
            graph = GRAPHS[job_type]
            stalled = await jobs_repo.find_stalled(
                graph.job_type.value, graph.swept_statuses, threshold
            )
            summary["found"] += len(stalled)
            for job in stalled:
                outcome = await recover(job, graph, threshold, max_retries)
                summary[outcome] += 1
    finally:
        _running.discard(family)
    if summary["found"]:
        logger.info(
            f"watchdog {family}: {summary['found']} stalled, "
            f"{summary['redispatched']} re-dispatched, {summary['failed']} failed"
        )
    _last_sweeps[family] = summary
    return summary


def last_sweeps() -> Dict[str, Dict[str, Any]]:
    return dict(_last_sweeps)
