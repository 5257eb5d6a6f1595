"""Parent rollup for fan-out jobs.

The rollup is always recomputed from a fresh read of every child, never
from deltas, so concurrent or repeated child completions converge on the
same parent state.
"""

from typing import Any, Dict, List

from atelier.core.errors import ConflictError
from atelier.core.logging import logger
from atelier.db import jobs_repo
from atelier.schemas.jobs import COMPLETE, FAILED, TERMINAL_STATUSES
from atelier.schemas.payloads import Rollup
from atelier.services import transitions
from atelier.services.stages import AGGREGATE_UNIT, graph_for
from atelier.services.units import Unit, register


def compute_rollup(children: List[Dict[str, Any]]) -> Rollup:
    rollup = Rollup(total=len(children))
    for child in children:
        status = child["status"]
        if status == COMPLETE:
            rollup.complete += 1
        elif status == FAILED:
            rollup.failed += 1
        elif status == graph_for(child["job_type"]).initial:
            rollup.pending += 1
        else:
            rollup.processing += 1
    return rollup


def resolve(rollup: Rollup, min_success: int):
    """Parent status for a rollup, or None while children are still running."""
    if rollup.complete + rollup.failed < rollup.total:
        return None
    if rollup.complete >= min_success:
        return COMPLETE
    return FAILED


def failure_message(rollup: Rollup, min_success: int) -> str:
    return (
        f"Only {rollup.complete} of {rollup.total} children succeeded "
        f"(minimum {min_success})."
    )


async def aggregate(job_id: str, body: Dict[str, Any]) -> None:
    parent = await jobs_repo.fetch_job(job_id)
    if parent is None:
        logger.warning(f"aggregate: parent {job_id} not found")
        return
    if parent["status"] in TERMINAL_STATUSES:
        return
    if not graph_for(parent["job_type"]).is_fan_out:
        logger.warning(f"aggregate: {job_id} is not a fan-out job")
        return

    children = await jobs_repo.list_children(job_id)
    rollup = compute_rollup(children)
    payload = parent["payload"]
    min_success = int(payload.get("min_success", rollup.total))
    patch: Dict[str, Any] = {"rollup": rollup.model_dump()}
    target = resolve(rollup, min_success)

    try:
        if target is None:
            await transitions.touch(parent, payload_patch=patch)
            return
        if target == COMPLETE:
            patch["results"] = [
                {
                    "job_id": child["job_id"],
                    "output_ref": child["payload"].get("output_ref"),
                    **_position(child["payload"]),
                }
                for child in children
                if child["status"] == COMPLETE
            ]
            await transitions.transition(
                parent,
                COMPLETE,
                payload_patch=patch,
                expected_status=parent["status"],
                note=f"{rollup.complete}/{rollup.total} children complete",
            )
        else:
            await transitions.transition(
                parent,
                FAILED,
                payload_patch=patch,
                error_message=failure_message(rollup, min_success),
                expected_status=parent["status"],
            )
    except ConflictError as exc:
        logger.info(f"aggregate: {job_id} discarded ({exc.message})")


def _position(payload: Dict[str, Any]) -> Dict[str, Any]:
    if "index" in payload:
        return {"index": payload["index"]}
    return {}


register(Unit(name=AGGREGATE_UNIT, kind="aggregate", handler=aggregate))
