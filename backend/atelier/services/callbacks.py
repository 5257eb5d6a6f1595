"""Inbound vendor callbacks.

A callback is applied exactly like a poll result for the job's current
polling stage. Anything that cannot be applied (unknown job, job already
moved on, another vendor's job) is logged and acknowledged so vendors
stop redelivering.
"""

from typing import Any, Dict

from atelier.core.errors import EngineError
from atelier.core.logging import logger
from atelier.db import jobs_repo
from atelier.schemas.jobs import VendorCallback
from atelier.services.pollers import get_poller
from atelier.services.stages import graph_for
from atelier.services.units import load_units
from atelier.services.workers import Fail, apply_outcome
from atelier.vendors.client import normalize_remote_status


async def handle_callback(
    vendor: str, job_id: str, callback: VendorCallback
) -> Dict[str, Any]:
    load_units()
    job = await jobs_repo.fetch_job(job_id)
    if job is None:
        logger.warning(f"webhook {vendor}: unknown job {job_id}")
        return {"applied": False, "reason": "unknown_job"}

    unit_name = graph_for(job["job_type"]).unit_for(job["status"])
    poller = get_poller(unit_name) if unit_name else None
    if poller is None:
        logger.info(f"webhook {vendor}: job {job_id} is {job['status']}, ignored")
        return {"applied": False, "reason": "not_polling", "status": job["status"]}

    ctx = await poller.context(job_id, {})
    if ctx is None:
        return {"applied": False, "reason": "not_polling"}
    expected_vendor = poller.vendor_for(ctx)
    if vendor != expected_vendor:
        logger.warning(
            f"webhook {vendor}: job {job_id} belongs to {expected_vendor}, ignored"
        )
        return {"applied": False, "reason": "vendor_mismatch"}

    try:
        remote = normalize_remote_status(callback.model_dump())
    except EngineError as exc:
        updated = await apply_outcome(poller.name, ctx.job, Fail(exc.message))
        return {
            "applied": updated is not None,
            "status": updated["status"] if updated else job["status"],
        }
    result = await poller.apply_remote(ctx, remote, reschedule=False)
    return {"applied": result != "discarded", "status": result}
