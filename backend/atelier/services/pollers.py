"""Poller framework for asynchronous vendor tasks.

A poller owns a ``polling`` status. Each run checks the remote task once:
still running refreshes the job's liveness and reschedules the poller;
success downloads and stores the result before the job moves on; a
remote failure fails the job with the vendor's reason. Vendor webhooks
feed the same ``apply_remote`` path, so whichever arrives first wins and
the other is discarded by the status gate.
"""

from typing import Any, Dict, Optional

from atelier.core.config import POLL_INTERVAL_SEC
from atelier.core.errors import ConflictError, EngineError, VendorError
from atelier.core.logging import logger
from atelier.schemas.jobs import COMPLETE, JobType
from atelier.schemas.payloads import validate_payload
from atelier.services import dispatch, transitions
from atelier.services.units import Unit, register
from atelier.services.workers import (
    Advance,
    Fail,
    Outcome,
    StepContext,
    apply_outcome,
    load_for_unit,
)
from atelier.vendors.client import RemoteStatus

POLLERS: Dict[str, "Poller"] = {}


class Poller:
    name: str = ""
    job_type: Optional[JobType] = None
    expects: str = "polling"
    vendor_name: str = ""
    next_status: str = COMPLETE
    result_filename: str = "result.png"

    def __init__(self, interval: Optional[float] = None) -> None:
        self.interval = POLL_INTERVAL_SEC if interval is None else interval

    def vendor_for(self, ctx: StepContext) -> str:
        return self.vendor_name

    def result_name(self, ctx: StepContext) -> str:
        return self.result_filename

    async def check(self, ctx: StepContext) -> RemoteStatus:
        return await ctx.vendor(self.vendor_for(ctx)).check(ctx.payload.task_id)

    async def finish(self, ctx: StepContext, remote: RemoteStatus) -> Outcome:
        if not remote.result_url:
            raise VendorError(f"{self.vendor_for(ctx)} reported success without a result")
        ref = await ctx.store_remote(
            ctx.vendor(self.vendor_for(ctx)), remote.result_url, self.result_name(ctx)
        )
        return Advance(
            self.next_status,
            {"output_ref": ref, "output_url": remote.result_url},
        )

    async def run(self, job_id: str, body: Dict[str, Any]) -> None:
        ctx = await self.context(job_id, body)
        if ctx is None:
            return
        try:
            remote = await self.check(ctx)
        except EngineError as exc:
            await apply_outcome(self.name, ctx.job, Fail(exc.message))
            return
        except Exception as exc:
            logger.exception(f"{self.name}: status check crashed for {job_id}")
            await apply_outcome(self.name, ctx.job, Fail(f"{self.name} failed: {exc}"))
            return
        await self.apply_remote(ctx, remote, reschedule=True)

    async def context(
        self, job_id: str, body: Dict[str, Any]
    ) -> Optional[StepContext]:
        job = await load_for_unit(self.name, job_id, self.expects)
        if job is None:
            return None
        try:
            payload = validate_payload(job["job_type"], self.expects, job["payload"])
        except EngineError as exc:
            await apply_outcome(self.name, job, Fail(exc.message))
            return None
        return StepContext(job, payload, body)

    async def apply_remote(
        self, ctx: StepContext, remote: RemoteStatus, reschedule: bool
    ) -> str:
        job = ctx.job
        if remote.state == "in_progress":
            try:
                await transitions.touch(
                    job,
                    payload_patch={
                        "poll_count": job["payload"].get("poll_count", 0) + 1,
                        "remote_status": remote.raw_status,
                    },
                )
            except ConflictError as exc:
                logger.info(f"{self.name}: {job['job_id']} moved on ({exc.message})")
                return "discarded"
            if reschedule:
                await dispatch.dispatch(self.name, job["job_id"], delay=self.interval)
            return "in_progress"
        if remote.state == "failed":
            outcome: Outcome = Fail(remote.error or "vendor reported failure")
        else:
            try:
                outcome = await self.finish(ctx, remote)
            except EngineError as exc:
                outcome = Fail(exc.message)
            except Exception as exc:
                logger.exception(f"{self.name}: finishing {job['job_id']} crashed")
                outcome = Fail(f"{self.name} failed: {exc}")
        updated = await apply_outcome(self.name, job, outcome)
        if updated is None:
            return "discarded"
        return updated["status"]


def register_poller(poller: Poller) -> Poller:
    register(
        Unit(
            name=poller.name,
            kind="poller",
            handler=poller.run,
            job_type=poller.job_type,
            expects=poller.expects,
            entry_delay=poller.interval,
        )
    )
    POLLERS[poller.name] = poller
    return poller


def get_poller(name: str) -> Optional[Poller]:
    return POLLERS.get(name)
