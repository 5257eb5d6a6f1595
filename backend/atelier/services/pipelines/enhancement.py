"""Single-image enhancement through the Enhancor queue API."""

from atelier.schemas.jobs import JobType
from atelier.services.pipelines.common import with_webhook
from atelier.services.pollers import Poller, register_poller
from atelier.services.workers import Advance, StepContext, worker

VENDOR = "enhancor"


@worker("enhancement.submit", JobType.ENHANCEMENT, expects="pending")
async def submit(ctx: StepContext) -> Advance:
    body = {"img_url": ctx.payload.source_url, "mode": ctx.payload.mode}
    body.update(ctx.payload.params)
    task_id = await ctx.vendor(VENDOR).submit(with_webhook(body, VENDOR, ctx.job_id))
    return Advance(
        "polling",
        {"task_id": task_id, "vendor": VENDOR, "poll_count": 0},
        note=f"submitted to {VENDOR} as {task_id}",
    )


class EnhancementPoller(Poller):
    name = "enhancement.poll"
    job_type = JobType.ENHANCEMENT
    vendor_name = VENDOR
    result_filename = "enhanced.png"


register_poller(EnhancementPoller())
