"""Virtual try-on: prompt preparation, bitStudio submission, polling."""

from atelier.core.errors import VendorError
from atelier.schemas.jobs import JobType
from atelier.services.pipelines.common import with_webhook
from atelier.services.pollers import Poller, register_poller
from atelier.services.workers import Advance, StepContext, worker

VENDOR = "bitstudio"


@worker("vto.prepare", JobType.VTO_PIPELINE, expects="pending")
async def prepare(ctx: StepContext) -> Advance:
    data = await ctx.tools.call(
        "vto_prompt_helper",
        {
            "person_image_url": ctx.payload.person_url,
            "garment_image_url": ctx.payload.garment_url,
            "prompt_appendix": ctx.payload.prompt_appendix,
        },
    )
    prompt = data.get("final_prompt") or data.get("prompt")
    if not prompt:
        raise VendorError("vto_prompt_helper returned no prompt")
    return Advance("prompt_ready", {"prompt": prompt})


@worker("vto.submit", JobType.VTO_PIPELINE, expects="prompt_ready")
async def submit(ctx: StepContext) -> Advance:
    body = {
        "task": "virtual-try-on",
        "person_image_url": ctx.payload.person_url,
        "outfit_image_url": ctx.payload.garment_url,
        "prompt": ctx.payload.prompt,
        "resolution": ctx.payload.resolution,
    }
    task_id = await ctx.vendor(VENDOR).submit(with_webhook(body, VENDOR, ctx.job_id))
    return Advance(
        "polling",
        {"task_id": task_id, "vendor": VENDOR, "poll_count": 0},
        note=f"submitted to {VENDOR} as {task_id}",
    )


class VtoPoller(Poller):
    name = "vto.poll"
    job_type = JobType.VTO_PIPELINE
    vendor_name = VENDOR
    result_filename = "vto.png"


register_poller(VtoPoller())
