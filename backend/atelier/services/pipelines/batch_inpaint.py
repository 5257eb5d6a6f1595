"""Batch inpainting: one ``inpaint_pair`` child per person/garment pair."""

from atelier.schemas.jobs import JobType
from atelier.services.pipelines.common import result_url, with_webhook
from atelier.services.pollers import Poller, register_poller
from atelier.services.workers import Advance, StepContext, worker

VENDOR = "bitstudio"
MASK_EXPANSION_PERCENT = 3


@worker("inpaint.segment", JobType.INPAINT_PAIR, expects="pending")
async def segment(ctx: StepContext) -> Advance:
    data = await ctx.tools.call(
        "segmentation",
        {
            "person_image_url": ctx.payload.person_url,
            "garment_image_url": ctx.payload.garment_url,
        },
    )
    mask_url = result_url(data, "segmentation", key="mask_url")
    mask_ref = await ctx.store_remote(ctx.tools, mask_url, "mask.png")
    return Advance("segmented", {"mask_url": mask_url, "mask_ref": mask_ref})


@worker("inpaint.submit", JobType.INPAINT_PAIR, expects="segmented")
async def submit(ctx: StepContext) -> Advance:
    payload = ctx.payload
    body = {
        "task": "inpaint",
        "person_image_url": payload.person_url,
        "reference_image_url": payload.garment_url,
        "mask_image_url": payload.mask_url,
        "prompt_appendix": payload.appendix,
        "mask_expansion_percent": MASK_EXPANSION_PERCENT,
    }
    task_id = await ctx.vendor(VENDOR).submit(with_webhook(body, VENDOR, ctx.job_id))
    return Advance(
        "polling",
        {"task_id": task_id, "vendor": VENDOR, "poll_count": 0},
        note=f"submitted to {VENDOR} as {task_id}",
    )


class InpaintPoller(Poller):
    name = "inpaint.poll"
    job_type = JobType.INPAINT_PAIR
    vendor_name = VENDOR
    result_filename = "inpainted.png"


register_poller(InpaintPoller())
