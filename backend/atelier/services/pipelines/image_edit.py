from atelier.schemas.jobs import COMPLETE, JobType
from atelier.services.pipelines.common import result_url
from atelier.services.workers import Advance, StepContext, worker


@worker("image_edit.run", JobType.IMAGE_EDIT, expects="pending")
async def run_edit(ctx: StepContext) -> Advance:
    data = await ctx.tools.call(
        "image_editor",
        {
            "source_url": ctx.payload.source_url,
            "instruction": ctx.payload.instruction,
        },
    )
    url = result_url(data, "image_editor")
    ref = await ctx.store_remote(ctx.tools, url, "edited.png")
    return Advance(COMPLETE, {"output_ref": ref, "output_url": url})
