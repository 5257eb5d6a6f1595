"""Model generation: base candidates, selection (QA or user), then poses.

Without ``auto_approve`` the job parks in ``awaiting_approval`` until the
owner picks a base image; that status has no owning unit and is never
swept.
"""

from typing import Any, Dict, List

from atelier.core.errors import VendorError
from atelier.schemas.jobs import COMPLETE, JobType
from atelier.services.pipelines.common import result_urls
from atelier.services.workers import Advance, StepContext, worker

BASE_CANDIDATES = 4


@worker("model_generation.base", JobType.MODEL_GENERATION, expects="pending")
async def generate_base(ctx: StepContext) -> Advance:
    payload = ctx.payload
    data = await ctx.tools.call(
        "image_generator",
        {
            "prompt": payload.model_description,
            "set_description": payload.set_description,
            "model_id": payload.model_id,
            "count": BASE_CANDIDATES,
        },
    )
    urls = result_urls(data, "image_generator")
    refs = [
        await ctx.store_remote(ctx.tools, url, f"base-{index}.png")
        for index, url in enumerate(urls)
    ]
    return Advance(
        "base_generated",
        {"base_images": urls, "base_refs": refs},
        note=f"{len(urls)} base candidates generated",
    )


@worker("model_generation.select", JobType.MODEL_GENERATION, expects="base_generated")
async def select_base(ctx: StepContext) -> Advance:
    payload = ctx.payload
    if not payload.auto_approve:
        return Advance("awaiting_approval", note="waiting for base model approval")
    data = await ctx.tools.call(
        "quality_assurance",
        {
            "images": payload.base_images,
            "model_description": payload.model_description,
        },
    )
    index = data.get("best_index")
    if not isinstance(index, int) or not 0 <= index < len(payload.base_images):
        raise VendorError(f"quality_assurance returned invalid best_index {index!r}")
    return Advance(
        "generating_poses",
        {
            "base_model_image": payload.base_images[index],
            "selected_index": index,
            "qa_reasoning": data.get("reasoning"),
        },
        note=f"base candidate {index} selected",
    )


@worker("model_generation.poses", JobType.MODEL_GENERATION, expects="generating_poses")
async def generate_poses(ctx: StepContext) -> Advance:
    payload = ctx.payload
    if not payload.pose_prompts:
        return Advance(COMPLETE, {"poses": []})
    data = await ctx.tools.call(
        "pose_generator",
        {
            "base_model_url": payload.base_model_image,
            "poses": [prompt.model_dump() for prompt in payload.pose_prompts],
        },
    )
    urls = result_urls(data, "pose_generator")
    if len(urls) != len(payload.pose_prompts):
        raise VendorError(
            f"pose_generator returned {len(urls)} images "
            f"for {len(payload.pose_prompts)} poses"
        )
    poses: List[Dict[str, Any]] = []
    for index, (prompt, url) in enumerate(zip(payload.pose_prompts, urls)):
        ref = await ctx.store_remote(ctx.tools, url, f"pose-{index}.png")
        poses.append(
            {"pose_prompt": prompt.value, "output_url": url, "output_ref": ref}
        )
    return Advance(COMPLETE, {"poses": poses})
