"""Typed job payloads, keyed by job type and status.

A payload accumulates as a job moves through its stages, so each stage
model extends the one before it with the fields that stage introduces.
Units validate the stored payload against the model for the status they
expect before doing any work.
"""

from typing import Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from atelier.core.errors import ValidationError
from atelier.schemas.jobs import JobType


class StagePayload(BaseModel):
    model_config = ConfigDict(extra="allow")


class Rollup(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    complete: int = 0
    failed: int = 0


# image_edit


class ImageEditPending(StagePayload):
    source_url: str
    instruction: str


# enhancement


class EnhancementPending(StagePayload):
    source_url: str
    mode: Literal["portrait", "general", "detailed"] = "general"
    params: Dict[str, Any] = Field(default_factory=dict)


class EnhancementPolling(EnhancementPending):
    task_id: str
    poll_count: int = 0


# model_generation


class PosePrompt(BaseModel):
    type: Literal["text", "image"]
    value: str = Field(..., min_length=1)


class ModelGenerationPending(StagePayload):
    model_description: str
    set_description: Optional[str] = None
    model_id: Optional[str] = None
    auto_approve: bool = True
    pose_prompts: List[PosePrompt] = Field(default_factory=list)


class ModelGenerationBase(ModelGenerationPending):
    base_images: List[str] = Field(..., min_length=1)


class ModelGenerationPoses(ModelGenerationBase):
    base_model_image: str


# vto_pipeline


class VtoPending(StagePayload):
    person_url: str
    garment_url: str
    prompt_appendix: Optional[str] = None
    resolution: Literal["standard", "high"] = "standard"


class VtoPromptReady(VtoPending):
    prompt: str


class VtoPolling(VtoPromptReady):
    task_id: str
    poll_count: int = 0


# tiled_upscale / upscale_tile


class TiledUpscaleProcessing(StagePayload):
    source_url: str
    total_children: int
    min_success: int
    rollup: Rollup = Field(default_factory=Rollup)


class UpscaleTilePending(StagePayload):
    source_url: str
    index: int
    x: int
    y: int
    width: int
    height: int
    upscale_factor: float
    engine: str


class UpscaleTilePolling(UpscaleTilePending):
    task_id: str
    poll_count: int = 0


# batch_inpaint / inpaint_pair


class BatchInpaintProcessing(StagePayload):
    total_children: int
    min_success: int
    rollup: Rollup = Field(default_factory=Rollup)


class InpaintPairPending(StagePayload):
    person_url: str
    garment_url: str
    appendix: Optional[str] = None


class InpaintPairSegmented(InpaintPairPending):
    mask_ref: str
    mask_url: str


class InpaintPairPolling(InpaintPairSegmented):
    task_id: str
    poll_count: int = 0


STAGE_PAYLOADS: Dict[Tuple[JobType, str], Type[StagePayload]] = {
    (JobType.IMAGE_EDIT, "pending"): ImageEditPending,
    (JobType.ENHANCEMENT, "pending"): EnhancementPending,
    (JobType.ENHANCEMENT, "polling"): EnhancementPolling,
    (JobType.MODEL_GENERATION, "pending"): ModelGenerationPending,
    (JobType.MODEL_GENERATION, "base_generated"): ModelGenerationBase,
    (JobType.MODEL_GENERATION, "awaiting_approval"): ModelGenerationBase,
    (JobType.MODEL_GENERATION, "generating_poses"): ModelGenerationPoses,
    (JobType.VTO_PIPELINE, "pending"): VtoPending,
    (JobType.VTO_PIPELINE, "prompt_ready"): VtoPromptReady,
    (JobType.VTO_PIPELINE, "polling"): VtoPolling,
    (JobType.TILED_UPSCALE, "processing"): TiledUpscaleProcessing,
    (JobType.UPSCALE_TILE, "pending"): UpscaleTilePending,
    (JobType.UPSCALE_TILE, "polling"): UpscaleTilePolling,
    (JobType.BATCH_INPAINT, "processing"): BatchInpaintProcessing,
    (JobType.INPAINT_PAIR, "pending"): InpaintPairPending,
    (JobType.INPAINT_PAIR, "segmented"): InpaintPairSegmented,
    (JobType.INPAINT_PAIR, "polling"): InpaintPairPolling,
}


def validate_payload(job_type: str, status: str, payload: Dict[str, Any]) -> StagePayload:
    model = STAGE_PAYLOADS.get((JobType(job_type), status))
    if model is None:
        return StagePayload.model_validate(payload)
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) for err in exc.errors()
        )
        raise ValidationError(
            f"malformed {job_type}/{status} payload: {fields}",
            reason="malformed_payload",
        ) from exc
