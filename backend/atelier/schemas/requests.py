"""Creation requests, one per top-level job type."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, HttpUrl, model_validator

from atelier.schemas.payloads import PosePrompt


class ImageEditRequest(BaseModel):
    source_url: HttpUrl
    instruction: str = Field(..., min_length=1)


class EnhancementRequest(BaseModel):
    source_url: HttpUrl
    mode: Literal["portrait", "general", "detailed"] = "general"
    params: dict = Field(default_factory=dict)


class ModelGenerationRequest(BaseModel):
    model_description: str = Field(..., min_length=1)
    set_description: Optional[str] = None
    model_id: Optional[str] = None
    auto_approve: bool = True
    pose_prompts: List[PosePrompt] = Field(default_factory=list)


class VtoRequest(BaseModel):
    person_url: HttpUrl
    garment_url: HttpUrl
    prompt_appendix: Optional[str] = None
    resolution: Literal["standard", "high"] = "standard"


class TiledUpscaleRequest(BaseModel):
    source_url: HttpUrl
    width: int = Field(..., gt=0, le=50000)
    height: int = Field(..., gt=0, le=50000)
    tile_size: int = Field(1024, ge=256, le=4096)
    upscale_factor: float = Field(2.0, gt=1.0, le=8.0)
    engine: Literal["enhancor_detailed", "enhancor_general", "comfyui"] = (
        "enhancor_detailed"
    )


class InpaintPair(BaseModel):
    person_url: HttpUrl
    garment_url: HttpUrl
    appendix: Optional[str] = None


class BatchInpaintRequest(BaseModel):
    name: Optional[str] = None
    pairs: List[InpaintPair]
    min_success: int = Field(1, ge=1)

    @model_validator(mode="after")
    def _check_min_success(self) -> "BatchInpaintRequest":
        if self.pairs and self.min_success > len(self.pairs):
            raise ValueError("min_success cannot exceed the number of pairs")
        return self
