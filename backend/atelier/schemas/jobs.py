from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

COMPLETE = "complete"
FAILED = "failed"
TERMINAL_STATUSES = frozenset({COMPLETE, FAILED})


class JobType(str, Enum):
    IMAGE_EDIT = "image_edit"
    ENHANCEMENT = "enhancement"
    MODEL_GENERATION = "model_generation"
    VTO_PIPELINE = "vto_pipeline"
    TILED_UPSCALE = "tiled_upscale"
    UPSCALE_TILE = "upscale_tile"
    BATCH_INPAINT = "batch_inpaint"
    INPAINT_PAIR = "inpaint_pair"


class JobResponse(BaseModel):
    job_id: str
    status: str


class JobRecord(BaseModel):
    job_id: str
    job_type: str
    status: str
    owner_id: str
    parent_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    retry_count: int = 0
    created_at: str
    updated_at: str


class JobList(BaseModel):
    jobs: List[JobRecord]


class JobEvent(BaseModel):
    event_id: int
    job_id: str
    created_at: str
    level: str
    message: str
    meta: Optional[Dict[str, Any]] = None


class UnitInvocation(BaseModel):
    job_id: str
    body: Dict[str, Any] = Field(default_factory=dict)


class ApproveRequest(BaseModel):
    image_index: int = Field(..., ge=0)


class VendorCallback(BaseModel):
    status: str
    result: Optional[str] = None
    error: Optional[str] = None
