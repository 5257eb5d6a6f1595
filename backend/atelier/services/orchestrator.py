"""Orchestrator: validate a creation request, persist the job, kick it off.

A request that fails validation never creates a job. Once the job rows
are durable the request has succeeded; a lost kick-off dispatch is left
for the watchdog to heal.
"""

from typing import Any, Dict, List, Tuple, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from atelier.core.errors import ValidationError
from atelier.core.logging import logger
from atelier.db import jobs_repo
from atelier.schemas.jobs import JobType
from atelier.schemas.payloads import Rollup, validate_payload
from atelier.schemas.requests import (
    BatchInpaintRequest,
    EnhancementRequest,
    ImageEditRequest,
    ModelGenerationRequest,
    TiledUpscaleRequest,
    VtoRequest,
)
from atelier.services.pipelines.tiled_upscale import MAX_TILES, plan_tiles, tile_count
from atelier.services.stages import graph_for
from atelier.services.workers import dispatch_next
from atelier.websocket.manager import manager

REQUEST_MODELS: Dict[JobType, Type[BaseModel]] = {
    JobType.IMAGE_EDIT: ImageEditRequest,
    JobType.ENHANCEMENT: EnhancementRequest,
    JobType.MODEL_GENERATION: ModelGenerationRequest,
    JobType.VTO_PIPELINE: VtoRequest,
    JobType.TILED_UPSCALE: TiledUpscaleRequest,
    JobType.BATCH_INPAINT: BatchInpaintRequest,
}


def parse_request(job_type: str, data: Dict[str, Any]) -> BaseModel:
    try:
        kind = JobType(job_type)
    except ValueError:
        raise ValidationError(
            f"unknown job type {job_type}", reason="unknown_job_type"
        ) from None
    model = REQUEST_MODELS.get(kind)
    if model is None:
        raise ValidationError(
            f"{job_type} jobs cannot be created directly", reason="unknown_job_type"
        )
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(problems, reason="invalid_request") from exc


def _fan_out_children(
    job_type: JobType, request: BaseModel
) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Parent payload and child payloads, derived only from the request."""
    if job_type == JobType.TILED_UPSCALE:
        if tile_count(request.width, request.height, request.tile_size) > MAX_TILES:
            raise ValidationError(
                f"image would need more than {MAX_TILES} tiles; raise tile_size",
                reason="too_many_tiles",
            )
        data = request.model_dump(mode="json")
        children = [
            {
                "source_url": data["source_url"],
                "upscale_factor": request.upscale_factor,
                "engine": request.engine,
                **tile,
            }
            for tile in plan_tiles(request.width, request.height, request.tile_size)
        ]
        parent = {**data, "min_success": len(children)}
    else:
        data = request.model_dump(mode="json")
        children = [dict(pair) for pair in data.pop("pairs")]
        parent = {"name": data.get("name"), "min_success": request.min_success}
    parent["total_children"] = len(children)
    parent["rollup"] = Rollup(total=len(children), pending=len(children)).model_dump()
    return parent, children


async def create(job_type: str, owner_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Create a job (and its children) and dispatch the first stage."""
    if not owner_id:
        raise ValidationError("owner identity is required", reason="missing_owner")
    request = parse_request(job_type, data)
    graph = graph_for(job_type)

    if not graph.is_fan_out:
        payload = request.model_dump(mode="json")
        validate_payload(job_type, graph.initial, payload)
        job = await jobs_repo.create_job(job_type, owner_id, payload, graph.initial)
        await _announce(job, "created")
        await dispatch_next(job)
        return job

    parent_payload, child_payloads = _fan_out_children(graph.job_type, request)
    child_graph = graph_for(graph.child_type.value)
    for payload in child_payloads:
        validate_payload(child_graph.job_type.value, child_graph.initial, payload)

    if not child_payloads and graph.fast_path_status:
        job = await jobs_repo.create_job(
            job_type, owner_id, parent_payload, graph.fast_path_status
        )
        await _announce(job, "created with no work, completed immediately")
        return job

    parent, children = await jobs_repo.create_job_tree(
        job_type,
        owner_id,
        parent_payload,
        graph.initial,
        child_graph.job_type.value,
        child_payloads,
        child_graph.initial,
    )
    await _announce(parent, f"created with {len(children)} children")
    for child in children:
        await dispatch_next(child)
    return parent


async def _announce(job: Dict[str, Any], message: str) -> None:
    await jobs_repo.record_event(job["job_id"], "info", message)
    logger.info(f"job {job['job_id']} ({job['job_type']}) {message}")
    await manager.job_status(job)
