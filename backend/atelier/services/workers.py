"""Worker framework: one pipeline stage per unit invocation.

A worker re-reads its job, does nothing unless the job is still in the
status it owns, validates the stored payload for that status, runs its
step and writes the outcome with ``expected_status`` so a duplicate or
late invocation can never move a job that has already moved on.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from atelier.core.errors import ConflictError, EngineError
from atelier.core.logging import logger
from atelier.db import jobs_repo
from atelier.schemas.jobs import TERMINAL_STATUSES, JobType
from atelier.schemas.payloads import StagePayload, validate_payload
from atelier.services import dispatch, transitions
from atelier.services.stages import graph_for
from atelier.services.units import Unit, get_unit, register
from atelier.storage.artifacts import get_store
from atelier.vendors import registry


@dataclass
class Advance:
    status: str
    payload: Dict[str, Any] = field(default_factory=dict)
    note: Optional[str] = None


@dataclass
class Fail:
    message: str


Outcome = Union[Advance, Fail]


class StepContext:
    def __init__(
        self, job: Dict[str, Any], payload: StagePayload, body: Dict[str, Any]
    ) -> None:
        self.job = job
        self.payload = payload
        self.body = body

    @property
    def job_id(self) -> str:
        return self.job["job_id"]

    @property
    def owner_id(self) -> str:
        return self.job["owner_id"]

    @property
    def tools(self):
        return registry.get_tools()

    def vendor(self, name: str):
        return registry.get_vendor(name)

    async def save_artifact(self, filename: str, data: bytes) -> str:
        return await get_store().save(self.owner_id, self.job_id, filename, data)

    async def store_remote(self, source, url: str, filename: str) -> str:
        """Download ``url`` through ``source`` and persist it as an artifact."""
        data = await source.download(url)
        if not data:
            raise EngineError(f"empty artifact downloaded from {url}")
        return await self.save_artifact(filename, data)


StepFn = Callable[[StepContext], Awaitable[Outcome]]


async def load_for_unit(
    unit_name: str, job_id: str, expects: str
) -> Optional[Dict[str, Any]]:
    job = await jobs_repo.fetch_job(job_id)
    if job is None:
        logger.warning(f"{unit_name}: job {job_id} not found")
        return None
    if job["status"] != expects:
        logger.info(
            f"{unit_name}: job {job_id} is {job['status']}, expected {expects}; no-op"
        )
        return None
    return job


async def dispatch_next(job: Dict[str, Any]) -> bool:
    """Hand the job to whichever unit owns its current status."""
    if job["status"] in TERMINAL_STATUSES:
        return False
    unit_name = graph_for(job["job_type"]).unit_for(job["status"])
    if unit_name is None:
        return False
    unit = get_unit(unit_name)
    delay = unit.entry_delay if unit else 0.0
    return await dispatch.dispatch(unit_name, job["job_id"], delay=delay)


async def apply_outcome(
    unit_name: str, job: Dict[str, Any], outcome: Outcome
) -> Optional[Dict[str, Any]]:
    try:
        if isinstance(outcome, Fail):
            return await transitions.fail(
                job, outcome.message, expected_status=job["status"]
            )
        updated = await transitions.transition(
            job,
            outcome.status,
            payload_patch=outcome.payload,
            expected_status=job["status"],
            note=outcome.note,
        )
    except ConflictError as exc:
        logger.info(f"{unit_name}: result for {job['job_id']} discarded ({exc.message})")
        return None
    await dispatch_next(updated)
    return updated


async def run_step(
    unit_name: str, expects: str, step: StepFn, job_id: str, body: Dict[str, Any]
) -> None:
    job = await load_for_unit(unit_name, job_id, expects)
    if job is None:
        return
    try:
        payload = validate_payload(job["job_type"], expects, job["payload"])
        outcome = await step(StepContext(job, payload, body))
    except EngineError as exc:
        outcome = Fail(exc.message)
    except Exception as exc:
        logger.exception(f"{unit_name}: step crashed for {job_id}")
        outcome = Fail(f"{unit_name} failed: {exc}")
    await apply_outcome(unit_name, job, outcome)


def worker(name: str, job_type: JobType, expects: str):
    """Register ``step`` as the unit ``name`` owning ``expects``."""

    def decorator(step: StepFn) -> StepFn:
        async def handler(job_id: str, body: Dict[str, Any]) -> None:
            await run_step(name, expects, step, job_id, body)

        register(
            Unit(
                name=name,
                kind="worker",
                handler=handler,
                job_type=job_type,
                expects=expects,
            )
        )
        return step

    return decorator
