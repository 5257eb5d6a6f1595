"""Registry of units of work, addressed by name.

Pipeline modules register their workers and pollers at import time;
``load_units`` imports them all so a unit name can be resolved from any
entry point (in-process queue, ``/units/{unit}`` endpoint, watchdog).
"""

import importlib
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from atelier.core.logging import logger
from atelier.schemas.jobs import JobType

UNIT_MODULES = (
    "atelier.services.aggregator",
    "atelier.services.pipelines.image_edit",
    "atelier.services.pipelines.enhancement",
    "atelier.services.pipelines.model_generation",
    "atelier.services.pipelines.vto",
    "atelier.services.pipelines.tiled_upscale",
    "atelier.services.pipelines.batch_inpaint",
)

Handler = Callable[[str, Dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class Unit:
    name: str
    kind: str
    handler: Handler
    job_type: Optional[JobType] = None
    expects: Optional[str] = None
    # Delay before the first run after a job enters ``expects``.
    entry_delay: float = 0.0


UNITS: Dict[str, Unit] = {}
_loaded = False


def register(unit: Unit) -> Unit:
    if unit.name in UNITS:
        raise ValueError(f"unit {unit.name} registered twice")
    UNITS[unit.name] = unit
    return unit


def load_units() -> Dict[str, Unit]:
    global _loaded
    if not _loaded:
        for module in UNIT_MODULES:
            importlib.import_module(module)
        _loaded = True
    return UNITS


def get_unit(name: str) -> Optional[Unit]:
    return load_units().get(name)


def unit_names() -> List[str]:
    return sorted(load_units())


async def run_unit(name: str, job_id: str, body: Optional[Dict[str, Any]] = None) -> None:
    unit = get_unit(name)
    if unit is None:
        logger.warning(f"unknown unit {name} for job {job_id}, discarded")
        return
    await unit.handler(job_id, body or {})
