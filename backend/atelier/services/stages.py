"""Stage graphs for every job type, expressed as data.

Each graph names its initial status, the legal transitions between
statuses, the unit that owns each non-terminal status and the re-entry
status used by an explicit retry. Statuses with no owning unit (for
example ``awaiting_approval``) only move on a user action and are never
swept by the watchdog.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from atelier.schemas.jobs import COMPLETE, FAILED, TERMINAL_STATUSES, JobType

AGGREGATE_UNIT = "aggregate"


@dataclass(frozen=True)
class StageGraph:
    job_type: JobType
    initial: str
    transitions: Dict[str, FrozenSet[str]]
    units: Dict[str, str]
    retry_status: str
    family: str
    child_type: Optional[JobType] = None
    # Documented shortcut taken at creation time when there is no work to do.
    fast_path_status: Optional[str] = None
    user_statuses: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_fan_out(self) -> bool:
        return self.child_type is not None

    @property
    def statuses(self) -> FrozenSet[str]:
        found = set(self.transitions) | set(TERMINAL_STATUSES)
        for targets in self.transitions.values():
            found |= targets
        return frozenset(found)

    @property
    def active_statuses(self) -> FrozenSet[str]:
        return self.statuses - TERMINAL_STATUSES

    @property
    def swept_statuses(self) -> FrozenSet[str]:
        return frozenset(self.units)

    def unit_for(self, status: str) -> Optional[str]:
        return self.units.get(status)

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.transitions.get(current, frozenset())

    def validate(self) -> None:
        """Raise ValueError unless the graph is a DAG that always terminates."""
        if self.initial not in self.transitions:
            raise ValueError(f"{self.job_type.value}: initial status has no exits")
        for status in TERMINAL_STATUSES:
            if self.transitions.get(status):
                raise ValueError(f"{self.job_type.value}: {status} must be terminal")
        for status in self.active_statuses:
            if status not in self.transitions:
                raise ValueError(f"{self.job_type.value}: {status} is a dead end")
        for status in self.units:
            if status not in self.active_statuses:
                raise ValueError(f"{self.job_type.value}: unit owns unknown {status}")
        if self.retry_status not in self.active_statuses:
            raise ValueError(f"{self.job_type.value}: bad retry status")
        _topological_order(self)
        for status in self.active_statuses:
            if not (_reachable(self, status) & TERMINAL_STATUSES):
                raise ValueError(
                    f"{self.job_type.value}: {status} cannot reach a terminal status"
                )


def _reachable(graph: StageGraph, start: str) -> FrozenSet[str]:
    seen = set()
    stack = [start]
    while stack:
        status = stack.pop()
        for target in graph.transitions.get(status, frozenset()):
            if target not in seen:
                seen.add(target)
                stack.append(target)
    return frozenset(seen)


def _topological_order(graph: StageGraph) -> List[str]:
    incoming = {status: 0 for status in graph.statuses}
    for targets in graph.transitions.values():
        for target in targets:
            incoming[target] += 1
    ready = sorted(s for s, count in incoming.items() if count == 0)
    order: List[str] = []
    while ready:
        status = ready.pop()
        order.append(status)
        for target in sorted(graph.transitions.get(status, frozenset())):
            incoming[target] -= 1
            if incoming[target] == 0:
                ready.append(target)
    if len(order) != len(graph.statuses):
        raise ValueError(f"{graph.job_type.value}: stage graph has a cycle")
    return order


def _edges(**kwargs: List[str]) -> Dict[str, FrozenSet[str]]:
    return {status: frozenset(targets) for status, targets in kwargs.items()}


GRAPHS: Dict[JobType, StageGraph] = {
    JobType.IMAGE_EDIT: StageGraph(
        job_type=JobType.IMAGE_EDIT,
        initial="pending",
        transitions=_edges(pending=[COMPLETE, FAILED]),
        units={"pending": "image_edit.run"},
        retry_status="pending",
        family="agent",
    ),
    JobType.ENHANCEMENT: StageGraph(
        job_type=JobType.ENHANCEMENT,
        initial="pending",
        transitions=_edges(
            pending=["polling", FAILED],
            polling=[COMPLETE, FAILED],
        ),
        units={"pending": "enhancement.submit", "polling": "enhancement.poll"},
        retry_status="pending",
        family="enhancement",
    ),
    JobType.MODEL_GENERATION: StageGraph(
        job_type=JobType.MODEL_GENERATION,
        initial="pending",
        transitions=_edges(
            pending=["base_generated", FAILED],
            base_generated=["generating_poses", "awaiting_approval", FAILED],
            awaiting_approval=["generating_poses", FAILED],
            generating_poses=[COMPLETE, FAILED],
        ),
        units={
            "pending": "model_generation.base",
            "base_generated": "model_generation.select",
            "generating_poses": "model_generation.poses",
        },
        retry_status="pending",
        family="agent",
        user_statuses=frozenset({"awaiting_approval"}),
    ),
    JobType.VTO_PIPELINE: StageGraph(
        job_type=JobType.VTO_PIPELINE,
        initial="pending",
        transitions=_edges(
            pending=["prompt_ready", FAILED],
            prompt_ready=["polling", FAILED],
            polling=[COMPLETE, FAILED],
        ),
        units={
            "pending": "vto.prepare",
            "prompt_ready": "vto.submit",
            "polling": "vto.poll",
        },
        retry_status="pending",
        family="vto",
    ),
    JobType.TILED_UPSCALE: StageGraph(
        job_type=JobType.TILED_UPSCALE,
        initial="processing",
        transitions=_edges(processing=[COMPLETE, FAILED]),
        units={"processing": AGGREGATE_UNIT},
        retry_status="processing",
        family="upscale",
        child_type=JobType.UPSCALE_TILE,
    ),
    JobType.UPSCALE_TILE: StageGraph(
        job_type=JobType.UPSCALE_TILE,
        initial="pending",
        transitions=_edges(
            pending=["polling", FAILED],
            polling=[COMPLETE, FAILED],
        ),
        units={"pending": "tile.submit", "polling": "tile.poll"},
        retry_status="pending",
        family="upscale",
    ),
    JobType.BATCH_INPAINT: StageGraph(
        job_type=JobType.BATCH_INPAINT,
        initial="processing",
        transitions=_edges(processing=[COMPLETE, FAILED]),
        units={"processing": AGGREGATE_UNIT},
        retry_status="processing",
        family="inpaint",
        child_type=JobType.INPAINT_PAIR,
        fast_path_status=COMPLETE,
    ),
    JobType.INPAINT_PAIR: StageGraph(
        job_type=JobType.INPAINT_PAIR,
        initial="pending",
        transitions=_edges(
            pending=["segmented", FAILED],
            segmented=["polling", FAILED],
            polling=[COMPLETE, FAILED],
        ),
        units={
            "pending": "inpaint.segment",
            "segmented": "inpaint.submit",
            "polling": "inpaint.poll",
        },
        retry_status="pending",
        family="inpaint",
    ),
}


def graph_for(job_type: str) -> StageGraph:
    try:
        return GRAPHS[JobType(job_type)]
    except ValueError:
        raise KeyError(f"unknown job type {job_type}") from None


def job_types_in_family(family: str) -> List[JobType]:
    return [graph.job_type for graph in GRAPHS.values() if graph.family == family]


def families() -> List[str]:
    return sorted({graph.family for graph in GRAPHS.values()})
