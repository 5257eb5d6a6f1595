import pytest

from atelier.schemas.jobs import COMPLETE, FAILED, TERMINAL_STATUSES, JobType
from atelier.services.stages import (
    AGGREGATE_UNIT,
    GRAPHS,
    StageGraph,
    _edges,
    families,
    graph_for,
    job_types_in_family,
)
from atelier.services.units import load_units


@pytest.mark.parametrize("job_type", list(JobType))
def test_every_graph_is_a_terminating_dag(job_type):
    graph = GRAPHS[job_type]
    graph.validate()
    for status in graph.active_statuses:
        assert graph.can_transition(status, FAILED)
    for status in TERMINAL_STATUSES:
        assert not graph.transitions.get(status)


def test_cycle_is_rejected():
    graph = StageGraph(
        job_type=JobType.IMAGE_EDIT,
        initial="pending",
        transitions=_edges(pending=["working"], working=["pending", COMPLETE]),
        units={"pending": "a", "working": "b"},
        retry_status="pending",
        family="agent",
    )
    with pytest.raises(ValueError, match="cycle"):
        graph.validate()


def test_dead_end_status_is_rejected():
    graph = StageGraph(
        job_type=JobType.IMAGE_EDIT,
        initial="pending",
        transitions=_edges(pending=["stuck", COMPLETE]),
        units={"pending": "a"},
        retry_status="pending",
        family="agent",
    )
    with pytest.raises(ValueError, match="dead end"):
        graph.validate()


def test_user_waiting_status_has_no_owner():
    graph = graph_for("model_generation")
    assert "awaiting_approval" in graph.active_statuses
    assert "awaiting_approval" not in graph.swept_statuses
    assert graph.unit_for("awaiting_approval") is None


def test_fan_out_parents_are_owned_by_the_aggregator():
    for job_type in (JobType.TILED_UPSCALE, JobType.BATCH_INPAINT):
        graph = GRAPHS[job_type]
        assert graph.is_fan_out
        assert graph.unit_for(graph.initial) == AGGREGATE_UNIT
        assert graph.family == GRAPHS[graph.child_type].family


def test_every_owned_status_has_a_registered_unit():
    units = load_units()
    for graph in GRAPHS.values():
        for status, unit_name in graph.units.items():
            assert unit_name in units, unit_name
            unit = units[unit_name]
            if unit.kind != "aggregate":
                assert unit.job_type == graph.job_type
                assert unit.expects == status


def test_families_partition_job_types():
    seen = []
    for family in families():
        seen.extend(job_types_in_family(family))
    assert sorted(seen) == sorted(JobType)
    assert job_types_in_family("upscale") == [JobType.TILED_UPSCALE, JobType.UPSCALE_TILE]


def test_unknown_job_type():
    with pytest.raises(KeyError):
        graph_for("video_render")
