from itertools import permutations

import pytest

from atelier.db import jobs_repo
from atelier.services import orchestrator
from atelier.services.aggregator import aggregate, compute_rollup, resolve
from atelier.schemas.payloads import Rollup

PAIR = {"person_url": "https://img.test/p.png", "garment_url": "https://img.test/g.png"}


async def _tree(n, min_success):
    return await jobs_repo.create_job_tree(
        "batch_inpaint",
        "owner-1",
        {"total_children": n, "min_success": min_success},
        "processing",
        "inpaint_pair",
        [dict(PAIR, index=i) for i in range(n)],
        "pending",
    )


def test_rollup_counts_each_bucket():
    children = [
        {"job_type": "inpaint_pair", "status": "pending"},
        {"job_type": "inpaint_pair", "status": "segmented"},
        {"job_type": "inpaint_pair", "status": "polling"},
        {"job_type": "inpaint_pair", "status": "complete"},
        {"job_type": "inpaint_pair", "status": "failed"},
    ]
    assert compute_rollup(children) == Rollup(
        total=5, pending=1, processing=2, complete=1, failed=1
    )


def test_resolve_waits_for_every_child():
    assert resolve(Rollup(total=3, complete=2, processing=1), 1) is None
    assert resolve(Rollup(total=3, complete=1, failed=2), 1) == "complete"
    assert resolve(Rollup(total=3, complete=1, failed=2), 2) == "failed"


@pytest.mark.parametrize("order", list(permutations(range(3))))
async def test_completion_order_does_not_matter(engine, order):
    outcomes = ["complete", "failed", "complete"]
    parent, children = await _tree(3, min_success=1)
    for index in order:
        await jobs_repo.update_job(
            children[index]["job_id"],
            status=outcomes[index],
            payload_patch={"output_ref": f"ref-{index}"} if outcomes[index] == "complete" else None,
            error_message="boom",
        )
        await aggregate(parent["job_id"], {})

    final = await jobs_repo.get_job(parent["job_id"])
    assert final["status"] == "complete"
    assert final["payload"]["rollup"] == {
        "total": 3,
        "pending": 0,
        "processing": 0,
        "complete": 2,
        "failed": 1,
    }
    assert sorted(r["output_ref"] for r in final["payload"]["results"]) == ["ref-0", "ref-2"]


async def test_aggregate_is_idempotent(engine):
    parent, children = await _tree(2, min_success=2)
    await jobs_repo.update_job(children[0]["job_id"], status="complete")
    await aggregate(parent["job_id"], {})
    await aggregate(parent["job_id"], {})
    partial = await jobs_repo.get_job(parent["job_id"])
    assert partial["status"] == "processing"
    assert partial["payload"]["rollup"]["complete"] == 1
    assert partial["payload"]["rollup"]["pending"] == 1

    await jobs_repo.update_job(children[1]["job_id"], status="failed", error_message="x")
    await aggregate(parent["job_id"], {})
    failed = await jobs_repo.get_job(parent["job_id"])
    await aggregate(parent["job_id"], {})
    assert await jobs_repo.get_job(parent["job_id"]) == failed
    assert failed["status"] == "failed"
    assert failed["error_message"] == "Only 1 of 2 children succeeded (minimum 2)."


async def test_fan_out_with_one_failed_child(engine, vendors):
    parent = await orchestrator.create(
        "batch_inpaint", "owner-1", {"pairs": [PAIR, PAIR, PAIR], "min_success": 1}
    )
    assert parent["status"] == "processing"
    vendors["bitstudio"].failed_tasks.add("bitstudio-task-2")

    await engine.drain()

    final = await jobs_repo.get_job(parent["job_id"])
    assert final["status"] == "complete"
    assert final["payload"]["rollup"]["failed"] == 1
    assert final["payload"]["rollup"]["complete"] == 2
    children = await jobs_repo.list_children(parent["job_id"])
    assert sorted(child["status"] for child in children) == ["complete", "complete", "failed"]


async def test_tiled_upscale_requires_every_tile(engine, vendors):
    parent = await orchestrator.create(
        "tiled_upscale",
        "owner-1",
        {"source_url": "https://img.test/big.png", "width": 2048, "height": 1024},
    )
    vendors["enhancor"].failed_tasks.add("enhancor-task-1")
    await engine.drain()
    final = await jobs_repo.get_job(parent["job_id"])
    assert final["status"] == "failed"
    assert final["error_message"] == "Only 1 of 2 children succeeded (minimum 2)."
