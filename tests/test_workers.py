from atelier.db import jobs_repo
from atelier.services import orchestrator
from atelier.services.units import run_unit

EDIT_REQUEST = {"source_url": "https://img.test/a.png", "instruction": "make it blue"}


async def test_single_stage_job_completes_with_artifact(engine, store, tools):
    job = await orchestrator.create("image_edit", "owner-1", EDIT_REQUEST)
    assert job["status"] == "pending"
    assert engine.units() == ["image_edit.run"]

    await engine.drain()

    done = await jobs_repo.get_job(job["job_id"])
    assert done["status"] == "complete"
    assert done["error_message"] is None
    ref = done["payload"]["output_ref"]
    assert ref.startswith("owner-1/")
    assert store.read(ref) == b"\x89PNG" + b"https://tools.test/edited.png"
    assert tools.calls[0][1]["instruction"] == "make it blue"


async def test_duplicate_invocation_is_a_no_op(engine, tools):
    job = await orchestrator.create("image_edit", "owner-1", EDIT_REQUEST)
    await engine.drain()
    before = await jobs_repo.get_job(job["job_id"])

    await run_unit("image_edit.run", job["job_id"])

    after = await jobs_repo.get_job(job["job_id"])
    assert after == before
    assert tools.called("image_editor") == 1
    assert engine.queue == []


async def test_tool_failure_fails_the_job(engine, tools):
    tools.errors["image_editor"] = "content policy violation"
    job = await orchestrator.create("image_edit", "owner-1", EDIT_REQUEST)
    await engine.drain()
    failed = await jobs_repo.get_job(job["job_id"])
    assert failed["status"] == "failed"
    assert failed["error_message"] == "content policy violation"


async def test_unexpected_crash_becomes_failed_write(engine, tools):
    tools.responses["image_editor"] = lambda body: 1 / 0
    job = await orchestrator.create("image_edit", "owner-1", EDIT_REQUEST)
    await engine.drain()
    failed = await jobs_repo.get_job(job["job_id"])
    assert failed["status"] == "failed"
    assert "image_edit.run failed" in failed["error_message"]


async def test_malformed_payload_fails_before_any_call(engine, tools):
    job = await jobs_repo.create_job("image_edit", "owner-1", {"source_url": "x"}, "pending")
    await run_unit("image_edit.run", job["job_id"])
    failed = await jobs_repo.get_job(job["job_id"])
    assert failed["status"] == "failed"
    assert "malformed image_edit/pending payload" in failed["error_message"]
    assert tools.calls == []


async def test_cancellation_wins_over_late_result(engine, tools):
    job = await orchestrator.create("image_edit", "owner-1", EDIT_REQUEST)

    async def cancel_mid_call(tool):
        await jobs_repo.update_job(
            job["job_id"], status="failed", error_message="Cancelled by user."
        )

    tools.on_call = cancel_mid_call
    await engine.drain()

    after = await jobs_repo.get_job(job["job_id"])
    assert after["status"] == "failed"
    assert after["error_message"] == "Cancelled by user."


async def test_model_generation_auto_approve(engine, tools):
    job = await orchestrator.create(
        "model_generation",
        "owner-1",
        {
            "model_description": "tall model, studio light",
            "pose_prompts": [
                {"type": "text", "value": "arms crossed"},
                {"type": "text", "value": "walking"},
            ],
        },
    )
    await engine.drain()

    done = await jobs_repo.get_job(job["job_id"])
    assert done["status"] == "complete"
    payload = done["payload"]
    assert len(payload["base_refs"]) == 4
    assert payload["base_model_image"] == "https://tools.test/base-2.png"
    assert [pose["pose_prompt"] for pose in payload["poses"]] == ["arms crossed", "walking"]
    statuses = [e["message"] for e in await jobs_repo.fetch_events(job["job_id"])]
    assert "generating_poses -> complete" in statuses


async def test_model_generation_waits_for_approval(engine, tools):
    job = await orchestrator.create(
        "model_generation",
        "owner-1",
        {"model_description": "model", "auto_approve": False},
    )
    await engine.drain()
    parked = await jobs_repo.get_job(job["job_id"])
    assert parked["status"] == "awaiting_approval"
    assert tools.called("quality_assurance") == 0
    assert engine.queue == []


async def test_vto_pipeline_runs_every_stage(engine, vendors, tools):
    job = await orchestrator.create(
        "vto_pipeline",
        "owner-1",
        {"person_url": "https://img.test/p.png", "garment_url": "https://img.test/g.png"},
    )
    await engine.drain()
    done = await jobs_repo.get_job(job["job_id"])
    assert done["status"] == "complete"
    assert done["payload"]["prompt"] == "a person wearing the garment"
    assert vendors["bitstudio"].submitted[0]["prompt"] == "a person wearing the garment"
    assert done["payload"]["output_url"].endswith("bitstudio-task-1.png")


async def test_vendor_submit_failure_fails_job(engine, vendors):
    vendors["enhancor"].submit_error = "quota exceeded"
    job = await orchestrator.create(
        "enhancement", "owner-1", {"source_url": "https://img.test/a.png"}
    )
    await engine.drain()
    failed = await jobs_repo.get_job(job["job_id"])
    assert failed["status"] == "failed"
    assert failed["error_message"] == "quota exceeded"
