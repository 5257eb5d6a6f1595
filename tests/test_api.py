import httpx
import pytest

from atelier.db import jobs_repo
from atelier.main import app
from atelier.services import dispatch

OWNER = {"X-Owner-Id": "owner-1"}
EDIT_REQUEST = {"source_url": "https://img.test/a.png", "instruction": "crop"}


@pytest.fixture
async def client(engine):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def test_create_and_read_job(client, engine):
    response = await client.post("/jobs/image_edit", json=EDIT_REQUEST, headers=OWNER)
    assert response.status_code == 202
    job_id = response.json()["job_id"]
    assert response.json()["status"] == "pending"

    await engine.drain()

    job = (await client.get(f"/jobs/{job_id}", headers=OWNER)).json()
    assert job["status"] == "complete"
    assert job["payload"]["output_ref"]
    listed = (await client.get("/jobs", headers=OWNER)).json()["jobs"]
    assert [item["job_id"] for item in listed] == [job_id]
    events = (await client.get(f"/jobs/{job_id}/events")).json()["events"]
    assert events[0]["message"] == "created"


async def test_validation_error_shape(client):
    response = await client.post(
        "/jobs/image_edit", json={"instruction": "x"}, headers=OWNER
    )
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["reason"] == "invalid_request"
    assert "source_url" in detail["message"]


async def test_creation_requires_owner(client):
    response = await client.post("/jobs/image_edit", json=EDIT_REQUEST)
    assert response.status_code == 401


async def test_unknown_job_is_404(client):
    response = await client.get("/jobs/job_missing")
    assert response.status_code == 404
    assert response.json()["detail"]["reason"] == "not_found"


async def test_other_owner_cannot_see_job(client):
    job_id = (
        await client.post("/jobs/image_edit", json=EDIT_REQUEST, headers=OWNER)
    ).json()["job_id"]
    response = await client.get(f"/jobs/{job_id}", headers={"X-Owner-Id": "owner-2"})
    assert response.status_code == 404


async def test_cancel_then_cancel_again_conflicts(client):
    job_id = (
        await client.post("/jobs/image_edit", json=EDIT_REQUEST, headers=OWNER)
    ).json()["job_id"]
    first = await client.post(f"/jobs/{job_id}/cancel", headers=OWNER)
    assert first.status_code == 200
    assert first.json()["status"] == "failed"
    second = await client.post(f"/jobs/{job_id}/cancel", headers=OWNER)
    assert second.status_code == 409
    assert second.json()["detail"]["reason"] == "terminal"


async def test_cancel_all(client):
    for _ in range(2):
        await client.post("/jobs/image_edit", json=EDIT_REQUEST, headers=OWNER)
    response = await client.post("/jobs/cancel-all", headers=OWNER)
    assert response.status_code == 200
    assert response.json()["count"] == 2


async def test_children_endpoint(client):
    pair = {"person_url": "https://img.test/p.png", "garment_url": "https://img.test/g.png"}
    parent_id = (
        await client.post("/jobs/batch_inpaint", json={"pairs": [pair, pair]}, headers=OWNER)
    ).json()["job_id"]
    children = (await client.get(f"/jobs/{parent_id}/children")).json()["jobs"]
    assert len(children) == 2
    assert all(child["parent_id"] == parent_id for child in children)


async def test_webhook_always_answers_200(client, engine):
    job_id = (
        await client.post(
            "/jobs/enhancement", json={"source_url": "https://img.test/a.png"}, headers=OWNER
        )
    ).json()["job_id"]
    await engine.run_next()

    bad = await client.post("/webhooks/enhancor", content=b"not json")
    assert bad.status_code == 200
    assert bad.json()["success"] is False

    unknown = await client.post("/webhooks/acme?job_id=x", json={"status": "success"})
    assert unknown.status_code == 200

    ok = await client.post(
        f"/webhooks/enhancor?job_id={job_id}",
        json={"status": "success", "result": "https://cdn.test/out.png"},
    )
    assert ok.status_code == 200
    assert ok.json()["status"] == "complete"
    assert (await jobs_repo.get_job(job_id))["status"] == "complete"


async def test_unit_endpoint_runs_the_unit(client, engine):
    job_id = (
        await client.post("/jobs/image_edit", json=EDIT_REQUEST, headers=OWNER)
    ).json()["job_id"]
    engine.queue.clear()

    response = await client.post("/units/image_edit.run", json={"job_id": job_id})
    assert response.status_code == 202
    assert (await jobs_repo.get_job(job_id))["status"] == "complete"

    missing = await client.post("/units/nope", json={"job_id": job_id})
    assert missing.status_code == 404


async def test_watchdog_trigger(client):
    response = await client.post("/watchdog/agent")
    assert response.status_code == 200
    assert response.json()["family"] == "agent"
    assert (await client.post("/watchdog/render_farm")).status_code == 404


async def test_health_and_status(client):
    await client.post("/jobs/image_edit", json=EDIT_REQUEST, headers=OWNER)
    health = (await client.get("/health")).json()
    assert health["status"] == "ok"
    assert health["database"] == "ok"
    assert health["invoker"] == "manual"
    assert health["active_jobs"] == 1
    status = (await client.get("/status")).json()
    assert status["invoker"]["mode"] == "manual"


async def test_health_degrades_without_invoker(client):
    dispatch.set_invoker(None)
    health = (await client.get("/health")).json()
    assert health["status"] == "degraded"
    assert health["invoker"] is None
