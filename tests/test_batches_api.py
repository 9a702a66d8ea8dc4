"""Tests for the /api/v1/batches routes."""

import pytest

from conftest import auth_headers

BODY = {"count": 3, "generation_params": {"prompt": "a koi pond at night", "model": "flux"}}


async def _start(client, body=None, sub="user_alice"):
    return await client.post("/api/v1/batches", json=body or BODY, headers=auth_headers(sub))


@pytest.mark.asyncio
async def test_start_batch_returns_pending_job(client, services):
    resp = await _start(client)

    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "pending"
    assert data["total_count"] == 3
    assert data["completed_count"] == 0
    assert data["image_ids"] == []
    assert data["owner_id"] == "user_alice"
    assert services.scheduler.armed_items(data["batch_id"]) == [0]


@pytest.mark.asyncio
async def test_start_requires_auth(client):
    resp = await client.post("/api/v1/batches", json=BODY)
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTHENTICATION_ERROR"


@pytest.mark.asyncio
async def test_invalid_token_rejected(client):
    resp = await client.get("/api/v1/batches", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "invalid_token"


@pytest.mark.asyncio
async def test_oversized_batch_rejected(client):
    resp = await _start(client, {"count": 1001, "generation_params": {"prompt": "x"}})

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"] == {"count": 1001}
    assert "trace_id" in error


@pytest.mark.asyncio
async def test_unknown_param_rejected(client):
    resp = await _start(client, {"count": 1, "generation_params": {"prompt": "x", "steps": 50}})
    assert resp.status_code == 422
    error = resp.json()["error"]
    assert error["code"] == "REQUEST_INVALID"
    assert any("steps" in e["loc"] for e in error["details"])
    assert error["trace_id"] == resp.headers["x-trace-id"]


@pytest.mark.asyncio
async def test_full_run_visible_through_api(client, services):
    batch_id = (await _start(client)).json()["batch_id"]
    await services.scheduler.run_all()

    job = (await client.get(f"/api/v1/batches/{batch_id}", headers=auth_headers())).json()
    assert job["status"] == "completed"
    assert job["completed_count"] == 3
    assert len(job["image_ids"]) == 3

    artifacts = (await client.get(f"/api/v1/batches/{batch_id}/artifacts", headers=auth_headers())).json()
    assert [a["image_id"] for a in artifacts] == job["image_ids"]
    assert [a["item_index"] for a in artifacts] == [0, 1, 2]
    assert all(a["url"].startswith("http://test/artifacts/") for a in artifacts)


@pytest.mark.asyncio
async def test_pause_resume_cancel_routes(client, services):
    batch_id = (await _start(client)).json()["batch_id"]

    resp = await client.post(f"/api/v1/batches/{batch_id}/pause", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json() == {"batch_id": batch_id, "status": "paused"}

    resp = await client.post(f"/api/v1/batches/{batch_id}/resume", headers=auth_headers())
    assert resp.json()["status"] == "processing"

    resp = await client.post(f"/api/v1/batches/{batch_id}/cancel", headers=auth_headers())
    assert resp.json()["status"] == "cancelled"

    resp = await client.post(f"/api/v1/batches/{batch_id}/resume", headers=auth_headers())
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_other_owner_forbidden(client):
    batch_id = (await _start(client)).json()["batch_id"]

    resp = await client.get(f"/api/v1/batches/{batch_id}", headers=auth_headers("user_bob"))
    assert resp.status_code == 403
    resp = await client.post(f"/api/v1/batches/{batch_id}/cancel", headers=auth_headers("user_bob"))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_missing_batch_not_found(client):
    resp = await client.get("/api/v1/batches/batch_nope", headers=auth_headers())
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_active_list_excludes_finished_and_other_owners(client, services):
    done_id = (await _start(client, {"count": 1, "generation_params": {"prompt": "x"}})).json()["batch_id"]
    await services.scheduler.run_all()
    active_id = (await _start(client)).json()["batch_id"]
    await _start(client, sub="user_bob")

    active = (await client.get("/api/v1/batches", headers=auth_headers())).json()
    assert [j["batch_id"] for j in active] == [active_id]

    recent = (await client.get("/api/v1/batches/recent", headers=auth_headers())).json()
    assert {j["batch_id"] for j in recent} == {done_id, active_id}


@pytest.mark.asyncio
async def test_recent_limit_validated(client):
    for _ in range(3):
        await _start(client)

    resp = await client.get("/api/v1/batches/recent?limit=2", headers=auth_headers())
    assert len(resp.json()) == 2

    resp = await client.get("/api/v1/batches/recent?limit=0", headers=auth_headers())
    assert resp.status_code == 422
