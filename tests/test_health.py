"""Tests for health endpoints and application wiring."""

import pytest
from fastapi import FastAPI

from conftest import FakeGenerationClient, ManualCallbackScheduler
from pixelbatch import __version__
from pixelbatch.main import wire_batch_services
from pixelbatch.services.batch_controller import BatchController
from pixelbatch.services.entitlements import AllowAllEntitlements
from pixelbatch.workers.batch_driver import PROCESS_ITEM_TASK


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "service": "pixelbatch-api", "version": __version__}
    assert "x-trace-id" in resp.headers


@pytest.mark.asyncio
async def test_liveness(client):
    resp = await client.get("/api/v1/health/live")
    assert resp.json() == {"status": "alive"}


@pytest.mark.asyncio
async def test_readiness_without_redis(client):
    resp = await client.get("/api/v1/health/ready")
    assert resp.status_code == 200
    assert resp.json() == {
        "status": "ready",
        "checks": {"database": "ok", "redis": "disabled", "callbacks": "in_process"},
    }


@pytest.mark.asyncio
async def test_readiness_fails_without_item_handler(app, client):
    app.state.callback_scheduler = ManualCallbackScheduler()

    resp = await client.get("/api/v1/health/ready")

    assert resp.status_code == 503
    body = resp.json()
    assert body["status"] == "not_ready"
    assert body["checks"]["callbacks"].startswith("error")


@pytest.mark.asyncio
async def test_wire_batch_services(session_factory, storage):
    app = FastAPI()
    scheduler = ManualCallbackScheduler()

    driver = wire_batch_services(
        app, session_factory, scheduler, FakeGenerationClient(), storage, AllowAllEntitlements()
    )

    assert app.state.batch_driver is driver
    assert isinstance(app.state.batch_controller, BatchController)
    assert app.state.batch_controller.max_batch_size == 1000
    assert scheduler.get_handler(PROCESS_ITEM_TASK) == driver.run_item
    assert driver.rate_limit.min_delay_ms == 120
