"""Tests for single-item generation: seeds, artifacts, retry and failure outcomes."""

import asyncio
import random

import pytest

from conftest import FakeGenerationClient, retryable_error, terminal_error
from pixelbatch.models.enums import BatchStatus, ImageVisibility
from pixelbatch.repositories.batch_job_repo import BatchJobRepository
from pixelbatch.repositories.generated_image_repo import GeneratedImageRepository
from pixelbatch.services.artifact_storage import ArtifactStorage
from pixelbatch.services.generation_client import INT32_MAX
from pixelbatch.workers.item_processor import ItemProcessor, resolve_item_params


async def _make_job(session_factory, params, status=BatchStatus.PROCESSING, batch_id="batch_proc"):
    async with session_factory() as session:
        await BatchJobRepository(session).create(
            batch_id=batch_id,
            owner_id="user_alice",
            status=str(status),
            total_count=3,
            current_index=0,
            completed_count=0,
            failed_count=0,
            generation_params=params,
        )
        await session.commit()
    return batch_id


class BrokenStorage(ArtifactStorage):
    async def put(self, key, data, content_type):
        raise OSError("disk full")


def test_resolve_params_keeps_explicit_seed():
    assert resolve_item_params({"prompt": "p", "seed": 42})["seed"] == 42


def test_resolve_params_clamps_large_seed():
    assert resolve_item_params({"prompt": "p", "seed": 2**40})["seed"] == INT32_MAX


def test_resolve_params_draws_random_seed():
    rng = random.Random(5)
    seeds = {resolve_item_params({"prompt": "p"}, rng)["seed"] for _ in range(5)}
    assert len(seeds) > 1
    assert all(0 <= s <= INT32_MAX for s in seeds)
    assert 0 <= resolve_item_params({"prompt": "p", "seed": -1}, rng)["seed"] <= INT32_MAX


def test_resolve_params_does_not_mutate_template():
    template = {"prompt": "p"}
    resolve_item_params(template)
    assert "seed" not in template


@pytest.mark.asyncio
async def test_success_stores_artifact_and_image(services, session_factory, storage):
    batch_id = await _make_job(session_factory, {"prompt": "a cat", "seed": 9, "private": True, "width": 512})

    outcome = await services.processor.process(batch_id, 0)

    assert outcome.success
    assert outcome.image_id.startswith("img_")
    assert outcome.retry_count == 0
    assert services.client.calls[0]["seed"] == 9

    async with session_factory() as session:
        row = await GeneratedImageRepository(session).get(outcome.image_id)
    assert row.batch_id == batch_id
    assert row.item_index == 0
    assert row.width == 512
    assert row.height == 1024
    assert row.model == "flux"
    assert row.visibility == ImageVisibility.UNLISTED
    assert row.url.startswith("http://test/artifacts/generated/user_alice/")
    assert (storage.root / row.storage_key).read_bytes().startswith(b"\x89PNG")


@pytest.mark.asyncio
async def test_retryable_error_then_success(services, session_factory):
    batch_id = await _make_job(session_factory, {"prompt": "a cat"})
    services.client.outcomes = [retryable_error()]

    outcome = await services.processor.process(batch_id, 1)

    assert outcome.success
    assert outcome.retry_count == 1
    assert len(services.client.calls) == 2


@pytest.mark.asyncio
async def test_terminal_error_yields_failed_outcome(services, session_factory):
    batch_id = await _make_job(session_factory, {"prompt": "a cat"})
    services.client.outcomes = [terminal_error("auth_error", 401)]

    outcome = await services.processor.process(batch_id, 0)

    assert not outcome.success
    assert not outcome.skipped
    assert outcome.error_reason == "auth_error"
    assert len(services.client.calls) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_yield_failed_outcome(services, session_factory):
    batch_id = await _make_job(session_factory, {"prompt": "a cat"})
    services.client.outcomes = [retryable_error("rate_limited", 429)] * 3

    outcome = await services.processor.process(batch_id, 0)

    assert not outcome.success
    assert outcome.error_reason == "rate_limited"
    assert outcome.retry_count == 2
    assert len(services.client.calls) == 3


@pytest.mark.asyncio
async def test_inactive_job_is_skipped(services, session_factory):
    batch_id = await _make_job(session_factory, {"prompt": "a cat"}, status=BatchStatus.PAUSED)

    outcome = await services.processor.process(batch_id, 0)

    assert outcome.skipped
    assert outcome.error_reason == "job_inactive"
    assert services.client.calls == []


@pytest.mark.asyncio
async def test_missing_job_is_skipped(services):
    outcome = await services.processor.process("batch_nope", 0)
    assert outcome.skipped
    assert outcome.error_reason == "job_not_found"


@pytest.mark.asyncio
async def test_storage_failure_becomes_outcome(session_factory, generation_client):
    batch_id = await _make_job(session_factory, {"prompt": "a cat"})
    processor = ItemProcessor(session_factory, generation_client, BrokenStorage())

    outcome = await processor.process(batch_id, 0)

    assert not outcome.success
    assert outcome.error_reason == "storage_error"


@pytest.mark.asyncio
async def test_checked_job_is_generated_even_if_paused_since(services, session_factory):
    batch_id = await _make_job(session_factory, {"prompt": "a cat"})
    async with session_factory() as session:
        repo = BatchJobRepository(session)
        job = await repo.get(batch_id)
        await repo.transition_status(batch_id, {BatchStatus.PROCESSING}, BatchStatus.PAUSED)
        await session.commit()

    outcome = await services.processor.process(batch_id, 0, job=job)

    assert outcome.success
    assert not outcome.skipped
    assert len(services.client.calls) == 1


@pytest.mark.asyncio
async def test_deadline_bounds_the_whole_item(session_factory, storage):
    class Hanging(FakeGenerationClient):
        async def generate(self, params):
            await asyncio.sleep(30)

    batch_id = await _make_job(session_factory, {"prompt": "a cat"})
    processor = ItemProcessor(session_factory, Hanging(), storage, deadline_seconds=0.05)

    outcome = await processor.process(batch_id, 0)

    assert not outcome.success
    assert not outcome.skipped
    assert outcome.error_reason == "timeout"
