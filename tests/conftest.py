"""Shared test fixtures."""

import random
from dataclasses import dataclass
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pixelbatch.config import settings
from pixelbatch.db.base import Base
# Import all models to register with Base.metadata
import pixelbatch.db.models  # noqa: F401
from pixelbatch.services.artifact_storage import FilesystemArtifactStorage
from pixelbatch.services.batch_controller import BatchController
from pixelbatch.services.batch_queries import BatchQueries
from pixelbatch.services.entitlements import AllowAllEntitlements
from pixelbatch.services.generation_client import GeneratedImage, GenerationClient, GenerationError
from pixelbatch.services.rate_limiter import RateLimitPolicy
from pixelbatch.services.retry import RetryConfig
from pixelbatch.workers.batch_driver import BatchDriver
from pixelbatch.workers.callbacks import CallbackScheduler
from pixelbatch.workers.item_processor import ItemProcessor

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class ManualCallbackScheduler(CallbackScheduler):
    """Records armed continuations; tests fire them one at a time."""

    durable = False

    def __init__(self):
        super().__init__(callback_timeout_seconds=30.0)
        self.armed: list[tuple[int, str, dict[str, Any]]] = []

    async def schedule(self, delay_ms: int, task_name: str, payload: dict[str, Any]) -> None:
        self.armed.append((delay_ms, task_name, dict(payload)))

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    def armed_items(self, batch_id: str) -> list[int]:
        return [p["item_index"] for _, _, p in self.armed if p.get("batch_id") == batch_id]

    async def run_next(self) -> dict[str, Any]:
        _, task_name, payload = self.armed.pop(0)
        await self.get_handler(task_name)(**payload)
        return payload

    async def run_all(self, limit: int = 10_000) -> int:
        ran = 0
        while self.armed and ran < limit:
            await self.run_next()
            ran += 1
        return ran


class FakeGenerationClient(GenerationClient):
    """Returns queued outcomes in call order, then succeeds."""

    def __init__(self, outcomes: list[GeneratedImage | GenerationError] | None = None):
        self.outcomes = list(outcomes or [])
        self.calls: list[dict[str, Any]] = []

    async def generate(self, params: dict[str, Any]) -> GeneratedImage:
        self.calls.append(dict(params))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, GenerationError):
                raise outcome
            return outcome
        return GeneratedImage(data=PNG_BYTES, content_type="image/png")


def terminal_error(reason: str = "validation_error", status: int = 400) -> GenerationError:
    return GenerationError(reason, f"HTTP {status}: rejected", retryable=False, status_code=status)


def retryable_error(reason: str = "server_error", status: int = 503) -> GenerationError:
    return GenerationError(reason, f"HTTP {status}: unavailable", retryable=True, status_code=status)


async def _no_sleep(_seconds: float) -> None:
    return None


@dataclass
class BatchServices:
    scheduler: ManualCallbackScheduler
    client: FakeGenerationClient
    processor: ItemProcessor
    driver: BatchDriver
    controller: BatchController
    queries: BatchQueries


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def scheduler():
    return ManualCallbackScheduler()


@pytest.fixture
def generation_client():
    return FakeGenerationClient()


@pytest.fixture
def storage(tmp_path):
    return FilesystemArtifactStorage(tmp_path / "artifacts", "http://test/artifacts")


@pytest.fixture
def services(session_factory, scheduler, generation_client, storage) -> BatchServices:
    processor = ItemProcessor(
        session_factory,
        generation_client,
        storage,
        retry_config=RetryConfig(max_retries=2, base_delay_ms=10, max_delay_ms=50),
        sleep=_no_sleep,
        rng=random.Random(7),
    )
    driver = BatchDriver(
        session_factory,
        scheduler,
        processor,
        rate_limit=RateLimitPolicy(rng=random.Random(1)),
    )
    controller = BatchController(session_factory, driver, entitlements=AllowAllEntitlements())
    return BatchServices(
        scheduler=scheduler,
        client=generation_client,
        processor=processor,
        driver=driver,
        controller=controller,
        queries=BatchQueries(session_factory),
    )


@pytest.fixture
def app(db_engine, services, session_factory):
    """Create a test application instance wired to the in-memory DB and manual scheduler."""
    from pixelbatch.main import create_app

    _app = create_app()
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = session_factory
    _app.state.redis = None
    _app.state.callback_scheduler = services.scheduler
    _app.state.batch_driver = services.driver
    _app.state.batch_controller = services.controller
    _app.state.batch_queries = services.queries
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def make_token(sub: str) -> str:
    return jwt.encode(
        {"sub": sub, "iss": settings.jwt_issuer, "aud": settings.jwt_audience},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def auth_headers(sub: str = "user_alice") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(sub)}"}
