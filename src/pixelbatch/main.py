"""FastAPI application factory and lifespan management."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pixelbatch import __version__
from pixelbatch.config import Settings, settings
from pixelbatch.db.engine import create_db_engine, create_session_factory
from pixelbatch.logging_config import configure_logging
from pixelbatch.services.artifact_storage import ArtifactStorage, FilesystemArtifactStorage
from pixelbatch.services.batch_controller import BatchController
from pixelbatch.services.batch_queries import BatchQueries
from pixelbatch.services.entitlements import AllowAllEntitlements, EntitlementChecker, HttpEntitlementChecker
from pixelbatch.services.generation_client import GenerationClient, HttpGenerationClient
from pixelbatch.services.rate_limiter import RateLimitPolicy
from pixelbatch.services.retry import RetryConfig, worst_case_duration_seconds
from pixelbatch.workers.batch_driver import BatchDriver
from pixelbatch.workers.callbacks import CallbackScheduler, InProcessCallbackScheduler, RedisCallbackScheduler
from pixelbatch.workers.item_processor import ItemProcessor

# Configure logging at import time
_json_logs = os.environ.get("PIXELBATCH_LOCAL_MODE", "0") != "1"
configure_logging(log_level=settings.log_level, json_output=_json_logs)

logger = logging.getLogger(__name__)


def wire_batch_services(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    scheduler: CallbackScheduler,
    client: GenerationClient,
    storage: ArtifactStorage,
    entitlements: EntitlementChecker,
    config: Settings = settings,
) -> BatchDriver:
    """Build the scheduler core from its collaborators and attach it to app.state."""
    retry_config = RetryConfig(
        max_retries=config.item_max_retries,
        base_delay_ms=config.item_retry_base_delay_ms,
        max_delay_ms=config.item_retry_max_delay_ms,
    )
    worst_case = worst_case_duration_seconds(retry_config, config.generation_timeout_seconds)
    if worst_case > config.item_deadline_seconds:
        logger.warning(
            "Item retries may take up to %.0fs; the %.0fs item deadline will cut them short",
            worst_case, config.item_deadline_seconds,
        )
    processor = ItemProcessor(
        session_factory,
        client,
        storage,
        retry_config=retry_config,
        deadline_seconds=config.item_deadline_seconds,
    )
    driver = BatchDriver(
        session_factory,
        scheduler,
        processor,
        rate_limit=RateLimitPolicy(
            base_ms=config.base_rate_limit_delay_ms,
            jitter_min_ms=config.min_jitter_ms,
            jitter_max_ms=config.max_jitter_ms,
        ),
    )
    app.state.db_session_factory = session_factory
    app.state.callback_scheduler = scheduler
    app.state.batch_driver = driver
    app.state.batch_controller = BatchController(
        session_factory,
        driver,
        entitlements=entitlements,
        max_batch_size=config.max_batch_size,
        min_batch_size=config.min_batch_size,
    )
    app.state.batch_queries = BatchQueries(session_factory)
    return driver


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    db_url = settings.effective_database_url
    engine = create_db_engine(db_url)

    # Auto-create tables for SQLite (local dev)
    if "sqlite" in db_url:
        from pixelbatch.db.base import Base
        import pixelbatch.db.models  # noqa: F401  register all ORM models

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQLite tables created (local mode)")

    app.state.db_engine = engine
    session_factory = create_session_factory(engine)

    app.state.redis = None
    if settings.effective_callback_backend == "redis":
        import redis.asyncio as aioredis

        app.state.redis = aioredis.from_url(settings.redis_url, decode_responses=True)
        scheduler: CallbackScheduler = RedisCallbackScheduler(
            app.state.redis,
            poll_interval_seconds=settings.callback_poll_interval_seconds,
            lease_seconds=settings.callback_lease_seconds,
            callback_timeout_seconds=settings.callback_timeout_seconds,
        )
    else:
        scheduler = InProcessCallbackScheduler(callback_timeout_seconds=settings.callback_timeout_seconds)

    client = HttpGenerationClient(
        settings.generation_base_url,
        api_key=settings.generation_api_key,
        timeout_seconds=settings.generation_timeout_seconds,
    )
    storage = FilesystemArtifactStorage(settings.artifact_dir, settings.artifact_base_url)
    entitlements = HttpEntitlementChecker(settings.billing_url) if settings.billing_url else AllowAllEntitlements()

    driver = wire_batch_services(app, session_factory, scheduler, client, storage, entitlements)
    await scheduler.start()
    if not scheduler.durable:
        await driver.rearm_active_jobs()

    logger.info(
        "pixelbatch API started (db=%s, callbacks=%s)",
        "sqlite" if "sqlite" in db_url else "postgresql",
        settings.effective_callback_backend,
    )
    yield

    # Shutdown
    await scheduler.stop()
    await client.aclose()
    if app.state.redis is not None:
        await app.state.redis.aclose()
    await engine.dispose()
    logger.info("pixelbatch API shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="pixelbatch API",
        version=__version__,
        description="Server-side batch image generation with pause, resume and cancel.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add middleware (order matters: last added = first executed)
    from pixelbatch.api.middleware.auth import AuthMiddleware
    from pixelbatch.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(AuthMiddleware)
    app.add_middleware(TraceIdMiddleware)

    from pixelbatch.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    from pixelbatch.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
