"""Health check endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from pixelbatch import __version__
from pixelbatch.workers.batch_driver import PROCESS_ITEM_TASK

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "pixelbatch-api", "version": __version__}


@router.get("/health/live")
async def liveness():
    return {"status": "alive"}


def _callback_check(request: Request) -> tuple[str, bool]:
    scheduler = getattr(request.app.state, "callback_scheduler", None)
    if scheduler is None or scheduler.get_handler(PROCESS_ITEM_TASK) is None:
        return "error: item continuation handler not registered", False
    return ("durable" if scheduler.durable else "in_process"), True


@router.get("/health/ready")
async def readiness(request: Request):
    """Ready when the job store answers, Redis (if configured) answers, and
    continuations have a handler to land on."""
    checks: dict[str, str] = {}
    overall_ok = True

    try:
        async with request.app.state.db_session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"
        overall_ok = False

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"
            overall_ok = False

    checks["callbacks"], callbacks_ok = _callback_check(request)
    overall_ok = overall_ok and callbacks_ok

    return JSONResponse(
        status_code=200 if overall_ok else 503,
        content={"status": "ready" if overall_ok else "not_ready", "checks": checks},
    )
