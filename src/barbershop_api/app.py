from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from barbershop_api.core.settings import settings
from barbershop_api.db.session import StoreUnavailableError, async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import JobScheduler
from .services.push import build_push_backend


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def _schedule_path() -> Path:
    schedule_path = Path(settings.job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    # MalformedKeyError propagates: bad VAPID material must stop startup.
    push_backend = build_push_backend()
    if push_backend is None:
        logger.warning("Push notifications disabled", reason="VAPID keys not configured")
    else:
        logger.info("Push backend ready", backend=type(push_backend).__name__, dry_run=settings.push_dry_run)
    app.state.push_backend = push_backend

    schedule_path = _schedule_path()
    job_scheduler = JobScheduler(
        session_factory=_session_factory,
        config_path=schedule_path,
        push_backend=push_backend,
    )
    app.state.job_scheduler = job_scheduler

    scheduler_enabled = settings.job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Job scheduler failed to start", error=str(exc))
        else:
            logger.info("Job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info("Job scheduler disabled", reason="job_scheduler_enabled is false")

    try:
        yield
    finally:
        if scheduler_enabled and job_scheduler.is_running:
            await job_scheduler.stop()
        if push_backend is not None:
            await push_backend.aclose()


async def _store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error("Request failed on store access", path=request.url.path, operation=exc.operation)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error", "operation": exc.operation},
    )


def create_app() -> FastAPI:
    """Application factory for the barbershop loyalty and push API."""
    configure_logging(
        service_name="barbershop-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Barbershop Loyalty & Push API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="barbershop-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.add_exception_handler(StoreUnavailableError, _store_unavailable_handler)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
