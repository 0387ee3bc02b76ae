from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop_api.core.settings import settings
from barbershop_api.db.session import get_session

router = APIRouter(prefix="/health")


class ComponentStatus(BaseModel):
    status: Literal["ready", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", include_in_schema=False)
async def service_health_alias() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}

    try:
        await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Readiness database probe failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail=str(exc))
    else:
        components["database"] = ComponentStatus(status="ready")

    backend = getattr(request.app.state, "push_backend", None)
    if backend is None:
        components["push"] = ComponentStatus(status="disabled", detail="VAPID keys not configured")
    elif settings.push_dry_run:
        components["push"] = ComponentStatus(status="degraded", detail="dry run: deliveries are recorded, not sent")
    else:
        components["push"] = ComponentStatus(status="ready")

    scheduler = getattr(request.app.state, "job_scheduler", None)
    if not settings.job_scheduler_enabled:
        components["scheduler"] = ComponentStatus(status="disabled", detail="job_scheduler_enabled is false")
    elif scheduler is not None and scheduler.is_running:
        health = scheduler.health()
        failing = [
            job["id"]
            for job in health["jobs"]
            if ((job.get("metrics") or {}).get("totals") or {}).get("consecutive_failures")
        ]
        if failing:
            components["scheduler"] = ComponentStatus(status="degraded", detail=f"failing jobs: {', '.join(failing)}")
        else:
            components["scheduler"] = ComponentStatus(status="ready", detail=f"{health['configured_jobs']} jobs")
    else:
        components["scheduler"] = ComponentStatus(status="error", detail="scheduler enabled but not running")

    overall: Literal["ready", "degraded", "error"] = "ready"
    if components["database"].status == "error":
        overall = "error"
    elif any(component.status in ("error", "degraded") for component in components.values()):
        overall = "degraded"
    return ReadinessPayload(status=overall, components=components)
