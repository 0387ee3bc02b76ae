"""Operator snapshots of in-process loyalty, push and scheduler counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from barbershop_api.api.dependencies.security import require_internal_api_key
from barbershop_api.observability.loyalty import get_loyalty_store
from barbershop_api.observability.scheduler import get_job_scheduler_store

router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_internal_api_key)],
)


@router.get("/loyalty", summary="Loyalty crediting and push delivery counters")
async def get_loyalty_snapshot() -> dict[str, object]:
    return get_loyalty_store().snapshot().as_dict()


@router.get("/scheduler", summary="Scheduled job health")
async def get_scheduler_snapshot(request: Request) -> dict[str, object]:
    scheduler = getattr(request.app.state, "job_scheduler", None)
    if scheduler is not None:
        return scheduler.health()
    return {"running": False, **get_job_scheduler_store().snapshot().as_dict()}


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_str = ""
    if labels:
        label_str = "{" + ",".join(f'{key}="{val}"' for key, val in sorted(labels.items())) + "}"
    return [f"# HELP {name} {description}", f"# TYPE {name} counter", f"{name}{label_str} {value}"]


@router.get("/prometheus", response_class=PlainTextResponse, summary="Prometheus exposition of engine counters")
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_loyalty_store().snapshot()
    lines: list[str] = []
    for source, count in sorted(snapshot.credits.items()):
        lines.extend(_format_metric("barbershop_loyalty_credits_total", "Loyalty stamps credited", count, {"source": source}))
    for source, count in sorted(snapshot.races.items()):
        lines.extend(_format_metric("barbershop_loyalty_races_lost_total", "Credits rejected as already applied", count, {"source": source}))
    for outcome, count in sorted(snapshot.push.get("deliveries", {}).items()):
        lines.extend(_format_metric("barbershop_push_deliveries_total", "Push delivery attempts", count, {"outcome": outcome}))
    for status_name, count in sorted(snapshot.push.get("dispatches", {}).items()):
        lines.extend(_format_metric("barbershop_push_dispatches_total", "Dispatch calls by final status", count, {"status": status_name}))
    scheduler_totals = get_job_scheduler_store().snapshot().totals
    for key, count in sorted(scheduler_totals.items()):
        lines.extend(_format_metric(f"barbershop_scheduler_{key}_total", f"Scheduled job {key}", count))
    return PlainTextResponse("\n".join(lines) + "\n")
