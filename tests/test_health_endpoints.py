import pytest
from httpx import ASGITransport, AsyncClient

from barbershop_api.core.settings import settings
from barbershop_api.observability.loyalty import get_loyalty_store
from barbershop_api.observability.scheduler import get_job_scheduler_store


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_liveness_reports_version(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.get("/healthz")
        alias = await client.get("/api/v1/health/healthz")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["environment"] == settings.environment
    assert body["version"]
    assert alias.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_readiness_lists_components(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "job_scheduler_enabled", False)

    async with _client(app) as client:
        response = await client.get("/api/v1/health/readyz")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ready"
    assert body["components"]["database"]["status"] == "ready"
    assert body["components"]["push"]["status"] == "ready"
    assert body["components"]["scheduler"]["status"] == "disabled"


@pytest.mark.asyncio
async def test_readiness_degrades_without_running_scheduler(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    app.state.push_backend = None
    monkeypatch.setattr(settings, "job_scheduler_enabled", True)

    async with _client(app) as client:
        response = await client.get("/api/v1/health/readyz")

    body = response.json()
    assert body["status"] == "degraded"
    assert body["components"]["push"]["status"] == "disabled"
    assert body["components"]["scheduler"]["status"] == "error"


@pytest.mark.asyncio
async def test_observability_endpoints_expose_counters(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "internal_api_key", "secret")
    get_job_scheduler_store().reset()
    store = get_loyalty_store()
    store.record_credit("auto", free_cut_granted=True)
    store.record_credit_race("qr")

    async with _client(app) as client:
        denied = await client.get("/api/v1/observability/loyalty")
        loyalty = await client.get("/api/v1/observability/loyalty", headers={"X-API-Key": "secret"})
        scheduler = await client.get("/api/v1/observability/scheduler", headers={"X-API-Key": "secret"})
        metrics = await client.get("/api/v1/observability/prometheus", headers={"X-API-Key": "secret"})

    assert denied.status_code == 401
    credits = loyalty.json()["credits"]
    assert credits == {"auto": 1, "total": 1, "free_cuts_granted": 1}
    assert loyalty.json()["races"] == {"qr": 1}
    assert scheduler.json()["running"] is False
    assert scheduler.json()["totals"]["runs"] == 0
    assert 'barbershop_loyalty_credits_total{source="auto"} 1' in metrics.text
    assert 'barbershop_loyalty_races_lost_total{source="qr"} 1' in metrics.text
