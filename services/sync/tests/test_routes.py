"""Tests for worker and market HTTP endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient

from market_sync.main import app
from market_sync.services.catalog import ensure_style
from market_sync.services.sync_queue import enqueue
from market_sync.services.types import Provider
from market_sync.settings import get_settings


@pytest.fixture
async def client(store, settings):
    """Test client wired to an in-memory store (lifespan is not run)."""
    app.state.store = store
    app.state.providers = {}
    app.dependency_overrides[get_settings] = lambda: settings
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.store = None
    app.state.providers = {}


def use_settings(settings):
    app.dependency_overrides[get_settings] = lambda: settings


# ============================================================
# Cron auth
# ============================================================


@pytest.mark.asyncio
async def test_worker_routes_open_outside_production(client: AsyncClient):
    response = await client.get("/v1/workers/sync/stats")
    assert response.status_code == 200
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_worker_routes_require_bearer_in_production(client: AsyncClient, settings):
    use_settings(settings.model_copy(update={"environment": "production", "cron_secret": "s3cret"}))

    assert (await client.get("/v1/workers/sync/stats")).status_code == 401
    wrong = await client.get("/v1/workers/sync/stats", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    ok = await client.get("/v1/workers/sync/stats", headers={"Authorization": "Bearer s3cret"})
    assert ok.status_code == 200


@pytest.mark.asyncio
async def test_production_without_secret_is_a_server_error(client: AsyncClient, settings):
    use_settings(settings.model_copy(update={"environment": "production", "cron_secret": ""}))
    response = await client.post("/v1/workers/sync/drain", json={"limit": 5})
    assert response.status_code == 500


# ============================================================
# Worker endpoints
# ============================================================


@pytest.mark.asyncio
async def test_drain_reports_failures_without_raising(client: AsyncClient, store, settings):
    await ensure_style(store, "DD1391-100")
    await enqueue(store, "DD1391-100", Provider.EBAY, settings=settings)

    response = await client.post("/v1/workers/sync/drain", json={"limit": 5})

    assert response.status_code == 200
    data = response.json()
    assert (data["processed"], data["successful"], data["failed"]) == (1, 0, 1)
    assert data["errors"][0]["status"] == "failed"

    stats = (await client.get("/v1/workers/sync/stats", params={"provider": "ebay"})).json()
    assert stats["failed"] == 1
    assert stats["provider"] == "ebay"


@pytest.mark.asyncio
async def test_drain_rejects_oversized_limit(client: AsyncClient):
    response = await client.post("/v1/workers/sync/drain", json={"limit": 1000})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_scheduler_endpoint(client: AsyncClient, store):
    await ensure_style(store, "DD1391-100", {"tier": "hot"})

    response = await client.post("/v1/workers/scheduler/hot")
    assert response.status_code == 200
    assert response.json()["enqueued"] == 1

    assert (await client.post("/v1/workers/scheduler/lukewarm")).status_code == 400


@pytest.mark.asyncio
async def test_retention_endpoint(client: AsyncClient):
    response = await client.post("/v1/workers/retention")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert len(data["steps"]) == 5


@pytest.mark.asyncio
async def test_sales_metrics_endpoint(client: AsyncClient):
    response = await client.post("/v1/workers/sales-metrics", json={})
    assert response.status_code == 200
    assert response.json()["skus"] == 0


# ============================================================
# Market endpoints
# ============================================================


@pytest.mark.asyncio
async def test_request_sync_enqueues_jobs(client: AsyncClient, store):
    await ensure_style(store, "DD1391-100", {"alias_catalog_id": "cat-1"})

    response = await client.post("/v1/market/styles/dd1391-100/sync")

    assert response.status_code == 202
    data = response.json()
    assert data["style_id"] == "DD1391-100"
    assert data["accepted"] is True
    assert data["jobs"] == {"alias": "created", "ebay": "created"}

    status = await client.get("/v1/market/styles/DD1391-100/sync-status")
    assert status.status_code == 200
    assert status.json()["status"] == "syncing"


@pytest.mark.asyncio
async def test_unknown_style_is_accepted_false_and_404(client: AsyncClient):
    response = await client.post("/v1/market/styles/NOPE-1/sync")
    assert response.status_code == 202
    assert response.json()["accepted"] is False

    assert (await client.get("/v1/market/styles/NOPE-1/sync-status")).status_code == 404
    assert (await client.get("/v1/market/styles/NOPE-1/latest")).status_code == 404


@pytest.mark.asyncio
async def test_latest_is_empty_before_first_sync(client: AsyncClient, store):
    await ensure_style(store, "DD1391-100")
    response = await client.get("/v1/market/styles/DD1391-100/latest", params={"currency": "GBP"})
    assert response.status_code == 200
    assert response.json()["items"] == []
    assert response.json()["currency"] == "GBP"
