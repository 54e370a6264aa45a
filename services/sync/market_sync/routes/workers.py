"""Scheduled worker endpoints (called by an external cron).

All routes require `Authorization: Bearer <CRON_SECRET>` in production.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from market_sync.routes.deps import get_store, get_worker, require_cron_secret
from market_sync.schemas.workers import (
    DrainRequest,
    DrainResponse,
    QueueStatsResponse,
    RetentionResponse,
    SalesMetricsRequest,
    SalesMetricsResponse,
    SchedulerResponse,
)
from market_sync.services.retention import run_retention
from market_sync.services.sales_metrics import refresh_all_sales_metrics
from market_sync.services.scheduler import run_scheduler
from market_sync.services.sync_queue import queue_stats
from market_sync.services.sync_worker import SyncWorker
from market_sync.services.types import Provider, Tier
from market_sync.settings import Settings, get_settings
from market_sync.stores.base import MarketStore

router = APIRouter(dependencies=[Depends(require_cron_secret)])
logger = logging.getLogger("uvicorn.error")


@router.post("/sync/drain", response_model=DrainResponse)
async def drain_sync_queue(
    body: DrainRequest | None = None,
    worker: SyncWorker = Depends(get_worker),
) -> DrainResponse:
    """Process one batch of queued sync jobs."""
    body = body or DrainRequest()
    result = await worker.process_batch(body.limit, body.provider)
    return DrainResponse(**result.as_dict())


@router.get("/sync/stats", response_model=QueueStatsResponse)
async def sync_queue_stats(
    provider: Provider | None = None,
    store: MarketStore = Depends(get_store),
) -> QueueStatsResponse:
    """Queue depth by status."""
    stats = await queue_stats(store, provider)
    return QueueStatsResponse(
        pending=stats.pending,
        processing=stats.processing,
        completed=stats.completed,
        failed=stats.failed,
        total=stats.total,
        provider=provider,
    )


@router.post("/scheduler/{tier}", response_model=SchedulerResponse)
async def trigger_scheduler(
    tier: str,
    store: MarketStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> SchedulerResponse:
    try:
        parsed = Tier(tier.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown tier: {tier}")
    return SchedulerResponse(**await run_scheduler(store, parsed, settings=settings))


@router.post("/retention", response_model=RetentionResponse)
async def trigger_retention(
    store: MarketStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Run the daily retention steps. 500 with the per-step report if any step failed."""
    report = await run_retention(store, settings=settings)
    if not report.ok:
        return JSONResponse(status_code=500, content=report.as_dict())
    return RetentionResponse(**report.as_dict())


@router.post("/sales-metrics", response_model=SalesMetricsResponse)
async def trigger_sales_metrics(
    body: SalesMetricsRequest | None = None,
    store: MarketStore = Depends(get_store),
) -> SalesMetricsResponse:
    summary = await refresh_all_sales_metrics(store, sku=body.sku if body else None)
    return SalesMetricsResponse(**summary)
