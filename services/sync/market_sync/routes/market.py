"""Per-style market endpoints: on-demand sync, sync status, latest prices."""

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query

from market_sync.routes.deps import get_store
from market_sync.schemas.market import (
    LatestMarketItem,
    LatestMarketResponse,
    SyncEnqueueResponse,
    SyncRequest,
    SyncStatusResponse,
)
from market_sync.services.fx import FxError, FxRates, get_latest_fx_rates
from market_sync.services.normalization import normalize_style_id
from market_sync.services.snapshots import latest_market_view
from market_sync.services.sync_queue import enqueue_best_effort, sync_status
from market_sync.services.types import utcnow
from market_sync.settings import Settings, get_settings
from market_sync.stores.base import MarketStore

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


@router.post("/{style_id}/sync", response_model=SyncEnqueueResponse, status_code=202)
async def request_style_sync(
    style_id: str,
    body: SyncRequest | None = None,
    store: MarketStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> SyncEnqueueResponse:
    """Best-effort enqueue of sync jobs for one style. Never fails the caller."""
    outcomes = await enqueue_best_effort(
        store, style_id, settings=settings, providers=body.providers if body else None
    )
    return SyncEnqueueResponse(
        style_id=normalize_style_id(style_id),
        accepted=bool(outcomes),
        jobs={p.value: o.value for p, o in (outcomes or {}).items()},
    )


@router.get("/{style_id}/sync-status", response_model=SyncStatusResponse)
async def get_style_sync_status(style_id: str, store: MarketStore = Depends(get_store)) -> SyncStatusResponse:
    status = await sync_status(store, style_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Unknown style: {style_id}")
    return SyncStatusResponse(**status)


async def _rates_or_none(settings: Settings) -> FxRates | None:
    if not settings.openexchangerates_key:
        return None
    try:
        return await get_latest_fx_rates()
    except (FxError, httpx.HTTPError) as e:
        logger.warning(f"[market] FX rates unavailable, serving native currencies only: {e}")
        return None


@router.get("/{style_id}/latest", response_model=LatestMarketResponse)
async def get_latest_market(
    style_id: str,
    currency: str | None = Query(default=None, min_length=3, max_length=3),
    store: MarketStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> LatestMarketResponse:
    """Newest snapshot per variant with freshness labels."""
    normalized = normalize_style_id(style_id)
    if await store.get_style(normalized) is None:
        raise HTTPException(status_code=404, detail=f"Unknown style: {style_id}")

    rates = await _rates_or_none(settings) if currency else None
    items = await latest_market_view(
        store, normalized, now=utcnow(), settings=settings, currency=currency, rates=rates
    )
    return LatestMarketResponse(
        style_id=normalized,
        currency=currency.upper() if currency else None,
        items=[LatestMarketItem(**item) for item in items],
    )
