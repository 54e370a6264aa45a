"""Shared route dependencies: runtime objects and cron bearer auth."""

import logging

from fastapi import Depends, Header, HTTPException, Request

from market_sync.services.providers.base import MarketDataProvider
from market_sync.services.sync_worker import SyncWorker
from market_sync.services.types import Provider
from market_sync.settings import Settings, get_settings
from market_sync.stores.base import MarketStore

logger = logging.getLogger("uvicorn.error")


def get_store(request: Request) -> MarketStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Store not initialized")
    return store


def get_providers(request: Request) -> dict[Provider, MarketDataProvider]:
    return getattr(request.app.state, "providers", None) or {}


def get_worker(
    store: MarketStore = Depends(get_store),
    providers: dict[Provider, MarketDataProvider] = Depends(get_providers),
    settings: Settings = Depends(get_settings),
) -> SyncWorker:
    return SyncWorker(store, providers, settings)


def require_cron_secret(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Bearer CRON_SECRET check for scheduled endpoints (production only)."""
    if not settings.is_production:
        return
    if not settings.cron_secret:
        logger.error("[auth] CRON_SECRET is not set in production")
        raise HTTPException(status_code=500, detail="CRON_SECRET not configured")
    if authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
