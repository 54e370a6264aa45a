"""API routes."""

from fastapi import APIRouter

from market_sync.routes import market, workers

api_router = APIRouter()

# Scheduled worker endpoints (cron bearer auth)
api_router.include_router(workers.router, prefix="/v1/workers", tags=["workers"])

# Per-style market endpoints
api_router.include_router(market.router, prefix="/v1/market/styles", tags=["market"])
