"""Schemas for per-style market endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from market_sync.services.types import Provider


class SyncRequest(BaseModel):
    """Body for POST /v1/market/styles/{style_id}/sync (all fields optional)."""

    providers: list[Provider] | None = None


class SyncEnqueueResponse(BaseModel):
    style_id: str
    accepted: bool
    jobs: dict[str, str] = Field(default_factory=dict)


class ProviderSyncStatus(BaseModel):
    provider: str
    status: str
    attempts: int
    max_attempts: int
    last_error: str | None = None
    error_kind: str | None = None
    next_retry_at: datetime | None = None
    completed_at: datetime | None = None


class SyncStatusResponse(BaseModel):
    style_id: str
    status: str
    last_synced_at: datetime | None = None
    providers: list[ProviderSyncStatus]


class LatestMarketItem(BaseModel):
    provider: str
    size: str
    size_system: str
    region_id: str
    consigned: bool
    currency: str
    lowest_ask: float | None = None
    highest_bid: float | None = None
    last_sale_price: float | None = None
    snapshot_at: datetime
    freshness: str
    converted: bool = False
    source_currency: str | None = None


class LatestMarketResponse(BaseModel):
    style_id: str
    currency: str | None = None
    items: list[LatestMarketItem]
