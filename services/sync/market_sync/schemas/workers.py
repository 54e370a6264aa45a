"""Request/response schemas for scheduled worker endpoints."""

from typing import Any

from pydantic import BaseModel, Field

from market_sync.services.types import Provider


class DrainRequest(BaseModel):
    """Body for POST /v1/workers/sync/drain."""

    limit: int = Field(default=10, ge=1, le=100)
    provider: Provider | None = None


class DrainResponse(BaseModel):
    processed: int
    successful: int
    failed: int
    errors: list[dict[str, Any]] = Field(default_factory=list)


class QueueStatsResponse(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    total: int
    provider: Provider | None = None


class SchedulerResponse(BaseModel):
    tier: str
    selected: int
    enqueued: int
    unchanged: int
    skipped: bool


class RetentionStep(BaseModel):
    name: str
    ok: bool
    rows: int = 0
    error: str | None = None


class RetentionResponse(BaseModel):
    run_id: str
    started_at: str
    ok: bool
    skipped: bool
    steps: list[RetentionStep]


class SalesMetricsRequest(BaseModel):
    sku: str | None = None


class SalesMetricsResponse(BaseModel):
    skus: int
    groups: int
    errors: list[dict[str, Any]] = Field(default_factory=list)
