"""Pydantic schemas for API request/response validation."""

from market_sync.schemas.common import ErrorDetail, ErrorResponse
from market_sync.schemas.market import (
    LatestMarketItem,
    LatestMarketResponse,
    ProviderSyncStatus,
    SyncEnqueueResponse,
    SyncRequest,
    SyncStatusResponse,
)
from market_sync.schemas.workers import (
    DrainRequest,
    DrainResponse,
    QueueStatsResponse,
    RetentionResponse,
    RetentionStep,
    SalesMetricsRequest,
    SalesMetricsResponse,
    SchedulerResponse,
)

__all__ = [
    "DrainRequest",
    "DrainResponse",
    "ErrorDetail",
    "ErrorResponse",
    "LatestMarketItem",
    "LatestMarketResponse",
    "ProviderSyncStatus",
    "QueueStatsResponse",
    "RetentionResponse",
    "RetentionStep",
    "SalesMetricsRequest",
    "SalesMetricsResponse",
    "SchedulerResponse",
    "SyncEnqueueResponse",
    "SyncRequest",
    "SyncStatusResponse",
]
