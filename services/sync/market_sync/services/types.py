"""Shared domain types for the sync pipeline.

Provider adapters return these shapes, stores read and write them, and services
pass them around. Raw provider JSON never leaves the adapter layer; everything
downstream works with the dataclasses below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Provider(str, Enum):
    STOCKX = "stockx"
    ALIAS = "alias"
    EBAY = "ebay"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Kind of the last failure recorded on a sync job."""

    PERMANENT = "permanent"
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"


class Tier(str, Enum):
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"
    FROZEN = "frozen"


class Freshness(str, Enum):
    FRESH = "fresh"
    AGING = "aging"
    STALE = "stale"


class SizeSystem(str, Enum):
    US = "US"
    UK = "UK"
    EU = "EU"
    JP = "JP"
    UNKNOWN = "UNKNOWN"


# ============================================================
# Provider-facing shapes
# ============================================================


@dataclass(frozen=True)
class CatalogHit:
    external_id: str
    name: str
    brand: str | None = None
    sku: str | None = None


@dataclass(frozen=True)
class ProviderProduct:
    """Product metadata as reported by a provider catalog."""

    provider: Provider
    external_id: str
    style_id: str | None = None
    brand: str | None = None
    name: str | None = None
    colorway: str | None = None
    category: str | None = None
    image_url: str | None = None
    release_date: date | None = None
    retail_price: float | None = None
    retail_currency: str | None = None
    url_key: str | None = None


@dataclass(frozen=True)
class ProviderVariantInfo:
    external_variant_id: str
    size: str
    size_system: SizeSystem = SizeSystem.US
    region_id: str = ""
    consigned: bool = False


@dataclass(frozen=True)
class VariantMarketSnapshot:
    """Normalized market state for one variant. Money is always in major units."""

    provider: Provider
    external_product_id: str
    variant: ProviderVariantInfo
    currency: str
    lowest_ask: float | None = None
    highest_bid: float | None = None
    last_sale_price: float | None = None
    sales_72h: int | None = None
    sales_7d: int | None = None
    sales_30d: int | None = None
    volatility: float | None = None
    liquidity: float | None = None

    @property
    def has_prices(self) -> bool:
        return any(v is not None for v in (self.lowest_ask, self.highest_bid, self.last_sale_price))


@dataclass(frozen=True)
class SoldListing:
    """One sold listing from a sales marketplace, before inclusion rules are applied."""

    item_id: str
    marketplace_id: str
    title: str
    price: str
    currency: str
    sold_at: datetime
    condition_id: int | None = None
    authenticity_guarantee: bool = False
    variation_aspects: list[list[dict[str, str]]] = field(default_factory=list)
    item_aspects: list[dict[str, str]] = field(default_factory=list)


# ============================================================
# Store records
# ============================================================


@dataclass
class StyleRecord:
    style_id: str
    brand: str | None = None
    name: str | None = None
    colorway: str | None = None
    category: str | None = None
    image_url: str | None = None
    release_date: date | None = None
    retail_price: float | None = None
    retail_currency: str | None = None
    stockx_product_id: str | None = None
    stockx_url_key: str | None = None
    alias_catalog_id: str | None = None
    tier: Tier = Tier.WARM
    last_synced_at: datetime | None = None


# Catalog columns the sync path may fill (never overwrite).
CATALOG_FILLABLE_FIELDS: tuple[str, ...] = (
    "brand",
    "name",
    "colorway",
    "category",
    "image_url",
    "release_date",
    "retail_price",
    "retail_currency",
    "stockx_product_id",
    "stockx_url_key",
    "alias_catalog_id",
)


@dataclass(frozen=True)
class SnapshotRecord:
    style_id: str
    variant_id: int
    provider: Provider
    region_id: str
    currency: str
    lowest_ask: float | None
    highest_bid: float | None
    last_sale_price: float | None
    snapshot_at: datetime
    sales_72h: int | None = None
    sales_7d: int | None = None
    sales_30d: int | None = None
    volatility: float | None = None
    liquidity: float | None = None


@dataclass(frozen=True)
class LatestMarketRow:
    style_id: str
    variant_id: int
    provider: Provider
    size_value: str
    size_system: str
    region_id: str
    consigned: bool
    currency: str
    lowest_ask: float | None
    highest_bid: float | None
    last_sale_price: float | None
    snapshot_at: datetime


@dataclass
class SyncJob:
    id: int
    style_id: str
    provider: Provider
    status: JobStatus
    attempts: int = 0
    max_attempts: int = 3
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    last_error: str | None = None
    error_kind: ErrorKind | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class SaleRecord:
    marketplace_id: str
    item_id: str
    sku: str
    title: str
    price_minor: int
    currency: str
    sold_at: datetime
    condition_id: int | None
    authenticity_guarantee: bool
    size_value: str | None = None
    size_system: SizeSystem | None = None
    size_key: str | None = None
    size_confidence: float = 0.0
    is_outlier: bool = False
    outlier_reason: str | None = None
    exclusion_reason: str | None = None
    included_in_metrics: bool = False
    fetched_at: datetime | None = None


@dataclass(frozen=True)
class SaleFlagUpdate:
    marketplace_id: str
    item_id: str
    is_outlier: bool
    outlier_reason: str | None
    included_in_metrics: bool


@dataclass
class SalesMetricRecord:
    sku: str
    size_key: str
    currency: str
    marketplace_id: str
    median_72h: float | None = None
    median_7d: float | None = None
    median_30d: float | None = None
    median_90d: float | None = None
    sample_72h: int = 0
    sample_7d: int = 0
    sample_30d: int = 0
    sample_90d: int = 0
    min_90d: int | None = None
    max_90d: int | None = None
    volatility: float | None = None
    outlier_ratio: float = 0.0
    liquidity_score: float = 0.0
    confidence_score: float = 0.0
    last_sale_at: datetime | None = None
    computed_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items()}


@dataclass
class QueueStats:
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed
