"""SQLAlchemy ORM models.

Models represent database tables:
- style_catalog: One row per product style code, with provider mappings and tier
- provider_variants: Size/region/consignment variants per provider
- market_snapshots: Append-only market observations (major units)
- market_latest: Newest snapshot per (variant, currency)
- sync_jobs: Durable work queue keyed by (style_id, provider)
- sale_transactions: Individual sold listings with inclusion flags
- sales_metrics / sales_daily / sales_monthly: Derived aggregates
"""

from market_sync.models.catalog import ProviderVariant, StyleCatalog
from market_sync.models.sales import SaleTransaction, SalesDaily, SalesMetric, SalesMonthly
from market_sync.models.snapshot import MarketLatest, MarketSnapshot
from market_sync.models.sync_job import SyncJobRow

__all__ = [
    "MarketLatest",
    "MarketSnapshot",
    "ProviderVariant",
    "SaleTransaction",
    "SalesDaily",
    "SalesMetric",
    "SalesMonthly",
    "StyleCatalog",
    "SyncJobRow",
]
