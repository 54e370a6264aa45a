"""One (style, provider) sync: the unit of work behind a sync job.

Flow per provider:
- StockX: resolve product id (search by style code if unmapped) -> product ->
  market data per currency -> variants + snapshots -> catalog backfill
- Alias: requires alias_catalog_id -> product -> availabilities per region ->
  variants + snapshots -> catalog backfill
- eBay: sold listings for the style code -> sale rows -> metrics refresh

Errors propagate as typed exceptions; the worker turns them into job state.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from market_sync.services.catalog import backfill_from_product, resolve_stockx_product_id
from market_sync.services.errors import NotFoundError, PermanentJobError
from market_sync.services.providers.base import MarketDataProvider
from market_sync.services.providers.ebay import EbayProvider
from market_sync.services.sales_ingestion import ingest_sold_listings
from market_sync.services.sales_metrics import refresh_sales_metrics
from market_sync.services.snapshots import persist_market_batch
from market_sync.services.types import Provider, StyleRecord
from market_sync.settings import Settings
from market_sync.stores.base import MarketStore

logger = logging.getLogger("uvicorn.error")


@dataclass
class SyncOutcome:
    style_id: str
    provider: Provider
    snapshots_inserted: int = 0
    snapshots_rejected: int = 0
    sales_inserted: int = 0
    metric_groups: int = 0
    backfilled: list[str] | None = None


async def _load_style(store: MarketStore, style_id: str) -> StyleRecord:
    style = await store.get_style(style_id)
    if style is None:
        raise PermanentJobError(PermanentJobError.STYLE_NOT_FOUND, f"style {style_id} is not in the catalog")
    return style


async def _sync_market_provider(
    store: MarketStore,
    adapter: MarketDataProvider,
    style: StyleRecord,
    product_id: str,
    *,
    currencies: list[str],
    settings: Settings,
    now: datetime,
) -> SyncOutcome:
    outcome = SyncOutcome(style_id=style.style_id, provider=adapter.provider)
    try:
        product = await adapter.fetch_product(product_id)
    except NotFoundError as e:
        raise PermanentJobError(
            PermanentJobError.MISSING_MAPPING,
            f"{adapter.provider.value} product {product_id} for {style.style_id} not found",
        ) from e

    snapshots = await adapter.fetch_market_batch(product_id, currencies=currencies)
    persisted = await persist_market_batch(
        store,
        style.style_id,
        snapshots,
        observed_at=now,
        max_price=settings.max_plausible_price,
    )
    outcome.snapshots_inserted = persisted.inserted
    outcome.snapshots_rejected = persisted.rejected

    outcome.backfilled = await backfill_from_product(store, style, product)
    return outcome


async def sync_stockx(
    store: MarketStore, adapter: MarketDataProvider, style: StyleRecord, *, settings: Settings, now: datetime
) -> SyncOutcome:
    product_id = await resolve_stockx_product_id(store, adapter, style)
    if not product_id:
        raise PermanentJobError(
            PermanentJobError.MISSING_MAPPING, f"no StockX product matches style {style.style_id}"
        )
    return await _sync_market_provider(
        store, adapter, style, product_id, currencies=settings.snapshot_currencies, settings=settings, now=now
    )


async def sync_alias(
    store: MarketStore, adapter: MarketDataProvider, style: StyleRecord, *, settings: Settings, now: datetime
) -> SyncOutcome:
    if not style.alias_catalog_id:
        raise PermanentJobError(PermanentJobError.MISSING_MAPPING, f"style {style.style_id} has no alias_catalog_id")
    return await _sync_market_provider(
        store,
        adapter,
        style,
        style.alias_catalog_id,
        currencies=[adapter.default_currency],
        settings=settings,
        now=now,
    )


async def sync_ebay(
    store: MarketStore, adapter: MarketDataProvider, style: StyleRecord, *, settings: Settings, now: datetime
) -> SyncOutcome:
    if not isinstance(adapter, EbayProvider):
        raise TypeError(f"eBay sync needs an EbayProvider, got {type(adapter).__name__}")
    ingested = await ingest_sold_listings(store, adapter, style.style_id, limit=settings.ebay_sold_search_limit)
    metrics = await refresh_sales_metrics(store, style.style_id, now=now)
    return SyncOutcome(
        style_id=style.style_id,
        provider=Provider.EBAY,
        sales_inserted=ingested.inserted,
        metric_groups=len(metrics),
    )


_SYNCERS = {
    Provider.STOCKX: sync_stockx,
    Provider.ALIAS: sync_alias,
    Provider.EBAY: sync_ebay,
}


async def sync_style_provider(
    store: MarketStore,
    providers: dict[Provider, MarketDataProvider],
    style_id: str,
    provider: Provider,
    *,
    settings: Settings,
    now: datetime,
) -> SyncOutcome:
    """Run one sync and stamp the style as synced on success."""
    adapter = providers.get(provider)
    if adapter is None:
        raise PermanentJobError(
            PermanentJobError.PROVIDER_NOT_CONFIGURED, f"{provider.value} is not configured on this worker"
        )
    style = await _load_style(store, style_id)
    outcome = await _SYNCERS[provider](store, adapter, style, settings=settings, now=now)
    await store.mark_style_synced(style.style_id, now)
    logger.info(
        f"[sync] {style.style_id}/{provider.value}: snapshots={outcome.snapshots_inserted} "
        f"rejected={outcome.snapshots_rejected} sales={outcome.sales_inserted} metrics={outcome.metric_groups}"
    )
    return outcome
