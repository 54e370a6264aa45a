"""Sold-listing ingestion and the inclusion rule.

A sale counts toward price statistics only when:
    condition is NEW (eBay conditionId 1000)
    AND it carries eBay's authenticity guarantee
    AND its size and size system are known
    AND the size came from a structured variation (confidence 1.0)
    AND it is not a statistical outlier
    AND no exclusion reason was recorded

The result is stored on the row (included_in_metrics) so aggregation never
re-derives it.
"""

import logging
from dataclasses import dataclass, replace

from market_sync.services.normalization import (
    CONFIDENCE_STRUCTURED,
    extract_listing_size,
    major_to_minor,
    normalize_style_id,
)
from market_sync.services.providers.ebay import EbayProvider
from market_sync.services.types import SaleRecord, SizeSystem, SoldListing, utcnow
from market_sync.stores.base import MarketStore

logger = logging.getLogger("uvicorn.error")

CONDITION_NEW = 1000

EXCLUDE_NOT_NEW = "not_new_condition"
EXCLUDE_NO_AUTHENTICITY = "no_authenticity_guarantee"
EXCLUDE_MISSING_SIZE = "missing_size"
EXCLUDE_SIZE_SYSTEM_UNKNOWN = "size_system_unknown"
EXCLUDE_SIZE_NOT_STRUCTURED = "size_not_from_variations"


def exclusion_reason_for(
    *,
    condition_id: int | None,
    authenticity_guarantee: bool,
    size_value: str | None,
    size_system: SizeSystem | None,
    size_confidence: float,
) -> str | None:
    """First failing rule, or None if the sale is eligible."""
    if condition_id != CONDITION_NEW:
        return EXCLUDE_NOT_NEW
    if not authenticity_guarantee:
        return EXCLUDE_NO_AUTHENTICITY
    if not size_value:
        return EXCLUDE_MISSING_SIZE
    if size_system is None or size_system == SizeSystem.UNKNOWN:
        return EXCLUDE_SIZE_SYSTEM_UNKNOWN
    if size_confidence < CONFIDENCE_STRUCTURED:
        return EXCLUDE_SIZE_NOT_STRUCTURED
    return None


def is_included(sale: SaleRecord) -> bool:
    return (
        sale.condition_id == CONDITION_NEW
        and sale.authenticity_guarantee is True
        and bool(sale.size_value)
        and sale.size_system is not None
        and sale.size_system != SizeSystem.UNKNOWN
        and sale.size_confidence == CONFIDENCE_STRUCTURED
        and not sale.is_outlier
        and sale.exclusion_reason is None
    )


def with_inclusion(sale: SaleRecord) -> SaleRecord:
    """Recompute exclusion_reason and included_in_metrics from the row's fields."""
    reason = exclusion_reason_for(
        condition_id=sale.condition_id,
        authenticity_guarantee=sale.authenticity_guarantee,
        size_value=sale.size_value,
        size_system=sale.size_system,
        size_confidence=sale.size_confidence,
    )
    evaluated = replace(sale, exclusion_reason=reason)
    return replace(evaluated, included_in_metrics=is_included(evaluated))


def sale_from_listing(listing: SoldListing, sku: str) -> SaleRecord | None:
    price_minor = major_to_minor(listing.price)
    if price_minor is None or price_minor <= 0:
        logger.warning(f"[sales] skipping item={listing.item_id}: bad price {listing.price!r}")
        return None

    size = extract_listing_size(
        title=listing.title,
        variation_aspects=listing.variation_aspects,
        item_aspects=listing.item_aspects,
        marketplace_id=listing.marketplace_id,
    )
    sale = SaleRecord(
        marketplace_id=listing.marketplace_id,
        item_id=listing.item_id,
        sku=normalize_style_id(sku),
        title=listing.title,
        price_minor=price_minor,
        currency=listing.currency.upper(),
        sold_at=listing.sold_at,
        condition_id=listing.condition_id,
        authenticity_guarantee=listing.authenticity_guarantee,
        size_value=size.size if size else None,
        size_system=size.system if size else None,
        size_key=size.size_key if size else None,
        size_confidence=size.confidence if size else 0.0,
    )
    return with_inclusion(sale)


@dataclass
class IngestResult:
    sku: str
    fetched: int = 0
    parsed: int = 0
    inserted: int = 0
    included: int = 0


async def ingest_sold_listings(store: MarketStore, ebay: EbayProvider, sku: str, *, limit: int) -> IngestResult:
    """Fetch sold listings for `sku`, evaluate the inclusion rule and store new rows."""
    result = IngestResult(sku=normalize_style_id(sku))
    listings = await ebay.search_sold(result.sku, limit=limit)
    result.fetched = len(listings)

    sales = [s for s in (sale_from_listing(listing, result.sku) for listing in listings) if s is not None]
    result.parsed = len(sales)
    result.included = sum(1 for s in sales if s.included_in_metrics)
    now = utcnow()
    result.inserted = await store.insert_sale_transactions([replace(s, fetched_at=now) for s in sales])

    excluded: dict[str, int] = {}
    for s in sales:
        if s.exclusion_reason:
            excluded[s.exclusion_reason] = excluded.get(s.exclusion_reason, 0) + 1
    logger.info(
        f"[sales] {result.sku}: fetched={result.fetched} parsed={result.parsed} "
        f"inserted={result.inserted} included={result.included} excluded={excluded}"
    )
    return result
