"""Catalog service: style rows, provider id resolution, null-fill backfill.

The sync path never overwrites a catalog value that is already set. A differing
provider value for a filled column is logged and dropped.
"""

import logging
from typing import Any

from market_sync.services.normalization import normalize_style_id, style_ids_match
from market_sync.services.providers.base import MarketDataProvider
from market_sync.services.types import CATALOG_FILLABLE_FIELDS, Provider, ProviderProduct, StyleRecord
from market_sync.stores import redis as redis_store
from market_sync.stores.base import MarketStore

logger = logging.getLogger("uvicorn.error")

SEARCH_LIMIT = 10


async def ensure_style(store: MarketStore, style_id: str, fields: dict[str, Any] | None = None) -> StyleRecord:
    """Create the catalog entry if missing (style codes are upper-cased)."""
    return await store.upsert_style(normalize_style_id(style_id), dict(fields or {}))


def product_fill_fields(product: ProviderProduct) -> dict[str, Any]:
    """Catalog columns a provider product can supply."""
    fields: dict[str, Any] = {
        "brand": product.brand,
        "name": product.name,
        "colorway": product.colorway,
        "category": product.category,
        "image_url": product.image_url,
        "release_date": product.release_date,
        "retail_price": product.retail_price,
        "retail_currency": product.retail_currency,
    }
    if product.provider == Provider.STOCKX:
        fields["stockx_product_id"] = product.external_id
        fields["stockx_url_key"] = product.url_key
    elif product.provider == Provider.ALIAS:
        fields["alias_catalog_id"] = product.external_id
    return {k: v for k, v in fields.items() if v is not None}


async def backfill_from_product(store: MarketStore, style: StyleRecord, product: ProviderProduct) -> list[str]:
    """Fill NULL catalog columns from `product`. Returns the names of columns filled."""
    fields = product_fill_fields(product)
    missing = {k: v for k, v in fields.items() if getattr(style, k) is None}
    for name, value in fields.items():
        current = getattr(style, name)
        if current is not None and current != value:
            logger.warning(
                f"[catalog] {style.style_id}.{name} already set, keeping {current!r} (provider={product.provider.value})"
            )
    if not missing:
        return []

    updated = await store.upsert_style(style.style_id, missing)
    # A concurrent writer may have filled some of them first.
    filled = [k for k in missing if getattr(updated, k) == missing[k]]
    if filled:
        logger.info(f"[catalog] {style.style_id} backfilled {', '.join(sorted(filled))}")
    return filled


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - set(CATALOG_FILLABLE_FIELDS) - {"tier"}
    if unknown:
        raise ValueError(f"Unknown catalog fields: {sorted(unknown)}")


async def upsert_catalog_entry(store: MarketStore, style_id: str, fields: dict[str, Any]) -> StyleRecord:
    """Validated entry point used by the seed/bulk paths."""
    _check_fields(fields)
    return await ensure_style(store, style_id, fields)


async def resolve_stockx_product_id(store: MarketStore, stockx: MarketDataProvider, style: StyleRecord) -> str | None:
    """StockX product id for a style, via catalog search on its style code.

    Only an exact style-code match counts. The id is cached in Redis and filled
    into the catalog (null-fill) once found.
    """
    if style.stockx_product_id:
        return style.stockx_product_id

    cached: str | None = None
    try:
        cached = await redis_store.get_catalog_search_cache(Provider.STOCKX.value, style.style_id)
    except RuntimeError:
        pass  # Redis not initialized
    except Exception as e:
        logger.warning(f"[catalog] search cache read failed for {style.style_id}: {e}")

    product_id = cached
    if product_id is None:
        hits = await stockx.search_catalog(style.style_id, limit=SEARCH_LIMIT)
        match = next((h for h in hits if style_ids_match(h.sku, style.style_id)), None)
        if match is None:
            logger.warning(f"[catalog] no StockX match for {style.style_id} ({len(hits)} hits)")
            return None
        product_id = match.external_id
        try:
            await redis_store.set_catalog_search_cache(Provider.STOCKX.value, style.style_id, product_id)
        except RuntimeError:
            pass  # Redis not initialized
        except Exception as e:
            logger.warning(f"[catalog] search cache write failed for {style.style_id}: {e}")

    await store.upsert_style(style.style_id, {"stockx_product_id": product_id})
    logger.info(f"[catalog] {style.style_id} -> stockx_product_id={product_id} (cached={cached is not None})")
    return product_id
