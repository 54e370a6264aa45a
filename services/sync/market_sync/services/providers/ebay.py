"""eBay Browse API adapter (sold listings).

eBay has no bid/ask market: it contributes individual sold transactions that
feed the sales aggregator. The catalog-style methods exist so eBay satisfies the
same provider contract; variant market data is always an empty result.

Auth: OAuth client_credentials with HTTP Basic (client_id:client_secret),
scope https://api.ebay.com/oauth/api_scope.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from market_sync.services.errors import NotFoundError, ProviderError
from market_sync.services.normalization import parse_iso_datetime
from market_sync.services.providers.base import MarketDataProvider
from market_sync.services.types import (
    CatalogHit,
    Provider,
    ProviderProduct,
    ProviderVariantInfo,
    SoldListing,
    VariantMarketSnapshot,
    utcnow,
)

logger = logging.getLogger("uvicorn.error")

EBAY_SCOPE = "https://api.ebay.com/oauth/api_scope"
AUTHENTICITY_GUARANTEE = "AUTHENTICITY_GUARANTEE"


def _has_authenticity_guarantee(item: dict[str, Any]) -> bool:
    if item.get("authenticityGuarantee"):
        return True
    return AUTHENTICITY_GUARANTEE in (item.get("qualifiedPrograms") or [])


def _aspects(raw: Any) -> list[dict[str, str]]:
    out: list[dict[str, str]] = []
    for aspect in raw or []:
        name = aspect.get("name")
        value = aspect.get("value")
        if name and value is not None:
            out.append({"name": str(name), "value": str(value)})
    return out


class EbayProvider(MarketDataProvider):
    provider = Provider.EBAY
    default_currency = "GBP"

    def __init__(self, http, *, marketplace_id: str = "EBAY_GB", fetch_item_details: bool = True):
        super().__init__(http)
        self.marketplace_id = marketplace_id
        self.fetch_item_details = fetch_item_details

    async def search_catalog(self, query: str, limit: int = 10) -> list[CatalogHit]:
        data = await self.http.get_json(
            "/buy/browse/v1/item_summary/search",
            params={"q": query, "limit": max(1, min(limit, 200))},
        )
        return [
            CatalogHit(external_id=str(item["itemId"]), name=str(item.get("title") or ""))
            for item in (data or {}).get("itemSummaries") or []
            if item.get("itemId")
        ][:limit]

    async def fetch_product(self, external_product_id: str) -> ProviderProduct:
        raise NotFoundError("eBay has no product catalog", provider=self.provider.value)

    async def fetch_variants(self, external_product_id: str) -> list[ProviderVariantInfo]:
        return []

    async def fetch_market_data(
        self,
        external_product_id: str,
        variant: ProviderVariantInfo,
        currency: str,
    ) -> VariantMarketSnapshot | None:
        return None

    async def get_item_details(self, item_id: str) -> dict[str, Any] | None:
        """Full item (variations + item-level aspects). None when eBay no longer has it."""
        try:
            return await self.http.get_json(f"/buy/browse/v1/item/{quote(item_id, safe='')}")
        except NotFoundError:
            return None

    async def search_sold(self, query: str, *, limit: int = 50) -> list[SoldListing]:
        """Sold listings matching `query` (usually a style code)."""
        data = await self.http.get_json(
            "/buy/browse/v1/item_summary/search",
            params={"q": query, "filter": "soldItemsOnly:true", "limit": max(1, min(limit, 200))},
        )
        summaries = (data or {}).get("itemSummaries") or []
        listings: list[SoldListing] = []
        details_fetched = 0

        for item in summaries:
            item_id = item.get("itemId")
            price = (item.get("price") or {}).get("value")
            if not item_id or price in (None, ""):
                continue

            variation_aspects: list[list[dict[str, str]]] = []
            item_aspects = _aspects(item.get("localizedAspects"))
            authenticity = _has_authenticity_guarantee(item)

            if self.fetch_item_details:
                try:
                    details = await self.get_item_details(str(item_id))
                except ProviderError as e:
                    # Details only sharpen size/authenticity; a summary is still a valid sale.
                    logger.warning(f"[ebay] item details failed item_id={item_id}: {e}")
                    details = None
                if details:
                    details_fetched += 1
                    variation_aspects = [
                        _aspects(v.get("localizedAspects")) for v in details.get("variations") or []
                    ]
                    item_aspects = _aspects(details.get("localizedAspects")) or item_aspects
                    authenticity = authenticity or _has_authenticity_guarantee(details)

            condition_id = item.get("conditionId")
            listings.append(
                SoldListing(
                    item_id=str(item_id),
                    marketplace_id=self.marketplace_id,
                    title=str(item.get("title") or ""),
                    price=str(price),
                    currency=str((item.get("price") or {}).get("currency") or self.default_currency).upper(),
                    sold_at=parse_iso_datetime(item.get("itemEndDate")) or utcnow(),
                    condition_id=int(condition_id) if str(condition_id or "").isdigit() else None,
                    authenticity_guarantee=authenticity,
                    variation_aspects=variation_aspects,
                    item_aspects=item_aspects,
                )
            )

        logger.info(
            f"[ebay] sold search query={query!r} marketplace={self.marketplace_id} "
            f"found={len(listings)} details_fetched={details_fetched}"
        )
        return listings
