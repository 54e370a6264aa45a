"""Alias (GOAT) catalog + pricing insights adapter.

API notes:
- Auth is a personal access token (Bearer), no refresh flow.
- Prices are STRINGS in CENTS ("14500" is 145.00). "0" means no data.
- Pricing is USD and per region (3=UK, 2=EU, 1=US). One availabilities call
  returns every size for a catalog item in a region, so batches are fetched per
  region rather than per variant.
- Only NEW product + GOOD packaging rows are comparable with other providers.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from market_sync.services.errors import NotFoundError
from market_sync.services.normalization import (
    cents_to_major,
    clean_size_value,
    parse_iso_date,
)
from market_sync.services.providers.base import MarketDataProvider
from market_sync.services.types import (
    CatalogHit,
    Provider,
    ProviderProduct,
    ProviderVariantInfo,
    SizeSystem,
    VariantMarketSnapshot,
)

logger = logging.getLogger("uvicorn.error")

ALIAS_CURRENCY = "USD"
CONDITION_NEW = "PRODUCT_CONDITION_NEW"
PACKAGING_GOOD = "PACKAGING_CONDITION_GOOD_CONDITION"
DEFAULT_REGIONS = ["3", "2", "1"]


def variant_key(size: str, region_id: str, consigned: bool) -> str:
    return f"{size}|{region_id}|{int(consigned)}"


def _parse_variant_key(key: str) -> tuple[str, str, bool]:
    size, region_id, consigned = key.split("|")
    return size, region_id, consigned == "1"


def _is_comparable(row: dict[str, Any]) -> bool:
    return row.get("product_condition") == CONDITION_NEW and row.get("packaging_condition") == PACKAGING_GOOD


class AliasProvider(MarketDataProvider):
    provider = Provider.ALIAS
    default_currency = ALIAS_CURRENCY

    def __init__(self, http, *, regions: list[str] | None = None):
        super().__init__(http)
        self.regions = list(regions or DEFAULT_REGIONS)

    async def search_catalog(self, query: str, limit: int = 10) -> list[CatalogHit]:
        data = await self.http.get_json("/catalog", params={"query": query, "limit": max(1, min(limit, 50))})
        hits: list[CatalogHit] = []
        for item in (data or {}).get("catalog_items") or []:
            catalog_id = item.get("catalog_id")
            if not catalog_id:
                continue
            hits.append(
                CatalogHit(
                    external_id=str(catalog_id),
                    name=str(item.get("name") or ""),
                    brand=item.get("brand"),
                    sku=item.get("sku"),
                )
            )
        return hits[:limit]

    async def fetch_product(self, external_product_id: str) -> ProviderProduct:
        data = await self.http.get_json(f"/catalog/{quote(external_product_id, safe='')}")
        item = (data or {}).get("catalog_item")
        if not item:
            raise NotFoundError(f"Alias catalog item {external_product_id} not found", provider=self.provider.value)
        retail = cents_to_major(item.get("retail_price_cents"))
        return ProviderProduct(
            provider=self.provider,
            external_id=str(item.get("catalog_id") or external_product_id),
            style_id=item.get("sku"),
            brand=item.get("brand"),
            name=item.get("name"),
            colorway=item.get("colorway"),
            category=item.get("product_category"),
            image_url=item.get("main_picture_url"),
            release_date=parse_iso_date(item.get("release_date")),
            retail_price=retail,
            retail_currency=ALIAS_CURRENCY if retail is not None else None,
        )

    async def _availabilities(
        self,
        catalog_id: str,
        region_id: str,
        consigned: bool | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, str] = {"region_id": region_id}
        if consigned is not None:
            params["consigned"] = "true" if consigned else "false"
        data = await self.http.get_json(
            f"/pricing_insights/availabilities/{quote(catalog_id, safe='')}",
            params=params,
        )
        return [row for row in (data or {}).get("variants") or [] if _is_comparable(row)]

    def _to_snapshot(self, catalog_id: str, region_id: str, row: dict[str, Any]) -> VariantMarketSnapshot | None:
        size = clean_size_value(str(row.get("size") or ""))
        if not size:
            return None
        consigned = bool(row.get("consigned"))
        availability = row.get("availability") or {}
        snapshot = VariantMarketSnapshot(
            provider=self.provider,
            external_product_id=catalog_id,
            variant=ProviderVariantInfo(
                external_variant_id=variant_key(size, region_id, consigned),
                size=size,
                size_system=SizeSystem.US,
                region_id=region_id,
                consigned=consigned,
            ),
            currency=ALIAS_CURRENCY,
            lowest_ask=cents_to_major(availability.get("lowest_listing_price_cents")),
            highest_bid=cents_to_major(availability.get("highest_offer_price_cents")),
            last_sale_price=cents_to_major(availability.get("last_sold_listing_price_cents")),
        )
        return snapshot if snapshot.has_prices else None

    async def fetch_variants(self, external_product_id: str) -> list[ProviderVariantInfo]:
        variants: list[ProviderVariantInfo] = []
        for region_id in self.regions:
            for row in await self._availabilities(external_product_id, region_id):
                size = clean_size_value(str(row.get("size") or ""))
                if not size:
                    continue
                consigned = bool(row.get("consigned"))
                variants.append(
                    ProviderVariantInfo(
                        external_variant_id=variant_key(size, region_id, consigned),
                        size=size,
                        size_system=SizeSystem.US,
                        region_id=region_id,
                        consigned=consigned,
                    )
                )
        return variants

    async def fetch_market_data(
        self,
        external_product_id: str,
        variant: ProviderVariantInfo,
        currency: str,
    ) -> VariantMarketSnapshot | None:
        # Alias prices are USD only; the currency argument is informational.
        size, region_id, consigned = _parse_variant_key(variant.external_variant_id)
        for row in await self._availabilities(external_product_id, region_id, consigned):
            if clean_size_value(str(row.get("size") or "")) == size and bool(row.get("consigned")) == consigned:
                return self._to_snapshot(external_product_id, region_id, row)
        return None

    async def fetch_market_batch(
        self,
        external_product_id: str,
        *,
        currencies: list[str],
        regions: list[str] | None = None,
    ) -> list[VariantMarketSnapshot]:
        out: list[VariantMarketSnapshot] = []
        for region_id in regions or self.regions:
            try:
                rows = await self._availabilities(external_product_id, region_id)
            except NotFoundError:
                logger.info(f"[alias] no availabilities catalog_id={external_product_id} region={region_id}")
                continue
            for row in rows:
                snapshot = self._to_snapshot(external_product_id, region_id, row)
                if snapshot is not None:
                    out.append(snapshot)
        return out
