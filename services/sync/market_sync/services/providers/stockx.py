"""StockX catalog + market data adapter.

API notes:
- Every call needs the `x-api-key` header plus an OAuth bearer token.
- Amounts are STRINGS in MAJOR units ("27" is 27.00), never cents.
- Market data is per (variant, currency): /v2/catalog/products/{id}/variants/{vid}/market-data
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from market_sync.services.errors import NotFoundError, ValidationError
from market_sync.services.normalization import (
    clean_size_value,
    parse_iso_date,
    parse_major_amount,
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

IMAGE_URL_TEMPLATE = (
    "https://images.stockx.com/images/{url_key}.jpg?fit=fill&bg=FFFFFF&w=700&h=500&fm=webp&auto=compress&q=90"
)


def _size_system_from_chart(size_chart: dict[str, Any] | None) -> SizeSystem:
    default = ((size_chart or {}).get("defaultConversion") or {}).get("type") or ""
    t = str(default).lower()
    if t.startswith("uk"):
        return SizeSystem.UK
    if t.startswith("eu"):
        return SizeSystem.EU
    if t.startswith("jp") or t == "cm":
        return SizeSystem.JP
    return SizeSystem.US


class StockxProvider(MarketDataProvider):
    provider = Provider.STOCKX
    default_currency = "GBP"

    async def search_catalog(self, query: str, limit: int = 10) -> list[CatalogHit]:
        data = await self.http.get_json(
            "/v2/catalog/search",
            params={"query": query, "pageNumber": 1, "pageSize": max(1, min(limit, 50))},
        )
        hits: list[CatalogHit] = []
        for item in (data or {}).get("products") or []:
            product_id = item.get("productId")
            if not product_id:
                continue
            hits.append(
                CatalogHit(
                    external_id=str(product_id),
                    name=str(item.get("title") or ""),
                    brand=item.get("brand"),
                    sku=item.get("styleId"),
                )
            )
        return hits[:limit]

    async def fetch_product(self, external_product_id: str) -> ProviderProduct:
        data = await self.http.get_json(f"/v2/catalog/products/{quote(external_product_id, safe='')}")
        if not isinstance(data, dict) or not data.get("productId"):
            raise NotFoundError(f"StockX product {external_product_id} not found", provider=self.provider.value)
        attrs = data.get("productAttributes") or {}
        url_key = data.get("urlKey")
        return ProviderProduct(
            provider=self.provider,
            external_id=str(data["productId"]),
            style_id=data.get("styleId"),
            brand=data.get("brand"),
            name=data.get("title"),
            colorway=attrs.get("colorway"),
            category=data.get("productType"),
            image_url=IMAGE_URL_TEMPLATE.format(url_key=url_key) if url_key else None,
            release_date=parse_iso_date(attrs.get("releaseDate")),
            retail_price=parse_major_amount(attrs.get("retailPrice")),
            retail_currency="USD" if attrs.get("retailPrice") is not None else None,
            url_key=url_key,
        )

    async def fetch_variants(self, external_product_id: str) -> list[ProviderVariantInfo]:
        data = await self.http.get_json(f"/v2/catalog/products/{quote(external_product_id, safe='')}/variants")
        if not isinstance(data, list):
            raise ValidationError(
                f"Unexpected StockX variants payload for {external_product_id}",
                details=type(data).__name__,
                provider=self.provider.value,
            )
        variants: list[ProviderVariantInfo] = []
        for item in data:
            variant_id = item.get("variantId")
            value = item.get("variantValue")
            if not variant_id or value in (None, ""):
                continue
            variants.append(
                ProviderVariantInfo(
                    external_variant_id=str(variant_id),
                    size=clean_size_value(str(value)),
                    size_system=_size_system_from_chart(item.get("sizeChart")),
                )
            )
        return variants

    async def fetch_market_data(
        self,
        external_product_id: str,
        variant: ProviderVariantInfo,
        currency: str,
    ) -> VariantMarketSnapshot | None:
        data = await self.http.get_json(
            f"/v2/catalog/products/{quote(external_product_id, safe='')}"
            f"/variants/{quote(variant.external_variant_id, safe='')}/market-data",
            params={"currencyCode": currency.upper()},
        )
        if not isinstance(data, dict):
            return None
        snapshot = VariantMarketSnapshot(
            provider=self.provider,
            external_product_id=external_product_id,
            variant=variant,
            currency=str(data.get("currencyCode") or currency).upper(),
            lowest_ask=parse_major_amount(data.get("lowestAskAmount")),
            highest_bid=parse_major_amount(data.get("highestBidAmount")),
            last_sale_price=parse_major_amount(data.get("lastSaleAmount")),
        )
        if not snapshot.has_prices:
            return None
        return snapshot
