"""Provider client contract.

An adapter translates domain identifiers into one marketplace's API, converts
its JSON into the shared dataclasses in `market_sync.services.types`, and raises
only the classified errors from `market_sync.services.errors`. Adapters never
touch persistence.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging

from market_sync.services.errors import NotFoundError
from market_sync.services.http_client import ProviderHttpClient
from market_sync.services.types import (
    CatalogHit,
    Provider,
    ProviderProduct,
    ProviderVariantInfo,
    VariantMarketSnapshot,
)

logger = logging.getLogger("uvicorn.error")


class MarketDataProvider(ABC):
    provider: Provider
    default_currency: str = "USD"

    def __init__(self, http: ProviderHttpClient):
        self.http = http

    async def close(self) -> None:
        await self.http.close()

    @abstractmethod
    async def search_catalog(self, query: str, limit: int = 10) -> list[CatalogHit]:
        ...

    @abstractmethod
    async def fetch_product(self, external_product_id: str) -> ProviderProduct:
        ...

    @abstractmethod
    async def fetch_variants(self, external_product_id: str) -> list[ProviderVariantInfo]:
        ...

    @abstractmethod
    async def fetch_market_data(
        self,
        external_product_id: str,
        variant: ProviderVariantInfo,
        currency: str,
    ) -> VariantMarketSnapshot | None:
        """Market state for one variant, or None when the variant has no market."""

    async def fetch_market_batch(
        self,
        external_product_id: str,
        *,
        currencies: list[str],
        regions: list[str] | None = None,
    ) -> list[VariantMarketSnapshot]:
        """Market data for every variant of a product.

        Default: one market-data call per (variant, currency). A variant/currency
        without a market is skipped; any other error propagates.
        """
        variants = await self.fetch_variants(external_product_id)
        out: list[VariantMarketSnapshot] = []
        for variant in variants:
            for currency in currencies:
                try:
                    snapshot = await self.fetch_market_data(external_product_id, variant, currency)
                except NotFoundError:
                    logger.info(
                        f"[{self.provider.value}] no market for product={external_product_id} "
                        f"variant={variant.external_variant_id} currency={currency}"
                    )
                    continue
                if snapshot is not None:
                    out.append(snapshot)
        return out
