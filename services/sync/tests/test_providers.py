"""Tests for provider adapters (JSON -> normalized dataclasses)."""

from datetime import datetime, timezone

import httpx
import pytest

from market_sync.services.errors import ConfigurationError, NotFoundError
from market_sync.services.http_client import ProviderHttpClient
from market_sync.services.providers import build_providers, close_providers
from market_sync.services.providers.alias import CONDITION_NEW, PACKAGING_GOOD, AliasProvider
from market_sync.services.providers.ebay import EbayProvider
from market_sync.services.providers.stockx import StockxProvider
from market_sync.services.types import Provider, ProviderVariantInfo, SizeSystem
from market_sync.settings import Settings


def http_for(provider: str, routes: dict[str, object], fake_sleep) -> ProviderHttpClient:
    def handler(request: httpx.Request) -> httpx.Response:
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, json=body)

    return ProviderHttpClient(
        provider,
        "https://api.example.test",
        sleep=fake_sleep,
        transport=httpx.MockTransport(handler),
    )


# ============================================================
# StockX
# ============================================================


@pytest.mark.asyncio
async def test_stockx_market_data_is_major_units(fake_sleep):
    routes = {
        "/v2/catalog/products/p1/variants/v9/market-data": {
            "currencyCode": "GBP",
            "lowestAskAmount": "27",
            "highestBidAmount": "25.5",
            "lastSaleAmount": "30",
        }
    }
    stockx = StockxProvider(http_for("stockx", routes, fake_sleep))
    variant = ProviderVariantInfo(external_variant_id="v9", size="9")

    snap = await stockx.fetch_market_data("p1", variant, "gbp")

    assert snap is not None
    assert snap.currency == "GBP"
    assert snap.lowest_ask == 27.0
    assert snap.highest_bid == 25.5
    assert snap.last_sale_price == 30.0
    await stockx.close()


@pytest.mark.asyncio
async def test_stockx_market_data_without_prices_is_none(fake_sleep):
    routes = {"/v2/catalog/products/p1/variants/v9/market-data": {"currencyCode": "GBP"}}
    stockx = StockxProvider(http_for("stockx", routes, fake_sleep))
    variant = ProviderVariantInfo(external_variant_id="v9", size="9")
    assert await stockx.fetch_market_data("p1", variant, "GBP") is None
    await stockx.close()


@pytest.mark.asyncio
async def test_stockx_product_and_variants(fake_sleep):
    routes = {
        "/v2/catalog/products/p1": {
            "productId": "p1",
            "styleId": "DD1391-100",
            "brand": "Nike",
            "title": "Nike Dunk Low Panda",
            "urlKey": "nike-dunk-low-panda",
            "productType": "sneakers",
            "productAttributes": {"colorway": "White/Black", "releaseDate": "2021-03-10", "retailPrice": 110},
        },
        "/v2/catalog/products/p1/variants": [
            {"variantId": "v9", "variantValue": "9", "sizeChart": {"defaultConversion": {"type": "us m"}}},
            {"variantId": "v10", "variantValue": "UK 9.0", "sizeChart": {"defaultConversion": {"type": "uk"}}},
            {"variantId": None, "variantValue": "11"},
        ],
    }
    stockx = StockxProvider(http_for("stockx", routes, fake_sleep))

    product = await stockx.fetch_product("p1")
    assert product.style_id == "DD1391-100"
    assert product.retail_price == 110.0
    assert product.release_date.isoformat() == "2021-03-10"
    assert product.url_key == "nike-dunk-low-panda"
    assert "nike-dunk-low-panda" in product.image_url

    variants = await stockx.fetch_variants("p1")
    assert [(v.external_variant_id, v.size, v.size_system) for v in variants] == [
        ("v9", "9", SizeSystem.US),
        ("v10", "9", SizeSystem.UK),
    ]
    await stockx.close()


@pytest.mark.asyncio
async def test_stockx_batch_skips_variants_without_a_market(fake_sleep):
    routes = {
        "/v2/catalog/products/p1/variants": [
            {"variantId": "v9", "variantValue": "9"},
            {"variantId": "v10", "variantValue": "10"},
        ],
        "/v2/catalog/products/p1/variants/v9/market-data": {"currencyCode": "GBP", "lowestAskAmount": "120"},
    }
    stockx = StockxProvider(http_for("stockx", routes, fake_sleep))
    batch = await stockx.fetch_market_batch("p1", currencies=["GBP"])
    assert [(s.variant.size, s.lowest_ask) for s in batch] == [("9", 120.0)]
    await stockx.close()


# ============================================================
# Alias
# ============================================================


def _alias_row(size, ask="0", bid="0", last="0", *, consigned=False, condition=CONDITION_NEW):
    return {
        "size": size,
        "product_condition": condition,
        "packaging_condition": PACKAGING_GOOD,
        "consigned": consigned,
        "availability": {
            "lowest_listing_price_cents": ask,
            "highest_offer_price_cents": bid,
            "last_sold_listing_price_cents": last,
        },
    }


@pytest.mark.asyncio
async def test_alias_batch_converts_cents_and_treats_zero_as_missing(fake_sleep):
    routes = {
        "/pricing_insights/availabilities/cat-1": {
            "variants": [
                _alias_row(10, ask="14500", last="13000"),
                _alias_row(11, ask="0", bid="0", last="0"),
                _alias_row(12, ask="20000", condition="PRODUCT_CONDITION_USED"),
            ]
        }
    }
    alias = AliasProvider(http_for("alias", routes, fake_sleep), regions=["3"])

    batch = await alias.fetch_market_batch("cat-1", currencies=["USD"])

    assert len(batch) == 1
    snap = batch[0]
    assert snap.currency == "USD"
    assert snap.variant.size == "10"
    assert snap.variant.region_id == "3"
    assert snap.lowest_ask == 145.0
    assert snap.highest_bid is None
    assert snap.last_sale_price == 130.0
    await alias.close()


@pytest.mark.asyncio
async def test_alias_batch_skips_regions_without_data(fake_sleep):
    alias = AliasProvider(http_for("alias", {}, fake_sleep), regions=["3", "2"])
    assert await alias.fetch_market_batch("cat-1", currencies=["USD"]) == []
    await alias.close()


@pytest.mark.asyncio
async def test_alias_missing_catalog_item_is_not_found(fake_sleep):
    routes = {"/catalog/cat-404": {"catalog_item": None}}
    alias = AliasProvider(http_for("alias", routes, fake_sleep))
    with pytest.raises(NotFoundError):
        await alias.fetch_product("cat-404")
    await alias.close()


# ============================================================
# eBay
# ============================================================


@pytest.mark.asyncio
async def test_ebay_sold_listings_use_item_details(fake_sleep):
    routes = {
        "/buy/browse/v1/item_summary/search": {
            "itemSummaries": [
                {
                    "itemId": "v1|111|0",
                    "title": "Nike Dunk Low Panda DD1391-100",
                    "price": {"value": "189.99", "currency": "GBP"},
                    "conditionId": "1000",
                    "itemEndDate": "2026-03-09T10:00:00.000Z",
                },
                {"itemId": "v1|222|0", "title": "No price"},
            ]
        },
        "/buy/browse/v1/item/v1|111|0": {
            "qualifiedPrograms": ["AUTHENTICITY_GUARANTEE"],
            "variations": [{"localizedAspects": [{"name": "UK Shoe Size", "value": "9"}]}],
            "localizedAspects": [{"name": "Brand", "value": "Nike"}],
        },
    }
    ebay = EbayProvider(http_for("ebay", routes, fake_sleep), marketplace_id="EBAY_GB")

    listings = await ebay.search_sold("DD1391-100")

    assert len(listings) == 1
    listing = listings[0]
    assert listing.price == "189.99"
    assert listing.currency == "GBP"
    assert listing.condition_id == 1000
    assert listing.authenticity_guarantee is True
    assert listing.sold_at == datetime(2026, 3, 9, 10, 0, tzinfo=timezone.utc)
    assert listing.variation_aspects == [[{"name": "UK Shoe Size", "value": "9"}]]
    await ebay.close()


@pytest.mark.asyncio
async def test_ebay_summary_only_without_details(fake_sleep):
    routes = {
        "/buy/browse/v1/item_summary/search": {
            "itemSummaries": [
                {
                    "itemId": "v1|333|0",
                    "title": "Nike Dunk Low UK 9",
                    "price": {"value": "150.00", "currency": "GBP"},
                    "conditionId": "3000",
                    "itemEndDate": "2026-03-09T10:00:00Z",
                }
            ]
        }
    }
    ebay = EbayProvider(http_for("ebay", routes, fake_sleep), fetch_item_details=False)
    [listing] = await ebay.search_sold("DD1391-100")
    assert listing.authenticity_guarantee is False
    assert listing.condition_id == 3000
    assert listing.variation_aspects == []
    await ebay.close()


# ============================================================
# Construction
# ============================================================


@pytest.mark.asyncio
async def test_build_providers_skips_unconfigured(settings: Settings):
    settings = settings.model_copy(update={"alias_pat": "pat-123"})
    providers = build_providers(settings)
    assert list(providers) == [Provider.ALIAS]
    await close_providers(providers)


def test_build_providers_only_requires_credentials(settings: Settings):
    with pytest.raises(ConfigurationError):
        build_providers(settings, only=[Provider.STOCKX])
