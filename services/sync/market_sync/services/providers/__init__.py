"""Marketplace adapters (StockX, Alias, eBay) and their construction from settings."""

from __future__ import annotations

import asyncio
import logging

import httpx

from market_sync.services.backoff import http_backoff
from market_sync.services.errors import ConfigurationError
from market_sync.services.http_client import (
    OAuthTokenSource,
    ProviderHttpClient,
    SleepFn,
    StaticTokenSource,
)
from market_sync.services.providers.alias import AliasProvider
from market_sync.services.providers.base import MarketDataProvider
from market_sync.services.providers.ebay import EBAY_SCOPE, EbayProvider
from market_sync.services.providers.stockx import StockxProvider
from market_sync.services.types import Provider
from market_sync.settings import Settings

logger = logging.getLogger("uvicorn.error")

__all__ = [
    "AliasProvider",
    "EbayProvider",
    "MarketDataProvider",
    "StockxProvider",
    "build_provider",
    "build_providers",
    "close_providers",
]


def _http_client(
    settings: Settings,
    provider: Provider,
    base_url: str,
    *,
    token_source,
    default_headers: dict[str, str] | None = None,
    sleep: SleepFn = asyncio.sleep,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderHttpClient:
    return ProviderHttpClient(
        provider.value,
        base_url,
        token_source=token_source,
        default_headers=default_headers,
        timeout=settings.http_timeout_seconds,
        backoff=http_backoff(settings),
        rate_limit_max_wait=settings.rate_limit_max_wait_seconds,
        token_refresh_margin=settings.token_refresh_margin_seconds,
        sleep=sleep,
        transport=transport,
    )


def build_provider(
    provider: Provider,
    settings: Settings,
    *,
    sleep: SleepFn = asyncio.sleep,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MarketDataProvider:
    """Construct one adapter. Raises ConfigurationError if its credentials are missing."""
    if provider == Provider.STOCKX:
        if not settings.stockx_configured:
            raise ConfigurationError("StockX requires STOCKX_API_KEY, STOCKX_CLIENT_ID and STOCKX_CLIENT_SECRET")
        form = {
            "client_id": settings.stockx_client_id,
            "client_secret": settings.stockx_client_secret,
            "audience": "gateway.stockx.com",
        }
        if settings.stockx_refresh_token:
            form.update(grant_type="refresh_token", refresh_token=settings.stockx_refresh_token)
        else:
            form.update(grant_type="client_credentials")
        tokens = OAuthTokenSource(
            token_url=settings.stockx_token_url,
            form=form,
            provider=provider.value,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )
        http = _http_client(
            settings,
            provider,
            settings.stockx_api_base_url,
            token_source=tokens,
            default_headers={"x-api-key": settings.stockx_api_key},
            sleep=sleep,
            transport=transport,
        )
        return StockxProvider(http)

    if provider == Provider.ALIAS:
        if not settings.alias_configured:
            raise ConfigurationError("Alias requires ALIAS_PAT")
        http = _http_client(
            settings,
            provider,
            settings.alias_api_base_url,
            token_source=StaticTokenSource(settings.alias_pat),
            sleep=sleep,
            transport=transport,
        )
        return AliasProvider(http, regions=settings.alias_regions)

    if provider == Provider.EBAY:
        if not settings.ebay_configured:
            raise ConfigurationError("eBay requires EBAY_CLIENT_ID and EBAY_CLIENT_SECRET")
        tokens = OAuthTokenSource(
            token_url=f"{settings.ebay_api_base_url}/identity/v1/oauth2/token",
            form={"grant_type": "client_credentials", "scope": EBAY_SCOPE},
            provider=provider.value,
            basic_auth=(settings.ebay_client_id, settings.ebay_client_secret),
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )
        http = _http_client(
            settings,
            provider,
            settings.ebay_api_base_url,
            token_source=tokens,
            default_headers={"X-EBAY-C-MARKETPLACE-ID": settings.ebay_marketplace_id},
            sleep=sleep,
            transport=transport,
        )
        return EbayProvider(
            http,
            marketplace_id=settings.ebay_marketplace_id,
            fetch_item_details=settings.ebay_fetch_item_details,
        )

    raise ConfigurationError(f"Unknown provider: {provider}")


def build_providers(
    settings: Settings,
    *,
    only: list[Provider] | None = None,
    sleep: SleepFn = asyncio.sleep,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[Provider, MarketDataProvider]:
    """Adapters for every configured provider.

    With `only`, each requested provider must be configured (ConfigurationError
    otherwise). Without it, unconfigured providers are skipped with a warning.
    """
    wanted = only or [Provider(p) for p in settings.sync_providers if p in Provider._value2member_map_]
    providers: dict[Provider, MarketDataProvider] = {}
    for provider in wanted:
        try:
            providers[provider] = build_provider(provider, settings, sleep=sleep, transport=transport)
        except ConfigurationError as e:
            if only:
                raise
            logger.warning(f"[providers] {provider.value} disabled: {e}")
    return providers


async def close_providers(providers: dict[Provider, MarketDataProvider]) -> None:
    for adapter in providers.values():
        await adapter.close()
