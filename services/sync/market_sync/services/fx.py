"""FX (currency rates) service backed by OpenExchangeRates + Redis cache.

Used by the latest-market view when a caller asks for a currency a provider
did not quote (e.g. Alias is USD-only):
- Fetch latest rates from OpenExchangeRates (base USD on free tier)
- Cache rates in Redis for ~1 hour
- Convert between any two quoted currencies via USD

If Redis is unavailable the service still works but skips caching.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any

import httpx

from market_sync.settings import get_settings
from market_sync.stores.redis import get_fx_rates_cache, set_fx_rates_cache

logger = logging.getLogger("uvicorn.error")

OXR_LATEST_URL = "https://openexchangerates.org/api/latest.json"


@dataclass(frozen=True)
class FxRates:
    base: str
    timestamp: int
    rates: dict[str, float]


class FxError(RuntimeError):
    pass


async def get_latest_fx_rates(
    base: str = "USD",
    *,
    force_refresh: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FxRates:
    """Get latest FX rates, using Redis cache when available.

    Args:
        base: Base currency. OpenExchangeRates free tier supports USD only.
        force_refresh: If True, bypass Redis cache and fetch from API once.
    """
    base = base.upper()
    if base != "USD":
        raise FxError("Only base=USD is supported")

    if not force_refresh:
        cached = await _try_get_cached_rates(base=base)
        if cached is not None:
            logger.info(f"[fx] Rates loaded from cache: {len(cached.rates)} currencies")
            return cached

    fetched = await _fetch_openexchangerates_latest(transport=transport)
    rates = parse_openexchangerates_latest(fetched)
    logger.info(f"[fx] Rates fetched: {len(rates.rates)} currencies")

    await _try_set_cached_rates(base=base, rates=rates)
    return rates


def convert_amount(amount: float | None, from_currency: str, to_currency: str, rates: FxRates) -> float | None:
    """Convert `amount` between currencies using USD-based rates.

    OpenExchangeRates quotes 1 USD = rate[currency] units, so
    target = amount / rate[from] * rate[to]. Result is rounded to 2 dp.
    """
    if amount is None:
        return None
    src = from_currency.upper()
    dst = to_currency.upper()
    if src == dst:
        return round(float(amount), 2)

    src_rate = 1.0 if src == "USD" else rates.rates.get(src)
    dst_rate = 1.0 if dst == "USD" else rates.rates.get(dst)
    if not src_rate or src_rate <= 0 or not dst_rate or dst_rate <= 0:
        raise FxError(f"Missing/invalid FX rate for {src}->{dst}")
    return round(float(amount) / float(src_rate) * float(dst_rate), 2)


async def _try_get_cached_rates(base: str) -> FxRates | None:
    try:
        payload = await get_fx_rates_cache(base=base)
    except RuntimeError:
        return None
    if not payload:
        return None

    try:
        ts = int(payload.get("timestamp", 0))
        rates_raw = payload.get("rates", {})
        if not isinstance(rates_raw, dict):
            return None
        rates = {str(k).upper(): float(v) for k, v in rates_raw.items() if v is not None}
        if not rates:
            return None
        return FxRates(base=base, timestamp=ts, rates=rates)
    except (TypeError, ValueError):
        return None


async def _try_set_cached_rates(base: str, rates: FxRates) -> None:
    payload: dict[str, Any] = {"base": rates.base, "timestamp": rates.timestamp, "rates": rates.rates}
    try:
        await set_fx_rates_cache(base=base, payload=payload)
    except RuntimeError:
        return


async def _fetch_openexchangerates_latest(transport: httpx.AsyncBaseTransport | None = None) -> dict[str, Any]:
    app_id = get_settings().openexchangerates_key
    if not app_id:
        raise FxError("OPENEXCHANGERATES_KEY is not set")

    async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
        resp = await client.get(OXR_LATEST_URL, params={"app_id": app_id})
        if resp.status_code != 200:
            logger.error(f"[fx] OpenExchangeRates error: {resp.status_code} - {resp.text[:200]}")
            raise FxError(f"OpenExchangeRates returned {resp.status_code}")
        data = resp.json()
        if not isinstance(data, dict):
            raise FxError("Unexpected response from OpenExchangeRates")
        return data


def parse_openexchangerates_latest(data: dict[str, Any]) -> FxRates:
    base = str(data.get("base", "USD")).upper()
    if base != "USD":
        raise FxError(f"Unexpected base currency from OpenExchangeRates: {base}")

    timestamp = data.get("timestamp")
    if not isinstance(timestamp, int):
        timestamp = int(time.time())

    rates_raw = data.get("rates")
    if not isinstance(rates_raw, dict):
        raise FxError("Missing rates in OpenExchangeRates response")

    rates: dict[str, float] = {}
    for k, v in rates_raw.items():
        try:
            rates[str(k).upper()] = float(v)
        except (TypeError, ValueError):
            continue

    if not rates:
        raise FxError("Empty rates in OpenExchangeRates response")

    rates.setdefault("USD", 1.0)
    return FxRates(base=base, timestamp=timestamp, rates=rates)
