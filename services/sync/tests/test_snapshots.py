"""Tests for snapshot persistence, the latest view and its read-time conversion."""

from datetime import timedelta

import pytest

from market_sync.services.catalog import ensure_style
from market_sync.services.fx import FxRates
from market_sync.services.snapshots import freshness_for, latest_market_view, persist_market_batch
from market_sync.services.types import Freshness, Provider, ProviderVariantInfo, VariantMarketSnapshot

STYLE = "DD1391-100"


def snapshot(size: str, currency: str, ask: float | None, bid: float | None = None) -> VariantMarketSnapshot:
    return VariantMarketSnapshot(
        provider=Provider.STOCKX,
        external_product_id="p1",
        variant=ProviderVariantInfo(external_variant_id=f"v{size}", size=size),
        currency=currency,
        lowest_ask=ask,
        highest_bid=bid,
    )


async def persist(store, settings, snapshots, observed_at):
    return await persist_market_batch(
        store, STYLE, snapshots, observed_at=observed_at, max_price=settings.max_plausible_price
    )


# ============================================================
# Latest view
# ============================================================


@pytest.mark.asyncio
async def test_latest_keeps_newest_snapshot_when_older_arrives_late(store, settings, now):
    await ensure_style(store, STYLE)
    await persist(store, settings, [snapshot("9", "GBP", 150.0, 120.0)], now)
    await persist(store, settings, [snapshot("9", "GBP", 140.0, 110.0)], now - timedelta(hours=1))

    await store.refresh_latest_view()

    [row] = await store.get_latest(STYLE)
    assert row.snapshot_at == now
    assert (row.lowest_ask, row.highest_bid) == (150.0, 120.0)

    # another late arrival after the view was built
    await persist(store, settings, [snapshot("9", "GBP", 130.0)], now - timedelta(hours=2))
    await store.refresh_latest_view()
    [row] = await store.get_latest(STYLE)
    assert row.lowest_ask == 150.0


@pytest.mark.asyncio
async def test_latest_has_one_row_per_variant_and_currency(store, settings, now):
    await ensure_style(store, STYLE)
    await persist(store, settings, [snapshot("9", "GBP", 150.0), snapshot("9", "USD", 190.0)], now)
    await persist(store, settings, [snapshot("9", "GBP", 155.0)], now + timedelta(minutes=5))

    await store.refresh_latest_view()

    rows = {r.currency: r for r in await store.get_latest(STYLE)}
    assert set(rows) == {"GBP", "USD"}
    assert rows["GBP"].lowest_ask == 155.0
    assert rows["USD"].lowest_ask == 190.0


@pytest.mark.asyncio
async def test_implausible_snapshot_is_dropped_whole(store, settings, now):
    await ensure_style(store, STYLE)
    result = await persist(
        store,
        settings,
        [snapshot("9", "GBP", 15000000.0, 120.0), snapshot("10", "GBP", 160.0)],
        now,
    )

    assert (result.inserted, result.rejected) == (1, 1)
    assert [s.lowest_ask for s in store.snapshots] == [160.0]


@pytest.mark.asyncio
async def test_duplicate_observation_is_ignored(store, settings, now):
    await ensure_style(store, STYLE)
    await persist(store, settings, [snapshot("9", "GBP", 150.0)], now)
    result = await persist(store, settings, [snapshot("9", "GBP", 151.0)], now)
    assert (result.inserted, result.duplicates) == (0, 1)
    assert len(store.snapshots) == 1


# ============================================================
# Freshness
# ============================================================


def test_freshness_boundaries(settings, now):
    def at(minutes: int) -> Freshness:
        return freshness_for(now - timedelta(minutes=minutes), now, settings)

    assert at(0) == Freshness.FRESH
    assert at(settings.fresh_minutes) == Freshness.FRESH
    assert at(settings.fresh_minutes + 1) == Freshness.AGING
    assert at(settings.aging_minutes) == Freshness.AGING
    assert at(settings.aging_minutes + 1) == Freshness.STALE


# ============================================================
# Read-time conversion
# ============================================================

RATES = FxRates(base="USD", timestamp=1, rates={"USD": 1.0, "GBP": 0.8})


async def seed_mixed_currencies(store, settings, now):
    """Size 9 quoted in GBP and USD, size 10 only in USD."""
    await ensure_style(store, STYLE)
    await persist(
        store,
        settings,
        [snapshot("9", "GBP", 150.0), snapshot("9", "USD", 190.0), snapshot("10", "USD", 100.0, 90.0)],
        now - timedelta(hours=8),
    )
    await store.refresh_latest_view()


@pytest.mark.asyncio
async def test_native_currency_preferred_over_conversion(store, settings, now):
    await seed_mixed_currencies(store, settings, now)

    view = await latest_market_view(store, STYLE, now=now, settings=settings, currency="gbp", rates=RATES)
    items = {i["size"]: i for i in view}

    assert set(items) == {"9", "10"}
    assert items["9"]["currency"] == "GBP"
    assert items["9"]["lowest_ask"] == 150.0
    assert items["9"]["converted"] is False
    assert items["9"]["freshness"] == "aging"

    assert items["10"]["currency"] == "GBP"
    assert items["10"]["converted"] is True
    assert items["10"]["source_currency"] == "USD"
    assert (items["10"]["lowest_ask"], items["10"]["highest_bid"]) == (80.0, 72.0)


@pytest.mark.asyncio
async def test_variant_without_native_row_skipped_when_rates_missing(store, settings, now):
    await seed_mixed_currencies(store, settings, now)

    items = await latest_market_view(store, STYLE, now=now, settings=settings, currency="GBP", rates=None)

    assert [(i["size"], i["currency"]) for i in items] == [("9", "GBP")]


@pytest.mark.asyncio
async def test_variant_skipped_when_rate_unknown(store, settings, now):
    await seed_mixed_currencies(store, settings, now)
    no_gbp = FxRates(base="USD", timestamp=1, rates={"USD": 1.0})

    items = await latest_market_view(store, STYLE, now=now, settings=settings, currency="GBP", rates=no_gbp)

    assert [(i["size"], i["converted"]) for i in items] == [("9", False)]


@pytest.mark.asyncio
async def test_latest_without_currency_returns_every_row(store, settings, now):
    await seed_mixed_currencies(store, settings, now)
    items = await latest_market_view(store, STYLE, now=now, settings=settings)
    assert len(items) == 3
    assert not any(i["converted"] for i in items)
