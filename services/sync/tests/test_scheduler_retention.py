"""Tests for the tiered scheduler and daily retention."""

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from market_sync.services.catalog import ensure_style
from market_sync.services.retention import run_retention
from market_sync.services.sales_ingestion import CONDITION_NEW, with_inclusion
from market_sync.services.scheduler import run_scheduler, tier_staleness
from market_sync.services.types import Provider, SaleRecord, SizeSystem, SnapshotRecord, Tier


# ============================================================
# Scheduler
# ============================================================


@pytest.mark.asyncio
async def test_scheduler_enqueues_only_due_styles_of_tier(store, settings, now):
    await ensure_style(store, "HOT-DUE", {"tier": "hot", "stockx_product_id": "p1"})
    await ensure_style(store, "HOT-FRESH", {"tier": "hot"})
    await ensure_style(store, "WARM-NEVER", {"tier": "warm"})
    await store.mark_style_synced("HOT-DUE", now - timedelta(hours=2))
    await store.mark_style_synced("HOT-FRESH", now - timedelta(minutes=10))

    summary = await run_scheduler(store, Tier.HOT, settings=settings, now=now)

    assert summary == {"tier": "hot", "selected": 1, "enqueued": 2, "unchanged": 0, "skipped": False}
    jobs = await store.list_jobs_for_style("HOT-DUE")
    assert {j.provider for j in jobs} == {Provider.STOCKX, Provider.EBAY}
    assert await store.list_jobs_for_style("HOT-FRESH") == []


@pytest.mark.asyncio
async def test_scheduler_rerun_does_not_duplicate_jobs(store, settings, now):
    await ensure_style(store, "COLD-1", {"tier": "cold"})

    await run_scheduler(store, Tier.COLD, settings=settings, now=now)
    summary = await run_scheduler(store, Tier.COLD, settings=settings, now=now)

    assert summary["enqueued"] == 0
    assert summary["unchanged"] == 1
    assert (await store.queue_stats()).pending == 1


@pytest.mark.asyncio
async def test_scheduler_caps_batch_oldest_first(store, settings, now):
    for i in range(5):
        await ensure_style(store, f"WARM-{i}", {"tier": "warm"})
        await store.mark_style_synced(f"WARM-{i}", now - timedelta(days=1, hours=i))

    summary = await run_scheduler(store, Tier.WARM, settings=settings, now=now, limit=2)

    assert summary["selected"] == 2
    assert await store.list_jobs_for_style("WARM-4") != []
    assert await store.list_jobs_for_style("WARM-3") != []
    assert await store.list_jobs_for_style("WARM-0") == []


@pytest.mark.asyncio
async def test_frozen_tier_is_never_scheduled(store, settings, now):
    await ensure_style(store, "FROZEN-1", {"tier": "frozen"})
    summary = await run_scheduler(store, Tier.FROZEN, settings=settings, now=now)
    assert summary["selected"] == 0
    assert tier_staleness(Tier.FROZEN, settings) is None
    assert tier_staleness(Tier.HOT, settings) == timedelta(hours=1)


# ============================================================
# Retention
# ============================================================


def sale(item_id: str, sold_at: datetime, price_minor: int = 15000, **overrides) -> SaleRecord:
    record = SaleRecord(
        marketplace_id="EBAY_GB",
        item_id=item_id,
        sku="DD1391-100",
        title="Nike Dunk Low",
        price_minor=price_minor,
        currency="GBP",
        sold_at=sold_at,
        condition_id=CONDITION_NEW,
        authenticity_guarantee=True,
        size_value="9",
        size_system=SizeSystem.UK,
        size_key="UK 9",
        size_confidence=1.0,
    )
    return with_inclusion(replace(record, **overrides))


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_retention_rolls_up_then_prunes(store, settings, now):
    await store.insert_sale_transactions(
        [
            sale("old", utc(2025, 11, 1, 9)),
            sale("feb-a", utc(2026, 2, 15, 9), 15000),
            sale("feb-b", utc(2026, 2, 15, 18), 17000),
            sale("feb-used", utc(2026, 2, 15, 19), 99000, condition_id=3000),
            sale("yesterday", utc(2026, 3, 9, 23)),
            sale("today", utc(2026, 3, 10, 8)),
        ]
    )
    variant_id = await store.upsert_variant(
        style_id="DD1391-100",
        provider=Provider.STOCKX,
        size_value="9",
        size_system="US",
        region_id="",
        consigned=False,
        external_variant_id="v9",
    )
    for days in (40, 1):
        await store.insert_snapshot(
            SnapshotRecord(
                style_id="DD1391-100",
                variant_id=variant_id,
                provider=Provider.STOCKX,
                region_id="",
                currency="GBP",
                lowest_ask=150.0,
                highest_bid=120.0,
                last_sale_price=None,
                snapshot_at=now - timedelta(days=days),
            )
        )

    report = await run_retention(store, settings=settings, now=now)

    assert report.ok
    rows = {s.name: s.rows for s in report.steps}
    assert rows == {
        "rollup_daily_sales": 3,
        "rollup_monthly_sales": 2,
        "prune_sale_transactions": 1,
        "prune_market_snapshots": 1,
        "prune_sales_daily": 0,
    }

    feb15 = next(r for r in store.daily_rows if r["sale_date"] == date(2026, 2, 15))
    assert feb15["sale_count"] == 2
    assert feb15["total_minor"] == 32000
    assert (feb15["min_minor"], feb15["max_minor"]) == (15000, 17000)
    assert all(r["sale_date"] < date(2026, 3, 10) for r in store.daily_rows)
    assert {r["sale_month"] for r in store.monthly_rows} == {date(2025, 11, 1), date(2026, 2, 1)}
    assert len(store.snapshots) == 1


@pytest.mark.asyncio
async def test_retention_rerun_is_idempotent(store, settings, now):
    await store.insert_sale_transactions([sale("a", utc(2026, 3, 1, 10)), sale("b", utc(2026, 3, 1, 11))])

    await run_retention(store, settings=settings, now=now)
    await run_retention(store, settings=settings, now=now)

    [row] = store.daily_rows
    assert row["sale_count"] == 2


@pytest.mark.asyncio
async def test_retention_step_failure_is_isolated(store, settings, now):
    calls = []

    async def ok_step():
        calls.append("ok")
        return 4

    async def broken_step():
        raise RuntimeError("disk full")

    report = await run_retention(
        store,
        settings=settings,
        now=now,
        steps=[("first", ok_step), ("broken", broken_step), ("last", ok_step)],
    )

    assert calls == ["ok", "ok"]
    assert report.ok is False
    assert [(s.name, s.ok) for s in report.steps] == [("first", True), ("broken", False), ("last", True)]
    assert report.steps[1].error == "disk full"
    assert report.as_dict()["ok"] is False
