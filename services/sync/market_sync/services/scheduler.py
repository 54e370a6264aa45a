"""Tiered scheduler: enqueue sync jobs for styles that are due.

Tier max staleness (configurable):
- hot: 1 hour
- warm: 6 hours
- cold: 24 hours
- frozen: never scheduled (on-demand sync only)

Each run handles one tier, oldest-first, capped at scheduler_batch_size so a
run fits a serverless time budget. Due-ness is recomputed from last_synced_at
every run, so an interrupted run is simply picked up by the next tick.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from market_sync.services.sync_queue import enqueue_for_style
from market_sync.services.types import Tier, utcnow
from market_sync.settings import Settings
from market_sync.stores import redis as redis_store
from market_sync.stores.base import EnqueueOutcome, MarketStore

logger = logging.getLogger("uvicorn.error")


def tier_staleness(tier: Tier, settings: Settings) -> timedelta | None:
    minutes = {
        Tier.HOT: settings.tier_hot_minutes,
        Tier.WARM: settings.tier_warm_minutes,
        Tier.COLD: settings.tier_cold_minutes,
    }.get(Tier(tier))
    return timedelta(minutes=minutes) if minutes is not None else None


async def _acquire(key: str) -> bool | None:
    """True/False from Redis, or None when Redis is not available."""
    try:
        return await redis_store.acquire_lock(key, redis_store.TTL_SCHEDULER_LOCK)
    except Exception as e:
        logger.warning(f"[scheduler] lock unavailable ({e}), running without it")
        return None


async def _release(key: str) -> None:
    try:
        await redis_store.release_lock(key)
    except Exception as e:
        logger.warning(f"[scheduler] lock release failed for {key}: {e}")


async def run_scheduler(
    store: MarketStore,
    tier: Tier,
    *,
    settings: Settings,
    now: datetime | None = None,
    limit: int | None = None,
    use_lock: bool = True,
) -> dict[str, Any]:
    tier = Tier(tier)
    now = now or utcnow()
    summary: dict[str, Any] = {
        "tier": tier.value,
        "selected": 0,
        "enqueued": 0,
        "unchanged": 0,
        "skipped": False,
    }

    staleness = tier_staleness(tier, settings)
    if staleness is None:
        logger.info(f"[scheduler] tier={tier.value} is on-demand only, nothing to schedule")
        return summary

    lock_key = f"scheduler:{tier.value}"
    locked = await _acquire(lock_key) if use_lock else None
    if locked is False:
        logger.info(f"[scheduler] tier={tier.value} already running, skipping")
        summary["skipped"] = True
        return summary

    try:
        styles = await store.select_due_styles(tier, now - staleness, limit or settings.scheduler_batch_size)
        summary["selected"] = len(styles)
        for style in styles:
            outcomes = await enqueue_for_style(store, style, settings=settings)
            for outcome in outcomes.values():
                if outcome == EnqueueOutcome.UNCHANGED:
                    summary["unchanged"] += 1
                else:
                    summary["enqueued"] += 1
    finally:
        if locked:
            await _release(lock_key)

    logger.info(
        f"[scheduler] tier={tier.value} selected={summary['selected']} "
        f"enqueued={summary['enqueued']} unchanged={summary['unchanged']}"
    )
    return summary
