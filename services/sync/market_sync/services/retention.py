"""Daily retention: roll-ups and pruning.

Steps (each idempotent, each isolated from the others' failures):
1. rollup_daily_sales: complete UTC days of included sales -> sales_daily
2. rollup_monthly_sales: complete months of sales_daily -> sales_monthly
3. prune_sale_transactions: raw sales older than raw_sales_retention_days
4. prune_market_snapshots: price history older than price_history_retention_days
5. prune_sales_daily: daily aggregates older than daily_aggregate_retention_days
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from market_sync.services.types import utcnow
from market_sync.settings import Settings
from market_sync.stores import redis as redis_store
from market_sync.stores.base import MarketStore, PrunableTable

logger = logging.getLogger("uvicorn.error")

LOCK_KEY = "retention:daily"


@dataclass
class StepResult:
    name: str
    ok: bool
    rows: int = 0
    error: str | None = None


@dataclass
class RetentionReport:
    run_id: str
    started_at: datetime
    steps: list[StepResult] = field(default_factory=list)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return all(s.ok for s in self.steps)

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "ok": self.ok,
            "skipped": self.skipped,
            "steps": [s.__dict__ for s in self.steps],
        }


def day_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def month_start(now: datetime) -> datetime:
    return day_start(now).replace(day=1)


def retention_steps(store: MarketStore, settings: Settings, now: datetime) -> list[tuple[str, Callable[[], Awaitable[int]]]]:
    return [
        ("rollup_daily_sales", lambda: store.rollup_daily(day_start(now))),
        ("rollup_monthly_sales", lambda: store.rollup_monthly(month_start(now))),
        (
            "prune_sale_transactions",
            lambda: store.prune_older_than(PrunableTable.SALE_TRANSACTIONS, settings.raw_sales_retention_days, now),
        ),
        (
            "prune_market_snapshots",
            lambda: store.prune_older_than(PrunableTable.MARKET_SNAPSHOTS, settings.price_history_retention_days, now),
        ),
        (
            "prune_sales_daily",
            lambda: store.prune_older_than(PrunableTable.SALES_DAILY, settings.daily_aggregate_retention_days, now),
        ),
    ]


async def run_retention(
    store: MarketStore,
    *,
    settings: Settings,
    now: datetime | None = None,
    use_lock: bool = True,
    steps: list[tuple[str, Callable[[], Awaitable[int]]]] | None = None,
) -> RetentionReport:
    now = now or utcnow()
    report = RetentionReport(run_id=uuid4().hex[:12], started_at=now)

    locked: bool | None = None
    if use_lock:
        try:
            locked = await redis_store.acquire_lock(LOCK_KEY, redis_store.TTL_RETENTION_LOCK)
        except Exception as e:
            logger.warning(f"[retention] lock unavailable ({e}), running without it")
        if locked is False:
            logger.info("[retention] another run holds the lock, skipping")
            report.skipped = True
            return report

    try:
        for name, step in steps or retention_steps(store, settings, now):
            try:
                rows = await step()
            except Exception as e:
                logger.exception(f"[retention] run={report.run_id} step={name} failed: {e}")
                report.steps.append(StepResult(name=name, ok=False, error=str(e)[:500]))
                continue
            logger.info(f"[retention] run={report.run_id} step={name} rows={rows}")
            report.steps.append(StepResult(name=name, ok=True, rows=rows))
    finally:
        if locked:
            try:
                await redis_store.release_lock(LOCK_KEY)
            except Exception as e:
                logger.warning(f"[retention] lock release failed: {e}")

    logger.info(f"[retention] run={report.run_id} done ok={report.ok}")
    return report
