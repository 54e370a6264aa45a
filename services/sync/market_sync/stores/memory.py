"""In-process MarketStore.

Every mutation runs under one asyncio.Lock, which plays the role row locks play
in PostgreSQL: concurrent claimers inside one event loop always see disjoint
batches. Returned records are copies; mutating them never changes the store.

Used by the test-suite and by STORE_BACKEND=memory local runs.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import replace
from datetime import date, datetime, timedelta
import itertools
import statistics
from typing import Any

from market_sync.services.types import (
    CATALOG_FILLABLE_FIELDS,
    ErrorKind,
    JobStatus,
    LatestMarketRow,
    Provider,
    QueueStats,
    SaleFlagUpdate,
    SaleRecord,
    SalesMetricRecord,
    SnapshotRecord,
    StyleRecord,
    SyncJob,
    Tier,
    utcnow,
)
from market_sync.stores.base import EnqueueOutcome, MarketStore, PrunableTable


class MemoryMarketStore(MarketStore):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)

        self._styles: dict[str, StyleRecord] = {}
        self._variant_ids: dict[tuple[str, str, str, str, bool], int] = {}
        self._variants: dict[int, dict[str, Any]] = {}
        self._snapshots: dict[tuple[int, str, datetime], SnapshotRecord] = {}
        self._latest: dict[tuple[int, str], LatestMarketRow] = {}
        self._jobs: dict[int, SyncJob] = {}
        self._job_keys: dict[tuple[str, Provider], int] = {}
        self._sales: dict[tuple[str, str], SaleRecord] = {}
        self._metrics: dict[tuple[str, str, str, str], SalesMetricRecord] = {}
        self._daily: dict[tuple[str, str, str, str, date], dict[str, Any]] = {}
        self._monthly: dict[tuple[str, str, str, str, date], dict[str, Any]] = {}

    # Test/debug helpers
    @property
    def snapshots(self) -> list[SnapshotRecord]:
        return sorted(self._snapshots.values(), key=lambda s: (s.variant_id, s.currency, s.snapshot_at))

    @property
    def daily_rows(self) -> list[dict[str, Any]]:
        return [dict(v) for _, v in sorted(self._daily.items(), key=lambda kv: kv[0])]

    @property
    def monthly_rows(self) -> list[dict[str, Any]]:
        return [dict(v) for _, v in sorted(self._monthly.items(), key=lambda kv: kv[0])]

    # ============================================================
    # Catalog
    # ============================================================

    async def get_style(self, style_id: str) -> StyleRecord | None:
        style = self._styles.get(style_id)
        return replace(style) if style else None

    async def upsert_style(self, style_id: str, fields: dict[str, Any]) -> StyleRecord:
        async with self._lock:
            style = self._styles.get(style_id)
            if style is None:
                style = StyleRecord(style_id=style_id)
                if fields.get("tier") is not None:
                    style.tier = Tier(fields["tier"])
                self._styles[style_id] = style
            for name in CATALOG_FILLABLE_FIELDS:
                value = fields.get(name)
                if value is not None and getattr(style, name) is None:
                    setattr(style, name, value)
            return replace(style)

    async def set_style_tier(self, style_id: str, tier: Tier) -> None:
        async with self._lock:
            if style_id in self._styles:
                self._styles[style_id].tier = tier

    async def select_due_styles(self, tier: Tier, stale_before: datetime, limit: int) -> list[StyleRecord]:
        due = [
            s
            for s in self._styles.values()
            if s.tier == tier and (s.last_synced_at is None or s.last_synced_at < stale_before)
        ]
        due.sort(key=lambda s: (s.last_synced_at is not None, s.last_synced_at or datetime.min, s.style_id))
        return [replace(s) for s in due[:limit]]

    async def mark_style_synced(self, style_id: str, synced_at: datetime) -> None:
        async with self._lock:
            if style_id in self._styles:
                self._styles[style_id].last_synced_at = synced_at

    async def upsert_variant(
        self,
        *,
        style_id: str,
        provider: Provider,
        size_value: str,
        size_system: str,
        region_id: str,
        consigned: bool,
        external_variant_id: str | None,
    ) -> int:
        key = (style_id, Provider(provider).value, size_value, region_id or "", bool(consigned))
        async with self._lock:
            variant_id = self._variant_ids.get(key)
            if variant_id is None:
                variant_id = next(self._ids)
                self._variant_ids[key] = variant_id
                self._variants[variant_id] = {
                    "style_id": style_id,
                    "provider": Provider(provider),
                    "size_value": size_value,
                    "size_system": size_system,
                    "region_id": region_id or "",
                    "consigned": bool(consigned),
                    "external_variant_id": external_variant_id,
                }
            else:
                row = self._variants[variant_id]
                row["size_system"] = size_system
                if external_variant_id:
                    row["external_variant_id"] = external_variant_id
            return variant_id

    # ============================================================
    # Snapshots
    # ============================================================

    async def insert_snapshot(self, snapshot: SnapshotRecord) -> bool:
        key = (snapshot.variant_id, snapshot.currency, snapshot.snapshot_at)
        async with self._lock:
            if key in self._snapshots:
                return False
            self._snapshots[key] = snapshot
            return True

    async def refresh_latest_view(self) -> int:
        changed = 0
        async with self._lock:
            for snap in self._snapshots.values():
                key = (snap.variant_id, snap.currency)
                current = self._latest.get(key)
                if current is not None and current.snapshot_at >= snap.snapshot_at:
                    continue
                variant = self._variants[snap.variant_id]
                self._latest[key] = LatestMarketRow(
                    style_id=snap.style_id,
                    variant_id=snap.variant_id,
                    provider=Provider(snap.provider),
                    size_value=variant["size_value"],
                    size_system=variant["size_system"],
                    region_id=snap.region_id,
                    consigned=variant["consigned"],
                    currency=snap.currency,
                    lowest_ask=snap.lowest_ask,
                    highest_bid=snap.highest_bid,
                    last_sale_price=snap.last_sale_price,
                    snapshot_at=snap.snapshot_at,
                )
                changed += 1
        return changed

    async def get_latest(self, style_id: str) -> list[LatestMarketRow]:
        rows = [r for r in self._latest.values() if r.style_id == style_id]
        rows.sort(key=lambda r: (r.provider.value, r.region_id, r.size_value, r.currency))
        return rows

    # ============================================================
    # Job queue
    # ============================================================

    async def enqueue_job(
        self,
        style_id: str,
        provider: Provider,
        *,
        max_attempts: int,
        reset_permanent: bool = False,
    ) -> tuple[SyncJob, EnqueueOutcome]:
        provider = Provider(provider)
        async with self._lock:
            job_id = self._job_keys.get((style_id, provider))
            if job_id is None:
                job = SyncJob(
                    id=next(self._ids),
                    style_id=style_id,
                    provider=provider,
                    status=JobStatus.PENDING,
                    max_attempts=max_attempts,
                    created_at=utcnow(),
                )
                self._jobs[job.id] = job
                self._job_keys[(style_id, provider)] = job.id
                return replace(job), EnqueueOutcome.CREATED

            job = self._jobs[job_id]
            resettable = job.status == JobStatus.COMPLETED or (
                job.status == JobStatus.FAILED and (reset_permanent or job.error_kind != ErrorKind.PERMANENT)
            )
            if not resettable:
                return replace(job), EnqueueOutcome.UNCHANGED

            job.status = JobStatus.PENDING
            job.attempts = 0
            job.max_attempts = max_attempts
            job.next_retry_at = None
            job.last_error = None
            job.error_kind = None
            job.completed_at = None
            job.created_at = utcnow()
            return replace(job), EnqueueOutcome.RESET

    def _claimable(self, job: SyncJob, provider: Provider | None, now: datetime) -> bool:
        return (
            job.status == JobStatus.PENDING
            and (provider is None or job.provider == provider)
            and (job.next_retry_at is None or job.next_retry_at <= now)
        )

    @staticmethod
    def _start(job: SyncJob, now: datetime) -> None:
        job.status = JobStatus.PROCESSING
        job.attempts += 1
        job.last_attempt_at = now

    async def claim_jobs(self, limit: int, provider: Provider | None, now: datetime) -> list[SyncJob]:
        if limit <= 0:
            return []
        async with self._lock:
            eligible = [j for j in self._jobs.values() if self._claimable(j, provider, now)]
            eligible.sort(key=lambda j: (j.created_at or datetime.min, j.id))
            claimed = eligible[:limit]
            for job in claimed:
                self._start(job, now)
            return [replace(j) for j in claimed]

    async def mark_job_processing(self, job_id: int, now: datetime) -> SyncJob | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return None
            self._start(job, now)
            return replace(job)

    def _held(self, job_id: int, attempts: int) -> SyncJob | None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING or job.attempts != attempts:
            return None
        return job

    async def mark_job_success(self, job_id: int, now: datetime, *, attempts: int) -> bool:
        async with self._lock:
            job = self._held(job_id, attempts)
            if job is None:
                return False
            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.last_error = None
            job.error_kind = None
            job.next_retry_at = None
            return True

    async def mark_job_failed(
        self,
        job_id: int,
        error: str,
        *,
        attempts: int,
        kind: ErrorKind,
        retry_at: datetime | None,
    ) -> SyncJob | None:
        async with self._lock:
            job = self._held(job_id, attempts)
            if job is None:
                return None
            job.status = JobStatus.FAILED if retry_at is None else JobStatus.PENDING
            job.last_error = error
            job.error_kind = ErrorKind(kind)
            job.next_retry_at = retry_at
            return replace(job)

    async def get_job(self, job_id: int) -> SyncJob | None:
        job = self._jobs.get(job_id)
        return replace(job) if job else None

    async def list_jobs_for_style(self, style_id: str) -> list[SyncJob]:
        jobs = [replace(j) for j in self._jobs.values() if j.style_id == style_id]
        return sorted(jobs, key=lambda j: j.provider.value)

    async def reset_failed_jobs(
        self,
        *,
        since: datetime | None,
        until: datetime | None,
        provider: Provider | None = None,
        include_permanent: bool = False,
    ) -> int:
        count = 0
        async with self._lock:
            for job in self._jobs.values():
                if job.status != JobStatus.FAILED:
                    continue
                if provider is not None and job.provider != provider:
                    continue
                if job.error_kind == ErrorKind.PERMANENT and not include_permanent:
                    continue
                at = job.last_attempt_at or job.created_at
                if since is not None and (at is None or at < since):
                    continue
                if until is not None and (at is None or at > until):
                    continue
                job.status = JobStatus.PENDING
                job.attempts = 0
                job.next_retry_at = None
                job.last_error = None
                job.error_kind = None
                job.completed_at = None
                count += 1
        return count

    async def recover_stale_jobs(self, stale_before: datetime, error: str) -> int:
        count = 0
        async with self._lock:
            for job in self._jobs.values():
                if job.status != JobStatus.PROCESSING:
                    continue
                if job.last_attempt_at is not None and job.last_attempt_at >= stale_before:
                    continue
                job.status = JobStatus.PENDING
                job.next_retry_at = None
                job.last_error = error
                job.error_kind = ErrorKind.TIMEOUT
                count += 1
        return count

    async def queue_stats(self, provider: Provider | None = None) -> QueueStats:
        stats = QueueStats()
        for job in self._jobs.values():
            if provider is not None and job.provider != provider:
                continue
            setattr(stats, job.status.value, getattr(stats, job.status.value) + 1)
        return stats

    # ============================================================
    # Sales transactions + metrics
    # ============================================================

    async def insert_sale_transactions(self, sales: list[SaleRecord]) -> int:
        inserted = 0
        async with self._lock:
            for sale in sales:
                key = (sale.marketplace_id, sale.item_id)
                if key in self._sales:
                    continue
                self._sales[key] = replace(sale, fetched_at=sale.fetched_at or utcnow())
                inserted += 1
        return inserted

    async def list_sale_transactions(self, *, sku: str | None = None, since: datetime | None = None) -> list[SaleRecord]:
        rows = [
            replace(s)
            for s in self._sales.values()
            if (sku is None or s.sku == sku) and (since is None or s.sold_at >= since)
        ]
        return sorted(rows, key=lambda s: (s.sold_at, s.item_id))

    async def list_sale_skus(self, since: datetime) -> list[str]:
        return sorted({s.sku for s in self._sales.values() if s.sold_at >= since})

    async def update_sale_flags(self, updates: list[SaleFlagUpdate]) -> int:
        count = 0
        async with self._lock:
            for u in updates:
                sale = self._sales.get((u.marketplace_id, u.item_id))
                if sale is None:
                    continue
                sale.is_outlier = u.is_outlier
                sale.outlier_reason = u.outlier_reason
                sale.included_in_metrics = u.included_in_metrics
                count += 1
        return count

    async def upsert_sales_metric(self, metric: SalesMetricRecord) -> None:
        key = (metric.sku, metric.size_key, metric.currency, metric.marketplace_id)
        async with self._lock:
            self._metrics[key] = replace(metric)

    async def get_sales_metrics(self, sku: str) -> list[SalesMetricRecord]:
        rows = [replace(m) for k, m in self._metrics.items() if k[0] == sku]
        return sorted(rows, key=lambda m: (m.size_key, m.currency, m.marketplace_id))

    # ============================================================
    # Retention
    # ============================================================

    async def rollup_daily(self, before: datetime) -> int:
        async with self._lock:
            groups: dict[tuple[str, str, str, str, date], list[int]] = defaultdict(list)
            for s in self._sales.values():
                if not s.included_in_metrics or s.size_key is None or s.sold_at >= before:
                    continue
                groups[(s.sku, s.size_key, s.currency, s.marketplace_id, s.sold_at.date())].append(s.price_minor)
            for key, prices in groups.items():
                self._daily[key] = {
                    "sku": key[0],
                    "size_key": key[1],
                    "currency": key[2],
                    "marketplace_id": key[3],
                    "sale_date": key[4],
                    "sale_count": len(prices),
                    "total_minor": sum(prices),
                    "avg_minor": sum(prices) / len(prices),
                    "median_minor": float(statistics.median(prices)),
                    "min_minor": min(prices),
                    "max_minor": max(prices),
                }
            return len(groups)

    async def rollup_monthly(self, before: datetime) -> int:
        cutoff = before.date()
        async with self._lock:
            groups: dict[tuple[str, str, str, str, date], list[dict[str, Any]]] = defaultdict(list)
            for row in self._daily.values():
                if row["sale_date"] >= cutoff:
                    continue
                month = row["sale_date"].replace(day=1)
                groups[(row["sku"], row["size_key"], row["currency"], row["marketplace_id"], month)].append(row)
            for key, rows in groups.items():
                count = sum(r["sale_count"] for r in rows)
                total = sum(r["total_minor"] for r in rows)
                self._monthly[key] = {
                    "sku": key[0],
                    "size_key": key[1],
                    "currency": key[2],
                    "marketplace_id": key[3],
                    "sale_month": key[4],
                    "sale_count": count,
                    "total_minor": total,
                    "avg_minor": total / count,
                    "min_minor": min(r["min_minor"] for r in rows),
                    "max_minor": max(r["max_minor"] for r in rows),
                }
            return len(groups)

    async def prune_older_than(self, table: PrunableTable, horizon_days: int, now: datetime) -> int:
        cutoff = now - timedelta(days=horizon_days)
        async with self._lock:
            if table == PrunableTable.SALE_TRANSACTIONS:
                doomed = [k for k, s in self._sales.items() if s.sold_at < cutoff]
                for k in doomed:
                    del self._sales[k]
            elif table == PrunableTable.MARKET_SNAPSHOTS:
                doomed = [k for k, s in self._snapshots.items() if s.snapshot_at < cutoff]
                for k in doomed:
                    del self._snapshots[k]
            elif table == PrunableTable.SALES_DAILY:
                doomed = [k for k, r in self._daily.items() if r["sale_date"] < cutoff.date()]
                for k in doomed:
                    del self._daily[k]
            else:
                raise ValueError(f"Unsupported table: {table}")
            return len(doomed)
