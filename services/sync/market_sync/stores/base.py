"""Persistent store capability consumed by the sync services.

Two implementations:
- SqlMarketStore (stores/sql_store.py): PostgreSQL via async SQLAlchemy
- MemoryMarketStore (stores/memory.py): in-process, for local runs and tests

Contract notes:
- upsert_style only fills columns that are currently NULL.
- insert_snapshot is append-only; a duplicate (variant, currency, snapshot_at) is ignored.
- claim_jobs is atomic: concurrent callers never receive the same job.
- mark_job_success / mark_job_failed only apply to the claim that produced `attempts`:
  the row must still be processing with the same attempt count. A worker whose
  job was recovered as stale and re-claimed elsewhere writes nothing.
- Retention operations return the number of rows they touched.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any

from market_sync.services.types import (
    ErrorKind,
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
)


class PrunableTable(str, Enum):
    SALE_TRANSACTIONS = "sale_transactions"
    MARKET_SNAPSHOTS = "market_snapshots"
    SALES_DAILY = "sales_daily"


class EnqueueOutcome(str, Enum):
    CREATED = "created"
    RESET = "reset"
    UNCHANGED = "unchanged"


class MarketStore(ABC):
    # ============================================================
    # Catalog
    # ============================================================

    @abstractmethod
    async def get_style(self, style_id: str) -> StyleRecord | None: ...

    @abstractmethod
    async def upsert_style(self, style_id: str, fields: dict[str, Any]) -> StyleRecord:
        """Create the style if missing; otherwise set only the given fields that are NULL."""

    @abstractmethod
    async def set_style_tier(self, style_id: str, tier: Tier) -> None: ...

    @abstractmethod
    async def select_due_styles(self, tier: Tier, stale_before: datetime, limit: int) -> list[StyleRecord]:
        """Styles of `tier` never synced or last synced before `stale_before`, oldest first."""

    @abstractmethod
    async def mark_style_synced(self, style_id: str, synced_at: datetime) -> None: ...

    @abstractmethod
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
        """Return the variant id for (style, provider, size, region, consigned)."""

    # ============================================================
    # Snapshots
    # ============================================================

    @abstractmethod
    async def insert_snapshot(self, snapshot: SnapshotRecord) -> bool:
        """Append one snapshot. False if the exact point already exists."""

    @abstractmethod
    async def refresh_latest_view(self) -> int:
        """Bring market_latest up to date with market_snapshots. Returns rows changed."""

    @abstractmethod
    async def get_latest(self, style_id: str) -> list[LatestMarketRow]: ...

    # ============================================================
    # Job queue
    # ============================================================

    @abstractmethod
    async def enqueue_job(
        self,
        style_id: str,
        provider: Provider,
        *,
        max_attempts: int,
        reset_permanent: bool = False,
    ) -> tuple[SyncJob, EnqueueOutcome]:
        """Ensure a pending job exists for (style, provider).

        pending/processing rows are left untouched. completed and transient
        failed rows are reset to pending with attempts=0. Permanent failures are
        only reset when `reset_permanent` is set.
        """

    @abstractmethod
    async def claim_jobs(self, limit: int, provider: Provider | None, now: datetime) -> list[SyncJob]:
        """Atomically move up to `limit` eligible pending jobs to processing (attempts += 1)."""

    @abstractmethod
    async def mark_job_processing(self, job_id: int, now: datetime) -> SyncJob | None:
        """Claim one specific pending job. None if it is not pending or is locked elsewhere."""

    @abstractmethod
    async def mark_job_success(self, job_id: int, now: datetime, *, attempts: int) -> bool:
        """Complete a claimed job. False if the claim is no longer held."""

    @abstractmethod
    async def mark_job_failed(
        self,
        job_id: int,
        error: str,
        *,
        attempts: int,
        kind: ErrorKind,
        retry_at: datetime | None,
    ) -> SyncJob | None:
        """Record a failure. retry_at=None means terminal (failed); otherwise back to pending.

        None if the claim is no longer held.
        """

    @abstractmethod
    async def get_job(self, job_id: int) -> SyncJob | None: ...

    @abstractmethod
    async def list_jobs_for_style(self, style_id: str) -> list[SyncJob]: ...

    @abstractmethod
    async def reset_failed_jobs(
        self,
        *,
        since: datetime | None,
        until: datetime | None,
        provider: Provider | None = None,
        include_permanent: bool = False,
    ) -> int:
        """failed -> pending (attempts=0) for jobs whose last attempt falls in [since, until]."""

    @abstractmethod
    async def recover_stale_jobs(self, stale_before: datetime, error: str) -> int:
        """processing jobs last attempted before `stale_before` -> pending, immediately claimable."""

    @abstractmethod
    async def queue_stats(self, provider: Provider | None = None) -> QueueStats: ...

    # ============================================================
    # Sales transactions + metrics
    # ============================================================

    @abstractmethod
    async def insert_sale_transactions(self, sales: list[SaleRecord]) -> int:
        """Insert new sales; existing (marketplace_id, item_id) rows are left as-is."""

    @abstractmethod
    async def list_sale_transactions(self, *, sku: str | None = None, since: datetime | None = None) -> list[SaleRecord]: ...

    @abstractmethod
    async def list_sale_skus(self, since: datetime) -> list[str]: ...

    @abstractmethod
    async def update_sale_flags(self, updates: list[SaleFlagUpdate]) -> int: ...

    @abstractmethod
    async def upsert_sales_metric(self, metric: SalesMetricRecord) -> None: ...

    @abstractmethod
    async def get_sales_metrics(self, sku: str) -> list[SalesMetricRecord]: ...

    # ============================================================
    # Retention
    # ============================================================

    @abstractmethod
    async def rollup_daily(self, before: datetime) -> int:
        """Aggregate included sales sold before `before` (a day boundary) into sales_daily."""

    @abstractmethod
    async def rollup_monthly(self, before: datetime) -> int:
        """Aggregate sales_daily rows dated before `before` (a month boundary) into sales_monthly."""

    @abstractmethod
    async def prune_older_than(self, table: PrunableTable, horizon_days: int, now: datetime) -> int: ...
