"""PostgreSQL MarketStore.

Handles:
- Null-fill catalog upserts (INSERT .. ON CONFLICT DO UPDATE with COALESCE)
- Append-only snapshots + DISTINCT ON refresh of market_latest
- Job claiming with SELECT .. FOR UPDATE SKIP LOCKED
- Sales inserts (ON CONFLICT DO NOTHING) and retention roll-ups

Each public method runs in its own session/transaction.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Date, Float, and_, cast, delete, func, literal_column, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from market_sync.models import (
    MarketLatest,
    MarketSnapshot,
    ProviderVariant,
    SaleTransaction,
    SalesDaily,
    SalesMetric,
    SalesMonthly,
    StyleCatalog,
    SyncJobRow,
)
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
    SizeSystem,
    SnapshotRecord,
    StyleRecord,
    SyncJob,
    Tier,
)
from market_sync.stores.base import EnqueueOutcome, MarketStore, PrunableTable
from market_sync.stores.postgres import get_session

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_JOB_COLUMNS = list(SyncJobRow.__table__.c)


# ============================================================
# Row -> record mapping
# ============================================================


def _style_from_row(row: StyleCatalog) -> StyleRecord:
    return StyleRecord(
        style_id=row.style_id,
        brand=row.brand,
        name=row.name,
        colorway=row.colorway,
        category=row.category,
        image_url=row.image_url,
        release_date=row.release_date,
        retail_price=row.retail_price,
        retail_currency=row.retail_currency,
        stockx_product_id=row.stockx_product_id,
        stockx_url_key=row.stockx_url_key,
        alias_catalog_id=row.alias_catalog_id,
        tier=Tier(row.tier),
        last_synced_at=row.last_synced_at,
    )


def _job_from_mapping(m: Any) -> SyncJob:
    return SyncJob(
        id=m["id"],
        style_id=m["style_id"],
        provider=Provider(m["provider"]),
        status=JobStatus(m["status"]),
        attempts=m["attempts"],
        max_attempts=m["max_attempts"],
        last_attempt_at=m["last_attempt_at"],
        next_retry_at=m["next_retry_at"],
        last_error=m["last_error"],
        error_kind=ErrorKind(m["error_kind"]) if m["error_kind"] else None,
        created_at=m["created_at"],
        completed_at=m["completed_at"],
    )


def _sale_from_row(row: SaleTransaction) -> SaleRecord:
    return SaleRecord(
        marketplace_id=row.marketplace_id,
        item_id=row.item_id,
        sku=row.sku,
        title=row.title,
        price_minor=row.price_minor,
        currency=row.currency_code,
        sold_at=row.sold_at,
        condition_id=row.condition_id,
        authenticity_guarantee=row.authenticity_guarantee,
        size_value=row.size_value,
        size_system=SizeSystem(row.size_system) if row.size_system else None,
        size_key=row.size_key,
        size_confidence=row.size_confidence,
        is_outlier=row.is_outlier,
        outlier_reason=row.outlier_reason,
        exclusion_reason=row.exclusion_reason,
        included_in_metrics=row.included_in_metrics,
        fetched_at=row.fetched_at,
    )


def _metric_from_row(row: SalesMetric) -> SalesMetricRecord:
    return SalesMetricRecord(
        sku=row.sku,
        size_key=row.size_key,
        currency=row.currency_code,
        marketplace_id=row.marketplace_id,
        median_72h=row.median_72h,
        median_7d=row.median_7d,
        median_30d=row.median_30d,
        median_90d=row.median_90d,
        sample_72h=row.sample_72h,
        sample_7d=row.sample_7d,
        sample_30d=row.sample_30d,
        sample_90d=row.sample_90d,
        min_90d=row.min_90d,
        max_90d=row.max_90d,
        volatility=row.volatility,
        outlier_ratio=row.outlier_ratio,
        liquidity_score=row.liquidity_score,
        confidence_score=row.confidence_score,
        last_sale_at=row.last_sale_at,
        computed_at=row.computed_at,
    )


# ============================================================
# Statement builders (module-level so they can be compiled in tests)
# ============================================================


def build_style_upsert(style_id: str, fields: dict[str, Any]):
    values: dict[str, Any] = {"style_id": style_id}
    for name in CATALOG_FILLABLE_FIELDS:
        if fields.get(name) is not None:
            values[name] = fields[name]
    if fields.get("tier") is not None:
        values["tier"] = Tier(fields["tier"]).value

    table = StyleCatalog.__table__
    stmt = pg_insert(StyleCatalog).values(**values)
    set_: dict[str, Any] = {
        name: func.coalesce(table.c[name], stmt.excluded[name]) for name in values if name in CATALOG_FILLABLE_FIELDS
    }
    set_["updated_at"] = func.now()
    return stmt.on_conflict_do_update(index_elements=[StyleCatalog.style_id], set_=set_).returning(StyleCatalog)


def build_claim_statement(limit: int, provider: Provider | None, now: datetime, job_id: int | None = None):
    """UPDATE .. RETURNING over a SKIP LOCKED selection of eligible pending jobs."""
    conditions = [
        SyncJobRow.status == JobStatus.PENDING.value,
        or_(SyncJobRow.next_retry_at.is_(None), SyncJobRow.next_retry_at <= now),
    ]
    if provider is not None:
        conditions.append(SyncJobRow.provider == Provider(provider).value)
    if job_id is not None:
        conditions.append(SyncJobRow.id == job_id)

    eligible = (
        select(SyncJobRow.id)
        .where(and_(*conditions))
        .order_by(SyncJobRow.created_at, SyncJobRow.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .cte("eligible")
    )
    return (
        update(SyncJobRow)
        .where(SyncJobRow.id.in_(select(eligible.c.id)))
        .values(
            status=JobStatus.PROCESSING.value,
            attempts=SyncJobRow.attempts + 1,
            last_attempt_at=now,
        )
        .returning(*_JOB_COLUMNS)
    )


def build_claimed_job_update(job_id: int, attempts: int):
    """UPDATE restricted to a job still held by the claim that set `attempts`."""
    return update(SyncJobRow).where(
        SyncJobRow.id == job_id,
        SyncJobRow.status == JobStatus.PROCESSING.value,
        SyncJobRow.attempts == attempts,
    )


def build_enqueue_statement(style_id: str, provider: Provider, max_attempts: int, reset_permanent: bool):
    table = SyncJobRow.__table__
    stmt = pg_insert(SyncJobRow).values(
        style_id=style_id,
        provider=Provider(provider).value,
        status=JobStatus.PENDING.value,
        attempts=0,
        max_attempts=max_attempts,
    )
    failed_resettable = table.c.status == JobStatus.FAILED.value
    if not reset_permanent:
        failed_resettable = and_(
            failed_resettable,
            table.c.error_kind.is_distinct_from(ErrorKind.PERMANENT.value),
        )
    return stmt.on_conflict_do_update(
        constraint="uq_sync_jobs_style_provider",
        set_={
            "status": JobStatus.PENDING.value,
            "attempts": 0,
            "max_attempts": stmt.excluded.max_attempts,
            "next_retry_at": None,
            "last_error": None,
            "error_kind": None,
            "completed_at": None,
            "created_at": func.now(),
        },
        where=or_(table.c.status == JobStatus.COMPLETED.value, failed_resettable),
    ).returning(*_JOB_COLUMNS, literal_column("(xmax = 0)").label("inserted"))


def build_latest_refresh():
    ranked = (
        select(
            MarketSnapshot.variant_id,
            MarketSnapshot.style_id,
            MarketSnapshot.provider,
            ProviderVariant.size_value,
            ProviderVariant.size_system,
            MarketSnapshot.region_id,
            ProviderVariant.consigned,
            MarketSnapshot.currency_code,
            MarketSnapshot.lowest_ask,
            MarketSnapshot.highest_bid,
            MarketSnapshot.last_sale_price,
            MarketSnapshot.snapshot_at,
        )
        .join(ProviderVariant, ProviderVariant.id == MarketSnapshot.variant_id)
        .distinct(MarketSnapshot.variant_id, MarketSnapshot.currency_code)
        .order_by(MarketSnapshot.variant_id, MarketSnapshot.currency_code, MarketSnapshot.snapshot_at.desc())
    )
    columns = [
        "variant_id",
        "style_id",
        "provider",
        "size_value",
        "size_system",
        "region_id",
        "consigned",
        "currency_code",
        "lowest_ask",
        "highest_bid",
        "last_sale_price",
        "snapshot_at",
    ]
    stmt = pg_insert(MarketLatest).from_select(columns, ranked)
    refreshed = {c: stmt.excluded[c] for c in columns if c not in ("variant_id", "currency_code")}
    refreshed["refreshed_at"] = func.now()
    return stmt.on_conflict_do_update(
        constraint="uq_market_latest_key",
        set_=refreshed,
        where=MarketLatest.__table__.c.snapshot_at < stmt.excluded.snapshot_at,
    )


def build_daily_rollup(before: datetime):
    sale_date = func.date(func.timezone("UTC", SaleTransaction.sold_at))
    source = (
        select(
            SaleTransaction.sku,
            SaleTransaction.size_key,
            SaleTransaction.currency_code,
            SaleTransaction.marketplace_id,
            sale_date.label("sale_date"),
            func.count().label("sale_count"),
            func.sum(SaleTransaction.price_minor).label("total_minor"),
            func.avg(SaleTransaction.price_minor).label("avg_minor"),
            func.percentile_cont(0.5).within_group(SaleTransaction.price_minor).label("median_minor"),
            func.min(SaleTransaction.price_minor).label("min_minor"),
            func.max(SaleTransaction.price_minor).label("max_minor"),
        )
        .where(
            SaleTransaction.included_in_metrics.is_(True),
            SaleTransaction.size_key.is_not(None),
            SaleTransaction.sold_at < before,
        )
        .group_by(
            SaleTransaction.sku,
            SaleTransaction.size_key,
            SaleTransaction.currency_code,
            SaleTransaction.marketplace_id,
            sale_date,
        )
    )
    columns = [
        "sku",
        "size_key",
        "currency_code",
        "marketplace_id",
        "sale_date",
        "sale_count",
        "total_minor",
        "avg_minor",
        "median_minor",
        "min_minor",
        "max_minor",
    ]
    stmt = pg_insert(SalesDaily).from_select(columns, source)
    set_ = {c: stmt.excluded[c] for c in columns[5:]}
    set_["updated_at"] = func.now()
    return stmt.on_conflict_do_update(constraint="uq_sales_daily_key", set_=set_)


def build_monthly_rollup(before: datetime):
    sale_month = cast(func.date_trunc("month", SalesDaily.sale_date), Date)
    total = func.sum(SalesDaily.total_minor)
    count = func.sum(SalesDaily.sale_count)
    source = (
        select(
            SalesDaily.sku,
            SalesDaily.size_key,
            SalesDaily.currency_code,
            SalesDaily.marketplace_id,
            sale_month.label("sale_month"),
            count.label("sale_count"),
            total.label("total_minor"),
            (cast(total, Float) / count).label("avg_minor"),
            func.min(SalesDaily.min_minor).label("min_minor"),
            func.max(SalesDaily.max_minor).label("max_minor"),
        )
        .where(SalesDaily.sale_date < before.date())
        .group_by(
            SalesDaily.sku,
            SalesDaily.size_key,
            SalesDaily.currency_code,
            SalesDaily.marketplace_id,
            sale_month,
        )
    )
    columns = [
        "sku",
        "size_key",
        "currency_code",
        "marketplace_id",
        "sale_month",
        "sale_count",
        "total_minor",
        "avg_minor",
        "min_minor",
        "max_minor",
    ]
    stmt = pg_insert(SalesMonthly).from_select(columns, source)
    set_ = {c: stmt.excluded[c] for c in columns[5:]}
    set_["updated_at"] = func.now()
    return stmt.on_conflict_do_update(constraint="uq_sales_monthly_key", set_=set_)


# ============================================================
# Store
# ============================================================


class SqlMarketStore(MarketStore):
    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session = session_factory

    # --- catalog ---

    async def get_style(self, style_id: str) -> StyleRecord | None:
        async with self._session() as session:
            row = (
                await session.execute(select(StyleCatalog).where(StyleCatalog.style_id == style_id))
            ).scalar_one_or_none()
            return _style_from_row(row) if row else None

    async def upsert_style(self, style_id: str, fields: dict[str, Any]) -> StyleRecord:
        async with self._session() as session:
            row = (
                await session.scalars(
                    build_style_upsert(style_id, fields),
                    execution_options={"populate_existing": True},
                )
            ).one()
            return _style_from_row(row)

    async def set_style_tier(self, style_id: str, tier: Tier) -> None:
        async with self._session() as session:
            await session.execute(
                update(StyleCatalog).where(StyleCatalog.style_id == style_id).values(tier=Tier(tier).value)
            )

    async def select_due_styles(self, tier: Tier, stale_before: datetime, limit: int) -> list[StyleRecord]:
        stmt = (
            select(StyleCatalog)
            .where(
                StyleCatalog.tier == Tier(tier).value,
                or_(StyleCatalog.last_synced_at.is_(None), StyleCatalog.last_synced_at < stale_before),
            )
            .order_by(StyleCatalog.last_synced_at.asc().nulls_first(), StyleCatalog.style_id)
            .limit(limit)
        )
        async with self._session() as session:
            return [_style_from_row(r) for r in (await session.scalars(stmt)).all()]

    async def mark_style_synced(self, style_id: str, synced_at: datetime) -> None:
        async with self._session() as session:
            await session.execute(
                update(StyleCatalog).where(StyleCatalog.style_id == style_id).values(last_synced_at=synced_at)
            )

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
        table = ProviderVariant.__table__
        stmt = pg_insert(ProviderVariant).values(
            style_id=style_id,
            provider=Provider(provider).value,
            size_value=size_value,
            size_system=size_system,
            region_id=region_id or "",
            consigned=bool(consigned),
            external_variant_id=external_variant_id,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_provider_variants_key",
            set_={
                "size_system": stmt.excluded.size_system,
                "external_variant_id": func.coalesce(stmt.excluded.external_variant_id, table.c.external_variant_id),
                "updated_at": func.now(),
            },
        ).returning(ProviderVariant.id)
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    # --- snapshots ---

    async def insert_snapshot(self, snapshot: SnapshotRecord) -> bool:
        stmt = (
            pg_insert(MarketSnapshot)
            .values(
                variant_id=snapshot.variant_id,
                style_id=snapshot.style_id,
                provider=Provider(snapshot.provider).value,
                region_id=snapshot.region_id or "",
                currency_code=snapshot.currency,
                lowest_ask=snapshot.lowest_ask,
                highest_bid=snapshot.highest_bid,
                last_sale_price=snapshot.last_sale_price,
                sales_72h=snapshot.sales_72h,
                sales_7d=snapshot.sales_7d,
                sales_30d=snapshot.sales_30d,
                volatility=snapshot.volatility,
                liquidity=snapshot.liquidity,
                snapshot_at=snapshot.snapshot_at,
            )
            .on_conflict_do_nothing(constraint="uq_market_snapshots_point")
            .returning(MarketSnapshot.id)
        )
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def refresh_latest_view(self) -> int:
        async with self._session() as session:
            result = await session.execute(build_latest_refresh())
            return result.rowcount or 0

    async def get_latest(self, style_id: str) -> list[LatestMarketRow]:
        stmt = (
            select(MarketLatest)
            .where(MarketLatest.style_id == style_id)
            .order_by(MarketLatest.provider, MarketLatest.region_id, MarketLatest.size_value, MarketLatest.currency_code)
        )
        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
        return [
            LatestMarketRow(
                style_id=r.style_id,
                variant_id=r.variant_id,
                provider=Provider(r.provider),
                size_value=r.size_value,
                size_system=r.size_system,
                region_id=r.region_id,
                consigned=r.consigned,
                currency=r.currency_code,
                lowest_ask=r.lowest_ask,
                highest_bid=r.highest_bid,
                last_sale_price=r.last_sale_price,
                snapshot_at=r.snapshot_at,
            )
            for r in rows
        ]

    # --- job queue ---

    async def enqueue_job(
        self,
        style_id: str,
        provider: Provider,
        *,
        max_attempts: int,
        reset_permanent: bool = False,
    ) -> tuple[SyncJob, EnqueueOutcome]:
        async with self._session() as session:
            row = (
                await session.execute(build_enqueue_statement(style_id, provider, max_attempts, reset_permanent))
            ).mappings().first()
            if row is not None:
                outcome = EnqueueOutcome.CREATED if row["inserted"] else EnqueueOutcome.RESET
                return _job_from_mapping(row), outcome

            existing = (
                await session.execute(
                    select(*_JOB_COLUMNS).where(
                        SyncJobRow.style_id == style_id,
                        SyncJobRow.provider == Provider(provider).value,
                    )
                )
            ).mappings().one()
            return _job_from_mapping(existing), EnqueueOutcome.UNCHANGED

    async def claim_jobs(self, limit: int, provider: Provider | None, now: datetime) -> list[SyncJob]:
        if limit <= 0:
            return []
        async with self._session() as session:
            rows = (await session.execute(build_claim_statement(limit, provider, now))).mappings().all()
        jobs = [_job_from_mapping(r) for r in rows]
        # RETURNING order is unspecified
        jobs.sort(key=lambda j: (j.created_at or now, j.id))
        return jobs

    async def mark_job_processing(self, job_id: int, now: datetime) -> SyncJob | None:
        async with self._session() as session:
            row = (await session.execute(build_claim_statement(1, None, now, job_id=job_id))).mappings().first()
        return _job_from_mapping(row) if row else None

    async def mark_job_success(self, job_id: int, now: datetime, *, attempts: int) -> bool:
        async with self._session() as session:
            result = await session.execute(
                build_claimed_job_update(job_id, attempts).values(
                    status=JobStatus.COMPLETED.value,
                    completed_at=now,
                    last_error=None,
                    error_kind=None,
                    next_retry_at=None,
                )
            )
            return bool(result.rowcount)

    async def mark_job_failed(
        self,
        job_id: int,
        error: str,
        *,
        attempts: int,
        kind: ErrorKind,
        retry_at: datetime | None,
    ) -> SyncJob | None:
        status = JobStatus.FAILED if retry_at is None else JobStatus.PENDING
        async with self._session() as session:
            row = (
                await session.execute(
                    build_claimed_job_update(job_id, attempts)
                    .values(
                        status=status.value,
                        last_error=error,
                        error_kind=ErrorKind(kind).value,
                        next_retry_at=retry_at,
                    )
                    .returning(*_JOB_COLUMNS)
                )
            ).mappings().first()
        return _job_from_mapping(row) if row else None

    async def get_job(self, job_id: int) -> SyncJob | None:
        async with self._session() as session:
            row = (await session.execute(select(*_JOB_COLUMNS).where(SyncJobRow.id == job_id))).mappings().first()
        return _job_from_mapping(row) if row else None

    async def list_jobs_for_style(self, style_id: str) -> list[SyncJob]:
        async with self._session() as session:
            rows = (
                await session.execute(
                    select(*_JOB_COLUMNS).where(SyncJobRow.style_id == style_id).order_by(SyncJobRow.provider)
                )
            ).mappings().all()
        return [_job_from_mapping(r) for r in rows]

    async def reset_failed_jobs(
        self,
        *,
        since: datetime | None,
        until: datetime | None,
        provider: Provider | None = None,
        include_permanent: bool = False,
    ) -> int:
        attempted_at = func.coalesce(SyncJobRow.last_attempt_at, SyncJobRow.created_at)
        conditions = [SyncJobRow.status == JobStatus.FAILED.value]
        if since is not None:
            conditions.append(attempted_at >= since)
        if until is not None:
            conditions.append(attempted_at <= until)
        if provider is not None:
            conditions.append(SyncJobRow.provider == Provider(provider).value)
        if not include_permanent:
            conditions.append(SyncJobRow.error_kind.is_distinct_from(ErrorKind.PERMANENT.value))

        async with self._session() as session:
            result = await session.execute(
                update(SyncJobRow)
                .where(*conditions)
                .values(
                    status=JobStatus.PENDING.value,
                    attempts=0,
                    next_retry_at=None,
                    last_error=None,
                    error_kind=None,
                    completed_at=None,
                )
            )
            return result.rowcount or 0

    async def recover_stale_jobs(self, stale_before: datetime, error: str) -> int:
        async with self._session() as session:
            result = await session.execute(
                update(SyncJobRow)
                .where(
                    SyncJobRow.status == JobStatus.PROCESSING.value,
                    or_(SyncJobRow.last_attempt_at.is_(None), SyncJobRow.last_attempt_at < stale_before),
                )
                .values(
                    status=JobStatus.PENDING.value,
                    next_retry_at=None,
                    last_error=error,
                    error_kind=ErrorKind.TIMEOUT.value,
                )
            )
            return result.rowcount or 0

    async def queue_stats(self, provider: Provider | None = None) -> QueueStats:
        stmt = select(SyncJobRow.status, func.count()).group_by(SyncJobRow.status)
        if provider is not None:
            stmt = stmt.where(SyncJobRow.provider == Provider(provider).value)
        stats = QueueStats()
        async with self._session() as session:
            for status, count in (await session.execute(stmt)).all():
                if status in JobStatus._value2member_map_:
                    setattr(stats, status, count)
        return stats

    # --- sales ---

    async def insert_sale_transactions(self, sales: list[SaleRecord]) -> int:
        if not sales:
            return 0
        values = [
            {
                "marketplace_id": s.marketplace_id,
                "item_id": s.item_id,
                "sku": s.sku,
                "title": s.title,
                "size_value": s.size_value,
                "size_system": s.size_system.value if s.size_system else None,
                "size_key": s.size_key,
                "size_confidence": s.size_confidence,
                "price_minor": s.price_minor,
                "currency_code": s.currency,
                "condition_id": s.condition_id,
                "authenticity_guarantee": s.authenticity_guarantee,
                "is_outlier": s.is_outlier,
                "outlier_reason": s.outlier_reason,
                "exclusion_reason": s.exclusion_reason,
                "included_in_metrics": s.included_in_metrics,
                "sold_at": s.sold_at,
            }
            for s in sales
        ]
        stmt = (
            pg_insert(SaleTransaction)
            .values(values)
            .on_conflict_do_nothing(constraint="uq_sale_transactions_item")
            .returning(SaleTransaction.id)
        )
        async with self._session() as session:
            return len((await session.execute(stmt)).scalars().all())

    async def list_sale_transactions(self, *, sku: str | None = None, since: datetime | None = None) -> list[SaleRecord]:
        stmt = select(SaleTransaction).order_by(SaleTransaction.sold_at, SaleTransaction.item_id)
        if sku is not None:
            stmt = stmt.where(SaleTransaction.sku == sku)
        if since is not None:
            stmt = stmt.where(SaleTransaction.sold_at >= since)
        async with self._session() as session:
            return [_sale_from_row(r) for r in (await session.scalars(stmt)).all()]

    async def list_sale_skus(self, since: datetime) -> list[str]:
        stmt = select(SaleTransaction.sku).where(SaleTransaction.sold_at >= since).distinct().order_by(SaleTransaction.sku)
        async with self._session() as session:
            return list((await session.scalars(stmt)).all())

    async def update_sale_flags(self, updates: list[SaleFlagUpdate]) -> int:
        count = 0
        async with self._session() as session:
            for u in updates:
                result = await session.execute(
                    update(SaleTransaction)
                    .where(
                        SaleTransaction.marketplace_id == u.marketplace_id,
                        SaleTransaction.item_id == u.item_id,
                    )
                    .values(
                        is_outlier=u.is_outlier,
                        outlier_reason=u.outlier_reason,
                        included_in_metrics=u.included_in_metrics,
                    )
                )
                count += result.rowcount or 0
        return count

    async def upsert_sales_metric(self, metric: SalesMetricRecord) -> None:
        values = metric.as_dict()
        values["currency_code"] = values.pop("currency")
        if values.get("computed_at") is None:
            values.pop("computed_at", None)
        stmt = pg_insert(SalesMetric).values(**values)
        keys = ("sku", "size_key", "currency_code", "marketplace_id")
        set_ = {k: stmt.excluded[k] for k in values if k not in keys}
        set_["computed_at"] = stmt.excluded.computed_at if "computed_at" in values else func.now()
        async with self._session() as session:
            await session.execute(stmt.on_conflict_do_update(constraint="uq_sales_metrics_key", set_=set_))

    async def get_sales_metrics(self, sku: str) -> list[SalesMetricRecord]:
        stmt = (
            select(SalesMetric)
            .where(SalesMetric.sku == sku)
            .order_by(SalesMetric.size_key, SalesMetric.currency_code, SalesMetric.marketplace_id)
        )
        async with self._session() as session:
            return [_metric_from_row(r) for r in (await session.scalars(stmt)).all()]

    # --- retention ---

    async def rollup_daily(self, before: datetime) -> int:
        async with self._session() as session:
            return (await session.execute(build_daily_rollup(before))).rowcount or 0

    async def rollup_monthly(self, before: datetime) -> int:
        async with self._session() as session:
            return (await session.execute(build_monthly_rollup(before))).rowcount or 0

    async def prune_older_than(self, table: PrunableTable, horizon_days: int, now: datetime) -> int:
        cutoff = now - timedelta(days=horizon_days)
        if table == PrunableTable.SALE_TRANSACTIONS:
            stmt = delete(SaleTransaction).where(SaleTransaction.sold_at < cutoff)
        elif table == PrunableTable.MARKET_SNAPSHOTS:
            stmt = delete(MarketSnapshot).where(MarketSnapshot.snapshot_at < cutoff)
        elif table == PrunableTable.SALES_DAILY:
            stmt = delete(SalesDaily).where(SalesDaily.sale_date < cutoff.date())
        else:
            raise ValueError(f"Unsupported table: {table}")
        async with self._session() as session:
            return (await session.execute(stmt)).rowcount or 0
