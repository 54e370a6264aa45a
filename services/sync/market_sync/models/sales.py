"""Sold-transaction models (eBay) and their derived aggregates.

sale_transactions.price_minor is in integer minor units (pence/cents).
included_in_metrics is the stored result of the inclusion predicate and is the
only flag aggregation reads.
"""

from datetime import date, datetime

from sqlalchemy import BigInteger, Boolean, Date, DateTime, Float, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from market_sync.stores.postgres import Base


class SaleTransaction(Base):
    __tablename__ = "sale_transactions"
    __table_args__ = (UniqueConstraint("marketplace_id", "item_id", name="uq_sale_transactions_item"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    marketplace_id: Mapped[str] = mapped_column(String(16))
    item_id: Mapped[str] = mapped_column(String(64))
    sku: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(Text, default="")

    size_value: Mapped[str | None] = mapped_column(String(16))
    size_system: Mapped[str | None] = mapped_column(String(8))
    size_key: Mapped[str | None] = mapped_column(String(32), index=True)
    size_confidence: Mapped[float] = mapped_column(Float, default=0.0)

    price_minor: Mapped[int] = mapped_column(Integer)
    currency_code: Mapped[str] = mapped_column(String(3))
    condition_id: Mapped[int | None] = mapped_column(Integer)
    authenticity_guarantee: Mapped[bool] = mapped_column(Boolean, default=False)

    is_outlier: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    outlier_reason: Mapped[str | None] = mapped_column(String(32))
    exclusion_reason: Mapped[str | None] = mapped_column(String(40))
    included_in_metrics: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    sold_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SalesMetric(Base):
    __tablename__ = "sales_metrics"
    __table_args__ = (
        UniqueConstraint("sku", "size_key", "currency_code", "marketplace_id", name="uq_sales_metrics_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), index=True)
    size_key: Mapped[str] = mapped_column(String(32))
    currency_code: Mapped[str] = mapped_column(String(3))
    marketplace_id: Mapped[str] = mapped_column(String(16))

    median_72h: Mapped[float | None] = mapped_column(Float)
    median_7d: Mapped[float | None] = mapped_column(Float)
    median_30d: Mapped[float | None] = mapped_column(Float)
    median_90d: Mapped[float | None] = mapped_column(Float)
    sample_72h: Mapped[int] = mapped_column(Integer, default=0)
    sample_7d: Mapped[int] = mapped_column(Integer, default=0)
    sample_30d: Mapped[int] = mapped_column(Integer, default=0)
    sample_90d: Mapped[int] = mapped_column(Integer, default=0)
    min_90d: Mapped[int | None] = mapped_column(Integer)
    max_90d: Mapped[int | None] = mapped_column(Integer)
    volatility: Mapped[float | None] = mapped_column(Float)
    outlier_ratio: Mapped[float] = mapped_column(Float, default=0.0)
    liquidity_score: Mapped[float] = mapped_column(Float, default=0.0)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0)
    last_sale_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SalesDaily(Base):
    __tablename__ = "sales_daily"
    __table_args__ = (
        UniqueConstraint(
            "sku", "size_key", "currency_code", "marketplace_id", "sale_date", name="uq_sales_daily_key"
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), index=True)
    size_key: Mapped[str] = mapped_column(String(32))
    currency_code: Mapped[str] = mapped_column(String(3))
    marketplace_id: Mapped[str] = mapped_column(String(16))
    sale_date: Mapped[date] = mapped_column(Date, index=True)

    sale_count: Mapped[int] = mapped_column(Integer)
    total_minor: Mapped[int] = mapped_column(BigInteger)
    avg_minor: Mapped[float] = mapped_column(Float)
    median_minor: Mapped[float | None] = mapped_column(Float)
    min_minor: Mapped[int] = mapped_column(Integer)
    max_minor: Mapped[int] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SalesMonthly(Base):
    __tablename__ = "sales_monthly"
    __table_args__ = (
        UniqueConstraint(
            "sku", "size_key", "currency_code", "marketplace_id", "sale_month", name="uq_sales_monthly_key"
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), index=True)
    size_key: Mapped[str] = mapped_column(String(32))
    currency_code: Mapped[str] = mapped_column(String(3))
    marketplace_id: Mapped[str] = mapped_column(String(16))
    sale_month: Mapped[date] = mapped_column(Date, index=True)  # first day of month

    sale_count: Mapped[int] = mapped_column(Integer)
    total_minor: Mapped[int] = mapped_column(BigInteger)
    avg_minor: Mapped[float] = mapped_column(Float)
    min_minor: Mapped[int] = mapped_column(Integer)
    max_minor: Mapped[int] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
