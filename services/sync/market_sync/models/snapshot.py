"""Market snapshot models.

market_snapshots is append-only history (major currency units). market_latest
is a projection holding the newest snapshot per (variant, currency); it is
rebuilt by the store's latest-view refresh and never written by anything else.
"""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from market_sync.stores.postgres import Base


class MarketSnapshot(Base):
    __tablename__ = "market_snapshots"
    __table_args__ = (
        UniqueConstraint("variant_id", "currency_code", "snapshot_at", name="uq_market_snapshots_point"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    variant_id: Mapped[int] = mapped_column(ForeignKey("provider_variants.id", ondelete="CASCADE"), index=True)
    style_id: Mapped[str] = mapped_column(String(64), index=True)
    provider: Mapped[str] = mapped_column(String(16))
    region_id: Mapped[str] = mapped_column(String(16), default="")
    currency_code: Mapped[str] = mapped_column(String(3))

    lowest_ask: Mapped[float | None] = mapped_column()
    highest_bid: Mapped[float | None] = mapped_column()
    last_sale_price: Mapped[float | None] = mapped_column()
    sales_72h: Mapped[int | None] = mapped_column(Integer)
    sales_7d: Mapped[int | None] = mapped_column(Integer)
    sales_30d: Mapped[int | None] = mapped_column(Integer)
    volatility: Mapped[float | None] = mapped_column()
    liquidity: Mapped[float | None] = mapped_column()

    snapshot_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MarketLatest(Base):
    __tablename__ = "market_latest"
    __table_args__ = (UniqueConstraint("variant_id", "currency_code", name="uq_market_latest_key"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    variant_id: Mapped[int] = mapped_column(ForeignKey("provider_variants.id", ondelete="CASCADE"))
    style_id: Mapped[str] = mapped_column(String(64), index=True)
    provider: Mapped[str] = mapped_column(String(16))
    size_value: Mapped[str] = mapped_column(String(32))
    size_system: Mapped[str] = mapped_column(String(8))
    region_id: Mapped[str] = mapped_column(String(16), default="")
    consigned: Mapped[bool] = mapped_column(Boolean, default=False)
    currency_code: Mapped[str] = mapped_column(String(3))

    lowest_ask: Mapped[float | None] = mapped_column()
    highest_bid: Mapped[float | None] = mapped_column()
    last_sale_price: Mapped[float | None] = mapped_column()

    snapshot_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    refreshed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
