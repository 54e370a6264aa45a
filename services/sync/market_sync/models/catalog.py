"""Style catalog and provider variant models.

A style is one product identified by its style code (e.g. DD1391-100). The sync
path only ever fills columns that are NULL; anything a user typed wins.
"""

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from market_sync.stores.postgres import Base


class StyleCatalog(Base):
    """One product (brand + model + colorway)."""

    __tablename__ = "style_catalog"

    id: Mapped[int] = mapped_column(primary_key=True)
    style_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    brand: Mapped[str | None] = mapped_column(String(100))
    name: Mapped[str | None] = mapped_column(String(300))
    colorway: Mapped[str | None] = mapped_column(String(200))
    category: Mapped[str | None] = mapped_column(String(100))
    image_url: Mapped[str | None] = mapped_column(Text)
    release_date: Mapped[date | None] = mapped_column(Date)
    retail_price: Mapped[float | None] = mapped_column()
    retail_currency: Mapped[str | None] = mapped_column(String(3))

    # Provider mappings (NULL until first resolved)
    stockx_product_id: Mapped[str | None] = mapped_column(String(100), index=True)
    stockx_url_key: Mapped[str | None] = mapped_column(String(200))
    alias_catalog_id: Mapped[str | None] = mapped_column(String(100), index=True)

    # Scheduling
    tier: Mapped[str] = mapped_column(String(10), default="warm", server_default="warm", index=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<StyleCatalog {self.style_id} tier={self.tier}>"


class ProviderVariant(Base):
    """One size/region/consignment combination of a style on one provider.

    region_id is '' (not NULL) for providers without regions so the unique
    constraint holds.
    """

    __tablename__ = "provider_variants"
    __table_args__ = (
        UniqueConstraint(
            "style_id",
            "provider",
            "size_value",
            "region_id",
            "consigned",
            name="uq_provider_variants_key",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    style_id: Mapped[str] = mapped_column(String(64), index=True)
    provider: Mapped[str] = mapped_column(String(16))
    size_value: Mapped[str] = mapped_column(String(32))
    size_system: Mapped[str] = mapped_column(String(8), default="US")
    region_id: Mapped[str] = mapped_column(String(16), default="", server_default="")
    consigned: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    external_variant_id: Mapped[str | None] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
