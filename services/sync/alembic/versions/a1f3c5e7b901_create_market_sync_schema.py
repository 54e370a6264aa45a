"""create_market_sync_schema

Revision ID: a1f3c5e7b901
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1f3c5e7b901"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*names: str) -> list[sa.Column]:
    return [
        sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)
        for name in names
    ]


def upgrade() -> None:
    op.create_table(
        "style_catalog",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("style_id", sa.String(length=64), nullable=False),
        sa.Column("brand", sa.String(length=100), nullable=True),
        sa.Column("name", sa.String(length=300), nullable=True),
        sa.Column("colorway", sa.String(length=200), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("release_date", sa.Date(), nullable=True),
        sa.Column("retail_price", sa.Float(), nullable=True),
        sa.Column("retail_currency", sa.String(length=3), nullable=True),
        sa.Column("stockx_product_id", sa.String(length=100), nullable=True),
        sa.Column("stockx_url_key", sa.String(length=200), nullable=True),
        sa.Column("alias_catalog_id", sa.String(length=100), nullable=True),
        sa.Column("tier", sa.String(length=10), server_default="warm", nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_style_catalog_style_id"), "style_catalog", ["style_id"], unique=True)
    op.create_index(op.f("ix_style_catalog_stockx_product_id"), "style_catalog", ["stockx_product_id"])
    op.create_index(op.f("ix_style_catalog_alias_catalog_id"), "style_catalog", ["alias_catalog_id"])
    op.create_index(op.f("ix_style_catalog_tier"), "style_catalog", ["tier"])
    op.create_index(op.f("ix_style_catalog_last_synced_at"), "style_catalog", ["last_synced_at"])

    op.create_table(
        "provider_variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("style_id", sa.String(length=64), nullable=False),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("size_value", sa.String(length=32), nullable=False),
        sa.Column("size_system", sa.String(length=8), nullable=False),
        sa.Column("region_id", sa.String(length=16), server_default="", nullable=False),
        sa.Column("consigned", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("external_variant_id", sa.String(length=100), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "style_id", "provider", "size_value", "region_id", "consigned", name="uq_provider_variants_key"
        ),
    )
    op.create_index(op.f("ix_provider_variants_style_id"), "provider_variants", ["style_id"])

    op.create_table(
        "market_snapshots",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("style_id", sa.String(length=64), nullable=False),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("region_id", sa.String(length=16), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("lowest_ask", sa.Float(), nullable=True),
        sa.Column("highest_bid", sa.Float(), nullable=True),
        sa.Column("last_sale_price", sa.Float(), nullable=True),
        sa.Column("sales_72h", sa.Integer(), nullable=True),
        sa.Column("sales_7d", sa.Integer(), nullable=True),
        sa.Column("sales_30d", sa.Integer(), nullable=True),
        sa.Column("volatility", sa.Float(), nullable=True),
        sa.Column("liquidity", sa.Float(), nullable=True),
        sa.Column("snapshot_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["variant_id"], ["provider_variants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("variant_id", "currency_code", "snapshot_at", name="uq_market_snapshots_point"),
    )
    op.create_index(op.f("ix_market_snapshots_variant_id"), "market_snapshots", ["variant_id"])
    op.create_index(op.f("ix_market_snapshots_style_id"), "market_snapshots", ["style_id"])
    op.create_index(op.f("ix_market_snapshots_snapshot_at"), "market_snapshots", ["snapshot_at"])

    op.create_table(
        "market_latest",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("style_id", sa.String(length=64), nullable=False),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("size_value", sa.String(length=32), nullable=False),
        sa.Column("size_system", sa.String(length=8), nullable=False),
        sa.Column("region_id", sa.String(length=16), nullable=False),
        sa.Column("consigned", sa.Boolean(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("lowest_ask", sa.Float(), nullable=True),
        sa.Column("highest_bid", sa.Float(), nullable=True),
        sa.Column("last_sale_price", sa.Float(), nullable=True),
        sa.Column("snapshot_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps("refreshed_at"),
        sa.ForeignKeyConstraint(["variant_id"], ["provider_variants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("variant_id", "currency_code", name="uq_market_latest_key"),
    )
    op.create_index(op.f("ix_market_latest_style_id"), "market_latest", ["style_id"])

    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("style_id", sa.String(length=64), nullable=False),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="pending", nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("max_attempts", sa.Integer(), server_default="3", nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("error_kind", sa.String(length=16), nullable=True),
        *_timestamps("created_at"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("style_id", "provider", name="uq_sync_jobs_style_provider"),
    )
    op.create_index(op.f("ix_sync_jobs_style_id"), "sync_jobs", ["style_id"])
    op.create_index("ix_sync_jobs_claim", "sync_jobs", ["status", "provider", "next_retry_at", "created_at"])

    op.create_table(
        "sale_transactions",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("marketplace_id", sa.String(length=16), nullable=False),
        sa.Column("item_id", sa.String(length=64), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("size_value", sa.String(length=16), nullable=True),
        sa.Column("size_system", sa.String(length=8), nullable=True),
        sa.Column("size_key", sa.String(length=32), nullable=True),
        sa.Column("size_confidence", sa.Float(), nullable=False),
        sa.Column("price_minor", sa.Integer(), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("condition_id", sa.Integer(), nullable=True),
        sa.Column("authenticity_guarantee", sa.Boolean(), nullable=False),
        sa.Column("is_outlier", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("outlier_reason", sa.String(length=32), nullable=True),
        sa.Column("exclusion_reason", sa.String(length=40), nullable=True),
        sa.Column("included_in_metrics", sa.Boolean(), nullable=False),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps("fetched_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("marketplace_id", "item_id", name="uq_sale_transactions_item"),
    )
    op.create_index(op.f("ix_sale_transactions_sku"), "sale_transactions", ["sku"])
    op.create_index(op.f("ix_sale_transactions_size_key"), "sale_transactions", ["size_key"])
    op.create_index(op.f("ix_sale_transactions_included_in_metrics"), "sale_transactions", ["included_in_metrics"])
    op.create_index(op.f("ix_sale_transactions_sold_at"), "sale_transactions", ["sold_at"])

    op.create_table(
        "sales_metrics",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("size_key", sa.String(length=32), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("marketplace_id", sa.String(length=16), nullable=False),
        sa.Column("median_72h", sa.Float(), nullable=True),
        sa.Column("median_7d", sa.Float(), nullable=True),
        sa.Column("median_30d", sa.Float(), nullable=True),
        sa.Column("median_90d", sa.Float(), nullable=True),
        sa.Column("sample_72h", sa.Integer(), nullable=False),
        sa.Column("sample_7d", sa.Integer(), nullable=False),
        sa.Column("sample_30d", sa.Integer(), nullable=False),
        sa.Column("sample_90d", sa.Integer(), nullable=False),
        sa.Column("min_90d", sa.Integer(), nullable=True),
        sa.Column("max_90d", sa.Integer(), nullable=True),
        sa.Column("volatility", sa.Float(), nullable=True),
        sa.Column("outlier_ratio", sa.Float(), nullable=False),
        sa.Column("liquidity_score", sa.Float(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("last_sale_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps("computed_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", "size_key", "currency_code", "marketplace_id", name="uq_sales_metrics_key"),
    )
    op.create_index(op.f("ix_sales_metrics_sku"), "sales_metrics", ["sku"])

    for table, period in (("sales_daily", "sale_date"), ("sales_monthly", "sale_month")):
        extra = [sa.Column("median_minor", sa.Float(), nullable=True)] if table == "sales_daily" else []
        op.create_table(
            table,
            sa.Column("id", sa.BigInteger(), nullable=False),
            sa.Column("sku", sa.String(length=64), nullable=False),
            sa.Column("size_key", sa.String(length=32), nullable=False),
            sa.Column("currency_code", sa.String(length=3), nullable=False),
            sa.Column("marketplace_id", sa.String(length=16), nullable=False),
            sa.Column(period, sa.Date(), nullable=False),
            sa.Column("sale_count", sa.Integer(), nullable=False),
            sa.Column("total_minor", sa.BigInteger(), nullable=False),
            sa.Column("avg_minor", sa.Float(), nullable=False),
            *extra,
            sa.Column("min_minor", sa.Integer(), nullable=False),
            sa.Column("max_minor", sa.Integer(), nullable=False),
            *_timestamps("updated_at"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "sku", "size_key", "currency_code", "marketplace_id", period, name=f"uq_{table}_key"
            ),
        )
        op.create_index(op.f(f"ix_{table}_sku"), table, ["sku"])
        op.create_index(op.f(f"ix_{table}_{period}"), table, [period])


def downgrade() -> None:
    for table in (
        "sales_monthly",
        "sales_daily",
        "sales_metrics",
        "sale_transactions",
        "sync_jobs",
        "market_latest",
        "market_snapshots",
        "provider_variants",
        "style_catalog",
    ):
        op.drop_table(table)
