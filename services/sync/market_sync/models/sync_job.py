"""Sync job queue model.

One row per (style_id, provider). The row cycles pending -> processing ->
completed | pending (retry) | failed and is reset to pending on re-enqueue.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from market_sync.stores.postgres import Base


class SyncJobRow(Base):
    __tablename__ = "sync_jobs"
    __table_args__ = (
        UniqueConstraint("style_id", "provider", name="uq_sync_jobs_style_provider"),
        Index("ix_sync_jobs_claim", "status", "provider", "next_retry_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    style_id: Mapped[str] = mapped_column(String(64), index=True)
    provider: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(16), default="pending", server_default="pending")

    attempts: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, server_default="3")
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[str | None] = mapped_column(Text)
    error_kind: Mapped[str | None] = mapped_column(String(16))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
