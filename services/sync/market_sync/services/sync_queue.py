"""Sync queue service.

Handles:
- Enqueue (idempotent per (style, provider)), per-style fan-out, best-effort enqueue
- Operator resets: retry failed jobs in a window, recover stuck processing jobs
- Queue stats and per-style sync status

Job state machine:
    pending -> processing -> completed
                          -> pending (retry at next_retry_at)
                          -> failed  (permanent, or attempts exhausted)
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from market_sync.services.normalization import normalize_style_id
from market_sync.services.types import JobStatus, Provider, QueueStats, StyleRecord, SyncJob, utcnow
from market_sync.settings import Settings
from market_sync.stores.base import EnqueueOutcome, MarketStore

logger = logging.getLogger("uvicorn.error")

ERROR_PREFIX_PERMANENT = "PERMANENT"
ERROR_PREFIX_TRANSIENT = "TRANSIENT"
ERROR_PREFIX_RATE_LIMITED = "RATE_LIMITED"
ERROR_PREFIX_TIMEOUT = "TIMEOUT"

# Overall per-style labels
STATUS_SYNCING = "syncing"
STATUS_READY = "ready"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_NOT_MAPPED = "not_mapped"


def truncate_error(message: str, max_length: int) -> str:
    if len(message) <= max_length:
        return message
    return message[: max(0, max_length - 3)] + "..."


def providers_for_style(style: StyleRecord, enabled: list[str]) -> list[Provider]:
    """Providers a style can be synced against: mapped ones, plus eBay (keyed by SKU)."""
    candidates: list[Provider] = []
    if style.stockx_product_id:
        candidates.append(Provider.STOCKX)
    if style.alias_catalog_id:
        candidates.append(Provider.ALIAS)
    candidates.append(Provider.EBAY)
    return [p for p in candidates if p.value in enabled]


async def enqueue(
    store: MarketStore,
    style_id: str,
    provider: Provider,
    *,
    settings: Settings,
    reset_permanent: bool = False,
) -> tuple[SyncJob, EnqueueOutcome]:
    job, outcome = await store.enqueue_job(
        normalize_style_id(style_id),
        Provider(provider),
        max_attempts=settings.job_max_attempts,
        reset_permanent=reset_permanent,
    )
    if outcome != EnqueueOutcome.UNCHANGED:
        logger.info(f"[queue] {outcome.value} job={job.id} style={job.style_id} provider={job.provider.value}")
    return job, outcome


async def enqueue_for_style(
    store: MarketStore,
    style: StyleRecord,
    *,
    settings: Settings,
    providers: list[Provider] | None = None,
    reset_permanent: bool = False,
) -> dict[Provider, EnqueueOutcome]:
    targets = providers if providers is not None else providers_for_style(style, settings.sync_providers)
    outcomes: dict[Provider, EnqueueOutcome] = {}
    for provider in targets:
        _, outcomes[provider] = await enqueue(
            store, style.style_id, provider, settings=settings, reset_permanent=reset_permanent
        )
    return outcomes


async def enqueue_best_effort(
    store: MarketStore,
    style_id: str,
    *,
    settings: Settings,
    providers: list[Provider] | None = None,
) -> dict[Provider, EnqueueOutcome] | None:
    """Fire-and-forget enqueue for a style.

    Never raises: a failure is logged and reported as None so the caller's own
    operation (e.g. adding an item) still succeeds.
    """
    try:
        style = await store.get_style(normalize_style_id(style_id))
        if style is None:
            logger.warning(f"[queue] best-effort enqueue skipped, unknown style={style_id}")
            return {}
        return await enqueue_for_style(
            store, style, settings=settings, providers=providers, reset_permanent=True
        )
    except Exception as e:
        logger.error(f"[queue] best-effort enqueue failed style={style_id}: {e}")
        return None


async def retry_failed_jobs(
    store: MarketStore,
    *,
    since: datetime | None = None,
    until: datetime | None = None,
    provider: Provider | None = None,
    include_permanent: bool = False,
) -> int:
    """failed -> pending with attempts=0 for jobs last attempted in [since, until].

    Permanent failures are only touched with `include_permanent`.
    """
    count = await store.reset_failed_jobs(
        since=since, until=until, provider=provider, include_permanent=include_permanent
    )
    logger.info(
        f"[queue] reset {count} failed jobs (since={since}, until={until}, "
        f"provider={provider.value if provider else 'all'}, include_permanent={include_permanent})"
    )
    return count


async def reset_stuck_jobs(store: MarketStore, *, settings: Settings, now: datetime | None = None) -> int:
    now = now or utcnow()
    stale_after = settings.job_stale_after_seconds
    count = await store.recover_stale_jobs(
        now - timedelta(seconds=stale_after),
        f"{ERROR_PREFIX_TIMEOUT}: job processing exceeded {stale_after} seconds",
    )
    if count:
        logger.warning(f"[queue] recovered {count} stuck processing jobs (older than {stale_after}s)")
    return count


async def queue_stats(store: MarketStore, provider: Provider | None = None) -> QueueStats:
    return await store.queue_stats(provider)


def overall_status(jobs: list[SyncJob]) -> str:
    if not jobs:
        return STATUS_NOT_MAPPED
    statuses = {j.status for j in jobs}
    if statuses & {JobStatus.PENDING, JobStatus.PROCESSING}:
        return STATUS_SYNCING
    if statuses == {JobStatus.COMPLETED}:
        return STATUS_READY
    if statuses == {JobStatus.FAILED}:
        return STATUS_FAILED
    return STATUS_PARTIAL


async def sync_status(store: MarketStore, style_id: str) -> dict[str, Any] | None:
    """Per-provider job state plus an overall label. None for an unknown style."""
    style = await store.get_style(normalize_style_id(style_id))
    if style is None:
        return None
    jobs = await store.list_jobs_for_style(style.style_id)
    return {
        "style_id": style.style_id,
        "status": overall_status(jobs),
        "last_synced_at": style.last_synced_at,
        "providers": [
            {
                "provider": j.provider.value,
                "status": j.status.value,
                "attempts": j.attempts,
                "max_attempts": j.max_attempts,
                "last_error": j.last_error,
                "error_kind": j.error_kind.value if j.error_kind else None,
                "next_retry_at": j.next_retry_at,
                "completed_at": j.completed_at,
            }
            for j in jobs
        ],
    }
