"""Tests for the durable sync job queue."""

import asyncio
from datetime import timedelta

import pytest

from market_sync.services.backoff import BackoffPolicy
from market_sync.services.catalog import ensure_style
from market_sync.services.sync_queue import (
    STATUS_FAILED,
    STATUS_NOT_MAPPED,
    STATUS_PARTIAL,
    STATUS_READY,
    STATUS_SYNCING,
    enqueue,
    enqueue_best_effort,
    enqueue_for_style,
    overall_status,
    providers_for_style,
    reset_stuck_jobs,
    retry_failed_jobs,
    sync_status,
    truncate_error,
)
from market_sync.services.types import ErrorKind, JobStatus, Provider, StyleRecord, SyncJob
from market_sync.stores.base import EnqueueOutcome


@pytest.mark.asyncio
async def test_enqueue_is_idempotent_while_pending(store, settings):
    job1, outcome1 = await enqueue(store, "dd1391-100", Provider.STOCKX, settings=settings)
    job2, outcome2 = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)

    assert outcome1 == EnqueueOutcome.CREATED
    assert outcome2 == EnqueueOutcome.UNCHANGED
    assert job1.id == job2.id
    assert (await store.queue_stats()).pending == 1


@pytest.mark.asyncio
async def test_enqueue_resets_completed_job(store, settings, now):
    job, _ = await enqueue(store, "DD1391-100", Provider.EBAY, settings=settings)
    [claimed] = await store.claim_jobs(1, None, now)
    await store.mark_job_success(claimed.id, now, attempts=claimed.attempts)

    again, outcome = await enqueue(store, "DD1391-100", Provider.EBAY, settings=settings)

    assert outcome == EnqueueOutcome.RESET
    assert again.id == job.id
    assert again.status == JobStatus.PENDING
    assert again.attempts == 0


@pytest.mark.asyncio
async def test_enqueue_leaves_permanent_failure_unless_asked(store, settings, now):
    job, _ = await enqueue(store, "DD1391-100", Provider.ALIAS, settings=settings)
    await store.claim_jobs(1, None, now)
    await store.mark_job_failed(job.id, "PERMANENT: no mapping", attempts=1, kind=ErrorKind.PERMANENT, retry_at=None)

    _, outcome = await enqueue(store, "DD1391-100", Provider.ALIAS, settings=settings)
    assert outcome == EnqueueOutcome.UNCHANGED

    _, outcome = await enqueue(store, "DD1391-100", Provider.ALIAS, settings=settings, reset_permanent=True)
    assert outcome == EnqueueOutcome.RESET


@pytest.mark.asyncio
async def test_concurrent_claims_never_share_a_job(store, settings, now):
    for i in range(10):
        await enqueue(store, f"STYLE-{i}", Provider.STOCKX, settings=settings)

    batches = await asyncio.gather(*(store.claim_jobs(3, None, now) for _ in range(5)))

    claimed = [job.id for batch in batches for job in batch]
    assert len(claimed) == 10
    assert len(set(claimed)) == 10
    assert all(job.attempts == 1 for batch in batches for job in batch)


@pytest.mark.asyncio
async def test_claim_respects_provider_filter_and_retry_time(store, settings, now):
    stockx, _ = await enqueue(store, "A-1", Provider.STOCKX, settings=settings)
    await enqueue(store, "A-1", Provider.EBAY, settings=settings)

    [job] = await store.claim_jobs(5, Provider.STOCKX, now)
    assert job.id == stockx.id

    await store.mark_job_failed(
        job.id, "TRANSIENT: 503", attempts=job.attempts, kind=ErrorKind.TRANSIENT, retry_at=now + timedelta(minutes=1)
    )
    assert await store.claim_jobs(5, Provider.STOCKX, now) == []
    [retried] = await store.claim_jobs(5, Provider.STOCKX, now + timedelta(minutes=2))
    assert retried.attempts == 2


def test_job_backoff_is_monotonic_and_capped(now):
    policy = BackoffPolicy(base_seconds=60, max_seconds=600, max_attempts=10)
    delays = [(policy.next_retry_at(n, now) - now).total_seconds() for n in range(1, 8)]
    assert delays == sorted(delays)
    assert delays[0] == 60
    assert max(delays) == 600
    assert policy.next_retry_at(10, now) is None


@pytest.mark.asyncio
async def test_retry_failed_only_resets_transient_jobs(store, settings, now):
    ids = []
    for i in range(4):
        job, _ = await enqueue(store, f"STYLE-{i}", Provider.STOCKX, settings=settings)
        ids.append(job.id)
    await store.claim_jobs(4, None, now)
    for job_id in ids[:3]:
        await store.mark_job_failed(job_id, "TRANSIENT: 503", attempts=1, kind=ErrorKind.TRANSIENT, retry_at=None)
    await store.mark_job_failed(ids[3], "PERMANENT: no mapping", attempts=1, kind=ErrorKind.PERMANENT, retry_at=None)

    count = await retry_failed_jobs(store, since=now - timedelta(hours=24), until=now + timedelta(minutes=1))

    assert count == 3
    for job_id in ids[:3]:
        job = await store.get_job(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
    permanent = await store.get_job(ids[3])
    assert permanent.status == JobStatus.FAILED

    assert await retry_failed_jobs(store, since=now - timedelta(hours=24), until=None, include_permanent=True) == 1
    assert (await store.get_job(ids[3])).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_retry_failed_ignores_jobs_outside_window(store, settings, now):
    job, _ = await enqueue(store, "OLD-1", Provider.STOCKX, settings=settings)
    await store.claim_jobs(1, None, now - timedelta(days=3))
    await store.mark_job_failed(job.id, "TRANSIENT: 503", attempts=1, kind=ErrorKind.TRANSIENT, retry_at=None)

    assert await retry_failed_jobs(store, since=now - timedelta(hours=24)) == 0


@pytest.mark.asyncio
async def test_reset_stuck_jobs_recovers_old_processing(store, settings, now):
    fresh, _ = await enqueue(store, "FRESH-1", Provider.STOCKX, settings=settings)
    stuck, _ = await enqueue(store, "STUCK-1", Provider.STOCKX, settings=settings)
    await store.mark_job_processing(stuck.id, now - timedelta(hours=1))
    await store.mark_job_processing(fresh.id, now)

    assert await reset_stuck_jobs(store, settings=settings, now=now) == 1

    recovered = await store.get_job(stuck.id)
    assert recovered.status == JobStatus.PENDING
    assert recovered.error_kind == ErrorKind.TIMEOUT
    assert recovered.last_error.startswith("TIMEOUT:")
    assert (await store.get_job(fresh.id)).status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_late_write_from_recovered_claim_is_ignored(store, settings, now):
    job, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    [first] = await store.claim_jobs(1, None, now)

    later = now + timedelta(seconds=settings.job_stale_after_seconds + 1)
    assert await reset_stuck_jobs(store, settings=settings, now=later) == 1
    [second] = await store.claim_jobs(1, None, later)
    assert second.attempts == first.attempts + 1

    stale_failure = await store.mark_job_failed(
        job.id, "PERMANENT: late", attempts=first.attempts, kind=ErrorKind.PERMANENT, retry_at=None
    )
    assert stale_failure is None
    assert await store.mark_job_success(job.id, later, attempts=first.attempts) is False

    held = await store.get_job(job.id)
    assert held.status == JobStatus.PROCESSING
    assert held.attempts == 2

    assert await store.mark_job_success(job.id, later, attempts=second.attempts) is True
    assert (await store.get_job(job.id)).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_transitions_require_processing_status(store, settings, now):
    job, _ = await enqueue(store, "DD1391-100", Provider.EBAY, settings=settings)
    assert await store.mark_job_success(job.id, now, attempts=0) is False
    assert (await store.get_job(job.id)).status == JobStatus.PENDING


def test_providers_for_style_follows_mappings():
    style = StyleRecord(style_id="DD1391-100", alias_catalog_id="cat-1")
    assert providers_for_style(style, ["stockx", "alias", "ebay"]) == [Provider.ALIAS, Provider.EBAY]
    assert providers_for_style(style, ["stockx"]) == []


@pytest.mark.asyncio
async def test_enqueue_for_style_fans_out(store, settings):
    style = await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    outcomes = await enqueue_for_style(store, style, settings=settings)
    assert outcomes == {Provider.STOCKX: EnqueueOutcome.CREATED, Provider.EBAY: EnqueueOutcome.CREATED}


@pytest.mark.asyncio
async def test_enqueue_best_effort_never_raises(store, settings, monkeypatch):
    assert await enqueue_best_effort(store, "UNKNOWN-1", settings=settings) == {}

    await ensure_style(store, "DD1391-100")

    async def broken(*args, **kwargs):
        raise ConnectionError("db down")

    monkeypatch.setattr(store, "enqueue_job", broken)
    assert await enqueue_best_effort(store, "DD1391-100", settings=settings) is None


@pytest.mark.asyncio
async def test_sync_status_reports_per_provider(store, settings, now):
    await ensure_style(store, "DD1391-100")
    assert (await sync_status(store, "dd1391-100"))["status"] == STATUS_NOT_MAPPED
    assert await sync_status(store, "NOPE-1") is None

    job, _ = await enqueue(store, "DD1391-100", Provider.EBAY, settings=settings)
    status = await sync_status(store, "DD1391-100")
    assert status["status"] == STATUS_SYNCING
    assert status["providers"][0]["provider"] == "ebay"


def test_overall_status_labels():
    def job(status):
        return SyncJob(id=1, style_id="S", provider=Provider.EBAY, status=status)

    assert overall_status([job(JobStatus.COMPLETED), job(JobStatus.COMPLETED)]) == STATUS_READY
    assert overall_status([job(JobStatus.FAILED)]) == STATUS_FAILED
    assert overall_status([job(JobStatus.COMPLETED), job(JobStatus.FAILED)]) == STATUS_PARTIAL
    assert overall_status([job(JobStatus.PROCESSING), job(JobStatus.FAILED)]) == STATUS_SYNCING


def test_truncate_error():
    assert truncate_error("short", 100) == "short"
    long = "x" * 200
    assert len(truncate_error(long, 100)) == 100
    assert truncate_error(long, 100).endswith("...")
