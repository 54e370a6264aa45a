"""Sync worker: claims queued jobs and runs them.

Run modes:
- one batch (cron / HTTP drain endpoint)
- drain: batches until the queue stays empty for N consecutive polls
- continuous: forever, idling when the queue is empty

One job's failure never aborts a batch. Every exception is classified into a
job state transition:
- permanent (PermanentJobError, ValidationError, NotFoundError) -> failed now
- rate limited / timeout / transient / unexpected -> pending with backoff, or
  failed once attempts are exhausted
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from market_sync.services.backoff import BackoffPolicy, job_backoff
from market_sync.services.errors import (
    AuthError,
    NotFoundError,
    PermanentJobError,
    RateLimitError,
    TransientServerError,
    ValidationError,
)
from market_sync.services.provider_sync import sync_style_provider
from market_sync.services.providers.base import MarketDataProvider
from market_sync.services.sync_queue import (
    ERROR_PREFIX_PERMANENT,
    ERROR_PREFIX_RATE_LIMITED,
    ERROR_PREFIX_TIMEOUT,
    ERROR_PREFIX_TRANSIENT,
    reset_stuck_jobs,
    truncate_error,
)
from market_sync.services.types import ErrorKind, Provider, SyncJob, utcnow
from market_sync.settings import Settings
from market_sync.stores.base import MarketStore

logger = logging.getLogger("uvicorn.error")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class JobResult:
    job_id: int
    style_id: str
    provider: Provider
    ok: bool
    status: str
    error: str | None = None
    error_kind: ErrorKind | None = None


@dataclass
class BatchResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def add(self, result: JobResult) -> None:
        self.processed += 1
        if result.ok:
            self.successful += 1
            return
        self.failed += 1
        self.errors.append(
            {
                "job_id": result.job_id,
                "style_id": result.style_id,
                "provider": result.provider.value,
                "status": result.status,
                "error": result.error,
            }
        )

    def merge(self, other: "BatchResult") -> None:
        self.processed += other.processed
        self.successful += other.successful
        self.failed += other.failed
        self.errors.extend(other.errors)

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "errors": self.errors,
        }


def classify_failure(exc: BaseException) -> tuple[ErrorKind, str]:
    """Error kind + persisted message (kind prefix included) for a job exception."""
    if isinstance(exc, (PermanentJobError, ValidationError, NotFoundError)):
        return ErrorKind.PERMANENT, f"{ERROR_PREFIX_PERMANENT}: {exc}"
    if isinstance(exc, RateLimitError):
        return ErrorKind.RATE_LIMITED, f"{ERROR_PREFIX_RATE_LIMITED}: {exc}"
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TIMEOUT, f"{ERROR_PREFIX_TIMEOUT}: {exc or type(exc).__name__}"
    if isinstance(exc, (TransientServerError, AuthError)):
        return ErrorKind.TRANSIENT, f"{ERROR_PREFIX_TRANSIENT}: {exc}"
    return ErrorKind.TRANSIENT, f"{ERROR_PREFIX_TRANSIENT}: {type(exc).__name__}: {exc}"


class SyncWorker:
    def __init__(
        self,
        store: MarketStore,
        providers: dict[Provider, MarketDataProvider],
        settings: Settings,
        *,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.providers = providers
        self.settings = settings
        self.backoff: BackoffPolicy = job_backoff(settings)
        self._sleep = sleep
        self._clock = clock
        self._stopping = False

    def stop(self) -> None:
        self._stopping = True

    # ============================================================
    # Single job
    # ============================================================

    async def run_job(self, job: SyncJob) -> JobResult:
        """Run one already-claimed job and record its outcome. Never raises."""
        logger.info(
            f"[worker] job={job.id} {job.style_id}/{job.provider.value} attempt {job.attempts}/{job.max_attempts}"
        )
        try:
            await sync_style_provider(
                self.store,
                self.providers,
                job.style_id,
                job.provider,
                settings=self.settings,
                now=self._clock(),
            )
        except Exception as e:
            return await self._record_failure(job, e)

        try:
            held = await self.store.mark_job_success(job.id, self._clock(), attempts=job.attempts)
        except Exception as store_exc:
            # Left in processing; stale recovery picks it up.
            logger.exception(f"[worker] job={job.id} could not record success: {store_exc}")
            message = truncate_error(
                f"{ERROR_PREFIX_TRANSIENT}: could not record success: {type(store_exc).__name__}: {store_exc}",
                self.settings.job_error_max_length,
            )
            return JobResult(
                job.id,
                job.style_id,
                job.provider,
                ok=False,
                status="processing",
                error=message,
                error_kind=ErrorKind.TRANSIENT,
            )

        if not held:
            logger.warning(f"[worker] job={job.id} attempt {job.attempts} lost its claim, success not recorded")
        else:
            logger.info(f"[worker] job={job.id} completed")
        return JobResult(job.id, job.style_id, job.provider, ok=True, status="completed")

    async def _record_failure(self, job: SyncJob, exc: Exception) -> JobResult:
        kind, message = classify_failure(exc)
        message = truncate_error(message, self.settings.job_error_max_length)

        if kind == ErrorKind.PERMANENT:
            retry_at = None
        else:
            retry_at = self.backoff.next_retry_at(job.attempts, self._clock(), max_attempts=job.max_attempts)

        try:
            updated = await self.store.mark_job_failed(
                job.id, message, attempts=job.attempts, kind=kind, retry_at=retry_at
            )
            if updated is None:
                logger.warning(f"[worker] job={job.id} attempt {job.attempts} lost its claim, failure not recorded")
        except Exception as store_exc:
            # Left in processing; stale recovery picks it up.
            logger.exception(f"[worker] job={job.id} could not record failure: {store_exc}")

        status = "failed" if retry_at is None else "pending"
        if retry_at is None:
            logger.error(f"[worker] job={job.id} failed ({kind.value}): {message}", exc_info=exc)
        else:
            logger.warning(f"[worker] job={job.id} retry at {retry_at.isoformat()} ({kind.value}): {message}")
        return JobResult(job.id, job.style_id, job.provider, ok=False, status=status, error=message, error_kind=kind)

    async def process_job_id(self, job_id: int) -> JobResult | None:
        """Claim and run one specific pending job. None if it could not be claimed."""
        job = await self.store.mark_job_processing(job_id, self._clock())
        if job is None:
            return None
        result = await self.run_job(job)
        if result.ok:
            await self._refresh_latest()
        return result

    async def _refresh_latest(self) -> None:
        try:
            refreshed = await self.store.refresh_latest_view()
            logger.info(f"[worker] latest view refreshed ({refreshed} rows)")
        except Exception as e:
            logger.exception(f"[worker] latest view refresh failed: {e}")

    # ============================================================
    # Batches
    # ============================================================

    async def process_batch(self, limit: int | None = None, provider: Provider | None = None) -> BatchResult:
        """Claim up to `limit` jobs and run them one after another."""
        limit = limit or self.settings.worker_batch_size
        jobs = await self.store.claim_jobs(limit, provider, self._clock())
        result = BatchResult()
        if not jobs:
            return result

        logger.info(f"[worker] claimed {len(jobs)} jobs (provider={provider.value if provider else 'all'})")
        for index, job in enumerate(jobs):
            if index and self.settings.worker_job_delay_seconds > 0:
                await self._sleep(self.settings.worker_job_delay_seconds)
            result.add(await self.run_job(job))

        if result.successful:
            await self._refresh_latest()

        logger.info(
            f"[worker] batch done: processed={result.processed} ok={result.successful} failed={result.failed}"
        )
        return result

    async def drain(
        self,
        *,
        batch_size: int | None = None,
        provider: Provider | None = None,
        max_empty_polls: int | None = None,
    ) -> BatchResult:
        """Process batches until `max_empty_polls` consecutive claims come back empty."""
        max_empty_polls = max_empty_polls or self.settings.worker_drain_empty_polls
        total = BatchResult()
        empty_polls = 0
        await reset_stuck_jobs(self.store, settings=self.settings, now=self._clock())

        while not self._stopping:
            batch = await self.process_batch(batch_size, provider)
            total.merge(batch)
            if batch.processed:
                empty_polls = 0
                continue
            empty_polls += 1
            if empty_polls >= max_empty_polls:
                break
            await self._sleep(self.settings.worker_drain_poll_seconds)

        logger.info(f"[worker] drain finished: {total.as_dict()}")
        return total

    async def run_forever(self, *, batch_size: int | None = None, provider: Provider | None = None) -> None:
        """Continuous mode. Returns only after stop()."""
        logger.info("[worker] continuous mode started")
        while not self._stopping:
            await reset_stuck_jobs(self.store, settings=self.settings, now=self._clock())
            batch = await self.process_batch(batch_size, provider)
            if not batch.processed:
                await self._sleep(self.settings.worker_idle_sleep_seconds)
        logger.info("[worker] continuous mode stopped")
