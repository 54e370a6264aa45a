"""End-to-end worker tests: queue -> adapter (mocked HTTP) -> store."""

from datetime import timedelta

import httpx
import pytest

from market_sync.services.backoff import BackoffPolicy
from market_sync.services.catalog import ensure_style
from market_sync.services.errors import PermanentJobError, RateLimitError, TransientServerError
from market_sync.services.http_client import ProviderHttpClient
from market_sync.services.providers.ebay import EbayProvider
from market_sync.services.providers.stockx import StockxProvider
from market_sync.services.sync_queue import enqueue, reset_stuck_jobs
from market_sync.services.sync_worker import SyncWorker, classify_failure
from market_sync.services.types import ErrorKind, JobStatus, Provider
from market_sync.stores.memory import MemoryMarketStore

PRODUCT = {
    "productId": "p1",
    "styleId": "DD1391-100",
    "brand": "Nike",
    "title": "Nike Dunk Low Retro White Black Panda",
    "urlKey": "nike-dunk-low-retro-white-black-2021",
    "productAttributes": {"colorway": "White/Black"},
}
SEARCH = {"products": [{"productId": "p1", "styleId": "DD1391-100", "title": "Nike Dunk Low Panda"}]}
VARIANTS = [{"variantId": "v9", "variantValue": "9"}]
MARKET = {"currencyCode": "GBP", "lowestAskAmount": "150.00", "highestBidAmount": "120.00"}


def stockx_adapter(market_responses, fake_sleep, *, max_retries=3) -> StockxProvider:
    """StockX adapter whose market-data endpoint replays `market_responses` in order.

    Each entry is (status, response kwargs); the last one repeats.
    """
    queue = list(market_responses)

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v2/catalog/search":
            return httpx.Response(200, json=SEARCH)
        if path == "/v2/catalog/products/p1":
            return httpx.Response(200, json=PRODUCT)
        if path == "/v2/catalog/products/p1/variants":
            return httpx.Response(200, json=VARIANTS)
        if path.endswith("/market-data"):
            status, kwargs = queue.pop(0) if len(queue) > 1 else queue[0]
            return httpx.Response(status, **kwargs)
        return httpx.Response(404)

    http = ProviderHttpClient(
        "stockx",
        "https://api.example.test",
        backoff=BackoffPolicy(base_seconds=1.0, max_seconds=16.0, max_attempts=max_retries),
        sleep=fake_sleep,
        transport=httpx.MockTransport(handler),
    )
    return StockxProvider(http)


def make_worker(store, providers, settings, fake_sleep, clock):
    return SyncWorker(store, providers, settings, sleep=fake_sleep, clock=lambda: clock[0])


@pytest.mark.asyncio
async def test_stockx_job_writes_snapshot_and_completes(store, settings, fake_sleep, now):
    await ensure_style(store, "DD1391-100")
    job, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    stockx = stockx_adapter([(200, {"json": MARKET})], fake_sleep)
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, [now])

    result = await worker.process_batch(10)

    assert result.as_dict() == {"processed": 1, "successful": 1, "failed": 0, "errors": []}
    [snap] = store.snapshots
    assert (snap.lowest_ask, snap.highest_bid, snap.currency) == (150.0, 120.0, "GBP")
    assert snap.snapshot_at == now
    assert (await store.get_job(job.id)).status == JobStatus.COMPLETED

    style = await store.get_style("DD1391-100")
    assert style.stockx_product_id == "p1"
    assert style.brand == "Nike"
    assert style.last_synced_at == now

    [latest] = await store.get_latest("DD1391-100")
    assert latest.size_value == "9"
    assert latest.lowest_ask == 150.0
    await stockx.close()


@pytest.mark.asyncio
async def test_rate_limit_is_retried_inside_the_job(store, settings, fake_sleep, now):
    await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    job, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    stockx = stockx_adapter(
        [(429, {"headers": {"Retry-After": "5"}}), (200, {"json": MARKET})],
        fake_sleep,
    )
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, [now])

    result = await worker.process_batch(10)

    assert result.successful == 1
    assert fake_sleep.calls == [5.0]
    assert len(store.snapshots) == 1
    done = await store.get_job(job.id)
    assert done.status == JobStatus.COMPLETED
    assert done.attempts == 1
    await stockx.close()


@pytest.mark.asyncio
async def test_validation_error_fails_job_immediately(store, settings, fake_sleep, now):
    settings = settings.model_copy(update={"job_error_max_length": 80})
    await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    job, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    stockx = stockx_adapter([(400, {"text": "unsupported currencyCode " + "x" * 200})], fake_sleep)
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, [now])

    result = await worker.process_batch(10)

    assert result.failed == 1
    failed = await store.get_job(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error_kind == ErrorKind.PERMANENT
    assert failed.attempts == 1 < failed.max_attempts
    assert failed.next_retry_at is None
    assert failed.last_error.startswith("PERMANENT: stockx HTTP 400: unsupported currencyCode")
    assert len(failed.last_error) == 80
    assert store.snapshots == []
    await stockx.close()


@pytest.mark.asyncio
async def test_transient_failures_back_off_then_fail(store, settings, fake_sleep, now):
    await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    job, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    stockx = stockx_adapter([(503, {})], fake_sleep, max_retries=0)
    clock = [now]
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, clock)

    await worker.process_batch(10)
    first = await store.get_job(job.id)
    assert first.status == JobStatus.PENDING
    assert first.error_kind == ErrorKind.TRANSIENT
    assert first.next_retry_at == now + timedelta(seconds=60)

    # Not yet due
    assert (await worker.process_batch(10)).processed == 0

    clock[0] = now + timedelta(seconds=61)
    await worker.process_batch(10)
    second = await store.get_job(job.id)
    assert second.attempts == 2
    assert second.next_retry_at == clock[0] + timedelta(seconds=120)

    clock[0] = second.next_retry_at + timedelta(seconds=1)
    await worker.process_batch(10)
    last = await store.get_job(job.id)
    assert last.status == JobStatus.FAILED
    assert last.attempts == 3
    assert last.last_error.startswith("TRANSIENT:")
    await stockx.close()


@pytest.mark.asyncio
async def test_one_failure_does_not_abort_the_batch(store, settings, fake_sleep, now):
    await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    await ensure_style(store, "CW2288-111")
    await enqueue(store, "CW2288-111", Provider.ALIAS, settings=settings)
    await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    stockx = stockx_adapter([(200, {"json": MARKET})], fake_sleep)
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, [now])

    result = await worker.process_batch(10)

    assert (result.processed, result.successful, result.failed) == (2, 1, 1)
    assert "PROVIDER_NOT_CONFIGURED" in result.errors[0]["error"]
    await stockx.close()


@pytest.mark.asyncio
async def test_ebay_job_ingests_sales_and_metrics(store, settings, fake_sleep, now):
    summaries = {
        "itemSummaries": [
            {
                "itemId": f"v1|{i}|0",
                "title": "Nike Dunk Low Panda",
                "price": {"value": str(150 + i), "currency": "GBP"},
                "conditionId": "1000",
                "itemEndDate": (now - timedelta(hours=i + 1)).isoformat(),
                "qualifiedPrograms": ["AUTHENTICITY_GUARANTEE"],
                "localizedAspects": [{"name": "UK Shoe Size", "value": "9"}],
            }
            for i in range(3)
        ]
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/buy/browse/v1/item_summary/search":
            return httpx.Response(200, json=summaries)
        return httpx.Response(404)

    ebay = EbayProvider(
        ProviderHttpClient("ebay", "https://api.example.test", sleep=fake_sleep, transport=httpx.MockTransport(handler)),
        fetch_item_details=False,
    )
    await ensure_style(store, "DD1391-100")
    job, _ = await enqueue(store, "DD1391-100", Provider.EBAY, settings=settings)
    worker = make_worker(store, {Provider.EBAY: ebay}, settings, fake_sleep, [now])

    result = await worker.process_batch(10)

    assert result.successful == 1
    sales = await store.list_sale_transactions(sku="DD1391-100")
    assert len(sales) == 3
    assert all(s.included_in_metrics for s in sales)
    [metric] = await store.get_sales_metrics("DD1391-100")
    assert metric.size_key == "UK 9"
    assert metric.sample_72h == 3
    assert metric.median_72h == 15100
    await ebay.close()


@pytest.mark.asyncio
async def test_drain_recovers_stuck_jobs_first(store, settings, fake_sleep, now):
    await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    job, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    await store.mark_job_processing(job.id, now - timedelta(hours=2))
    stockx = stockx_adapter([(200, {"json": MARKET})], fake_sleep)
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, [now])

    total = await worker.drain(max_empty_polls=2)

    assert total.successful == 1
    assert (await store.get_job(job.id)).status == JobStatus.COMPLETED
    await stockx.close()


@pytest.mark.asyncio
async def test_process_job_id_only_claims_pending(store, settings, fake_sleep, now):
    await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    job, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    stockx = stockx_adapter([(200, {"json": MARKET})], fake_sleep)
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, [now])

    assert (await worker.process_job_id(job.id)).ok is True
    assert await worker.process_job_id(job.id) is None
    await stockx.close()


def test_classify_failure_kinds():
    assert classify_failure(PermanentJobError("MISSING_MAPPING", "x"))[0] == ErrorKind.PERMANENT
    assert classify_failure(RateLimitError("slow down"))[0] == ErrorKind.RATE_LIMITED
    assert classify_failure(TransientServerError("503"))[0] == ErrorKind.TRANSIENT
    assert classify_failure(TimeoutError())[0] == ErrorKind.TIMEOUT
    kind, message = classify_failure(KeyError("boom"))
    assert kind == ErrorKind.TRANSIENT
    assert message.startswith("TRANSIENT: KeyError")


class SuccessWriteFails(MemoryMarketStore):
    """Memory store whose first mark_job_success raises, like a dropped connection."""

    def __init__(self) -> None:
        super().__init__()
        self.success_failures = 1

    async def mark_job_success(self, job_id, now, *, attempts):
        if self.success_failures:
            self.success_failures -= 1
            raise RuntimeError("db connection dropped")
        return await super().mark_job_success(job_id, now, attempts=attempts)


@pytest.mark.asyncio
async def test_store_error_on_success_does_not_abort_batch(settings, fake_sleep, now):
    store = SuccessWriteFails()
    await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    await ensure_style(store, "CW2288-111", {"stockx_product_id": "p1"})
    first, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    second, _ = await enqueue(store, "CW2288-111", Provider.STOCKX, settings=settings)
    stockx = stockx_adapter([(200, {"json": MARKET})], fake_sleep)
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, [now])

    result = await worker.process_batch(10)

    assert (result.processed, result.successful, result.failed) == (2, 1, 1)
    assert result.errors[0]["job_id"] == first.id
    assert result.errors[0]["status"] == "processing"
    assert "db connection dropped" in result.errors[0]["error"]
    assert (await store.get_job(first.id)).status == JobStatus.PROCESSING
    assert (await store.get_job(second.id)).status == JobStatus.COMPLETED

    # the unrecorded job comes back through stale recovery
    later = now + timedelta(seconds=settings.job_stale_after_seconds + 1)
    assert await reset_stuck_jobs(store, settings=settings, now=later) == 1
    await stockx.close()


class LatestRefreshFails(MemoryMarketStore):
    async def refresh_latest_view(self) -> int:
        raise RuntimeError("refresh timed out")


@pytest.mark.asyncio
async def test_process_job_id_survives_latest_refresh_error(settings, fake_sleep, now):
    store = LatestRefreshFails()
    await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    job, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    stockx = stockx_adapter([(200, {"json": MARKET})], fake_sleep)
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, [now])

    result = await worker.process_job_id(job.id)

    assert result.ok is True
    assert (await store.get_job(job.id)).status == JobStatus.COMPLETED
    await stockx.close()


@pytest.mark.asyncio
async def test_worker_with_recovered_claim_does_not_overwrite_new_claim(store, settings, fake_sleep, now):
    await ensure_style(store, "DD1391-100", {"stockx_product_id": "p1"})
    job, _ = await enqueue(store, "DD1391-100", Provider.STOCKX, settings=settings)
    [slow_claim] = await store.claim_jobs(1, None, now)

    # slow_claim outlives the stale threshold and another worker takes the job
    later = now + timedelta(seconds=settings.job_stale_after_seconds + 1)
    await reset_stuck_jobs(store, settings=settings, now=later)
    [current_claim] = await store.claim_jobs(1, None, later)

    stockx = stockx_adapter([(400, {"text": "unsupported currencyCode"})], fake_sleep)
    worker = make_worker(store, {Provider.STOCKX: stockx}, settings, fake_sleep, [later])

    result = await worker.run_job(slow_claim)

    assert result.ok is False
    held = await store.get_job(job.id)
    assert held.status == JobStatus.PROCESSING
    assert held.attempts == current_claim.attempts == 2
    assert held.error_kind == ErrorKind.TIMEOUT
    await stockx.close()
