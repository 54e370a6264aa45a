from datetime import datetime, timezone

import pytest

from market_sync.settings import Settings
from market_sync.stores.memory import MemoryMarketStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeSleep:
    """Records requested sleeps instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        store_backend="memory",
        worker_job_delay_seconds=0,
        worker_drain_poll_seconds=0,
        job_max_attempts=3,
        job_backoff_base_seconds=60,
        job_backoff_max_seconds=3600,
        snapshot_currencies=["GBP"],
        sync_providers=["stockx", "alias", "ebay"],
        cron_secret="",
        openexchangerates_key="",
        stockx_api_key="",
        stockx_client_id="",
        stockx_client_secret="",
        alias_pat="",
        ebay_client_id="",
        ebay_client_secret="",
    )


@pytest.fixture
def store() -> MemoryMarketStore:
    return MemoryMarketStore()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def now() -> datetime:
    return NOW
