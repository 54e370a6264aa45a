"""Process runtime: store + Redis + provider adapters, opened and closed together.

Used by the API lifespan and by every script so both wire the same pieces.
"""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
from typing import Any

from market_sync.services.errors import ConfigurationError
from market_sync.services.providers import build_providers, close_providers
from market_sync.services.providers.base import MarketDataProvider
from market_sync.services.types import Provider
from market_sync.settings import Settings
from market_sync.stores.base import MarketStore
from market_sync.stores.factory import build_store, close_store
from market_sync.stores.redis import close_redis, init_redis

logger = logging.getLogger("uvicorn.error")


@dataclass
class MarketRuntime:
    settings: Settings
    store: MarketStore
    providers: dict[Provider, MarketDataProvider] = field(default_factory=dict)
    redis_ok: bool = False


@asynccontextmanager
async def market_runtime(
    settings: Settings,
    *,
    providers: list[Provider] | None = None,
    with_providers: bool = True,
) -> AsyncGenerator[MarketRuntime, None]:
    """Open the store, Redis (optional) and adapters.

    Raises ConfigurationError when the store cannot be built or a provider listed
    in `providers` lacks credentials.
    """
    if settings.store_backend == "postgres" and not settings.database_url:
        raise ConfigurationError("DATABASE_URL is required for STORE_BACKEND=postgres")

    store = await build_store(settings)

    redis_ok = False
    try:
        await init_redis(settings)
        redis_ok = True
    except Exception as e:
        logger.warning(f"[runtime] Redis unavailable, running without cache/locks: {e}")

    adapters: dict[Provider, MarketDataProvider] = {}
    try:
        if with_providers:
            adapters = build_providers(settings, only=providers)
        yield MarketRuntime(settings=settings, store=store, providers=adapters, redis_ok=redis_ok)
    finally:
        await close_providers(adapters)
        await close_redis()
        await close_store(store)


def run_cli(main: Callable[[], Awaitable[dict[str, Any]]]) -> int:
    """Run a script's async main, print its summary and return the exit code.

    0 even when individual jobs/steps failed; 1 only for startup failures
    (missing configuration, unreachable store).
    """
    try:
        summary = asyncio.run(main())
    except ConfigurationError as e:
        logger.error(f"[runtime] configuration error: {e}")
        print({"ok": False, "error": str(e)})
        return 1
    except (OSError, ConnectionError) as e:
        logger.error(f"[runtime] startup failed: {e}")
        print({"ok": False, "error": str(e)})
        return 1
    print(summary)
    return 0
