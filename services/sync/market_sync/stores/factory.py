"""Store construction from settings."""

import logging

from market_sync.settings import Settings
from market_sync.stores.base import MarketStore

logger = logging.getLogger("uvicorn.error")


async def build_store(settings: Settings) -> MarketStore:
    """Build the configured MarketStore (initializing the DB pool for postgres)."""
    if settings.store_backend == "memory":
        from market_sync.stores.memory import MemoryMarketStore

        logger.warning("[store] Using in-memory store (data is lost on exit)")
        return MemoryMarketStore()

    from market_sync.stores.postgres import init_db, ping_db
    from market_sync.stores.sql_store import SqlMarketStore

    await init_db(settings)
    await ping_db()
    logger.info("[store] PostgreSQL connected")
    return SqlMarketStore()


async def close_store(store: MarketStore | None) -> None:
    from market_sync.stores.sql_store import SqlMarketStore

    if isinstance(store, SqlMarketStore):
        from market_sync.stores.postgres import close_db

        await close_db()
