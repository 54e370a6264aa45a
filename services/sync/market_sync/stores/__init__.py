"""Data stores for persistence and caching.

Stores handle:
- MarketStore (base.py): the persistence capability the services depend on
- PostgreSQL (postgres.py, sql_store.py): sessions, upserts, job claiming
- Memory (memory.py): in-process implementation for local runs and tests
- Redis (redis.py): caching, locks, TTL policies

No sync/aggregation logic in stores - that belongs in services.
"""
