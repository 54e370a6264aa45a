#!/usr/bin/env python3
"""Create the market sync tables directly from the ORM models.

For local development and throwaway databases; deployed databases are managed
with `alembic upgrade head`.

Run:
  cd services/sync
  python -m scripts.init_db
  python -m scripts.init_db --drop   # drop everything first
"""

import argparse
import logging
import os
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from market_sync.runtime import run_cli  # noqa: E402
from market_sync.services.errors import ConfigurationError  # noqa: E402
from market_sync.settings import get_settings  # noqa: E402
from market_sync.stores.postgres import close_db, create_tables, drop_tables, init_db  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create market sync tables")
    parser.add_argument("--drop", action="store_true", help="drop all tables before creating them")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> dict:
    settings = get_settings()
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is not set")

    await init_db(settings)
    try:
        if args.drop:
            await drop_tables()
        await create_tables()
    finally:
        await close_db()
    return {"ok": True, "dropped": args.drop}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cli_args = parse_args()
    sys.exit(run_cli(lambda: main(cli_args)))
