#!/usr/bin/env python3
"""Tiered scheduler for cron.

Suggested schedule:
- hot:  every 15 minutes
- warm: hourly
- cold: every 6 hours

Run:
  cd services/sync
  python -m scripts.run_scheduler --tier hot
"""

import argparse
import logging
import os
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from market_sync.runtime import market_runtime, run_cli  # noqa: E402
from market_sync.services.scheduler import run_scheduler  # noqa: E402
from market_sync.services.types import Tier  # noqa: E402
from market_sync.settings import get_settings  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enqueue due styles for one tier")
    parser.add_argument("--tier", choices=[t.value for t in Tier], required=True)
    parser.add_argument("--limit", type=int, default=None, help="max styles (default SCHEDULER_BATCH_SIZE)")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> dict:
    settings = get_settings()
    async with market_runtime(settings, with_providers=False) as runtime:
        summary = await run_scheduler(runtime.store, Tier(args.tier), settings=settings, limit=args.limit)
    return {"ok": True, **summary}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cli_args = parse_args()
    sys.exit(run_cli(lambda: main(cli_args)))
