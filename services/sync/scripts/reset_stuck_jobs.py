#!/usr/bin/env python3
"""Return jobs stuck in processing (worker crashed / timed out) to pending.

Run:
  cd services/sync
  python -m scripts.reset_stuck_jobs --older-than 600
"""

import argparse
import logging
import os
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from market_sync.runtime import market_runtime, run_cli  # noqa: E402
from market_sync.services.sync_queue import reset_stuck_jobs  # noqa: E402
from market_sync.settings import get_settings  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recover stuck processing jobs")
    parser.add_argument("--older-than", type=int, default=None, help="seconds (default JOB_STALE_AFTER_SECONDS)")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> dict:
    settings = get_settings()
    if args.older_than is not None:
        settings = settings.model_copy(update={"job_stale_after_seconds": args.older_than})
    async with market_runtime(settings, with_providers=False) as runtime:
        recovered = await reset_stuck_jobs(runtime.store, settings=settings)
        stats = await runtime.store.queue_stats()
    return {"ok": True, "recovered": recovered, "queue": stats.__dict__}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cli_args = parse_args()
    sys.exit(run_cli(lambda: main(cli_args)))
