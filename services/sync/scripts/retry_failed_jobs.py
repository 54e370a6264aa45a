#!/usr/bin/env python3
"""Reset failed sync jobs in a time window back to pending (attempts=0).

Permanent failures (missing mappings, validation errors) are left alone unless
--include-permanent is given.

Run:
  cd services/sync
  python -m scripts.retry_failed_jobs --hours 24
  python -m scripts.retry_failed_jobs --since 2026-01-01T00:00:00Z --provider alias --include-permanent
"""

import argparse
from datetime import timedelta
import logging
import os
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from market_sync.runtime import market_runtime, run_cli  # noqa: E402
from market_sync.services.normalization import parse_iso_datetime  # noqa: E402
from market_sync.services.sync_queue import retry_failed_jobs  # noqa: E402
from market_sync.services.types import Provider, utcnow  # noqa: E402
from market_sync.settings import get_settings  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Retry failed market sync jobs")
    window = parser.add_mutually_exclusive_group()
    window.add_argument("--hours", type=float, default=24.0, help="look back this many hours (default 24)")
    window.add_argument("--since", help="ISO timestamp, start of window")
    parser.add_argument("--until", help="ISO timestamp, end of window (default now)")
    parser.add_argument("--provider", choices=[p.value for p in Provider], default=None)
    parser.add_argument("--include-permanent", action="store_true")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> dict:
    settings = get_settings()
    now = utcnow()
    since = parse_iso_datetime(args.since) if args.since else now - timedelta(hours=args.hours)
    until = parse_iso_datetime(args.until) if args.until else now

    async with market_runtime(settings, with_providers=False) as runtime:
        reset = await retry_failed_jobs(
            runtime.store,
            since=since,
            until=until,
            provider=Provider(args.provider) if args.provider else None,
            include_permanent=args.include_permanent,
        )
    return {
        "ok": True,
        "reset": reset,
        "since": since.isoformat() if since else None,
        "until": until.isoformat() if until else None,
        "include_permanent": args.include_permanent,
    }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cli_args = parse_args()
    sys.exit(run_cli(lambda: main(cli_args)))
