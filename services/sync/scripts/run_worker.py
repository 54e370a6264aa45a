#!/usr/bin/env python3
"""Sync worker for cron / long-running deployments.

Modes:
- default: process one batch and exit
- --drain: keep processing until the queue stays empty for N polls
- --watch: run forever, sleeping when the queue is empty

Exit code is 0 even when jobs failed (they are retried by the queue); 1 only
when the worker cannot start (missing configuration, database unreachable).

Run:
  cd services/sync
  python -m scripts.run_worker --batch 10 --provider stockx --drain
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from market_sync.runtime import market_runtime, run_cli  # noqa: E402
from market_sync.services.sync_worker import SyncWorker  # noqa: E402
from market_sync.services.types import Provider  # noqa: E402
from market_sync.settings import get_settings  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Process queued market sync jobs")
    parser.add_argument("--batch", type=int, default=None, help="jobs per claim (default WORKER_BATCH_SIZE)")
    parser.add_argument("--provider", choices=[p.value for p in Provider], default=None)
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--drain", action="store_true", help="loop until the queue is empty")
    mode.add_argument("--watch", action="store_true", help="run continuously")
    parser.add_argument("--delay", type=float, default=None, help="seconds between jobs")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> dict:
    settings = get_settings()
    if args.delay is not None:
        settings = settings.model_copy(update={"worker_job_delay_seconds": args.delay})
    provider = Provider(args.provider) if args.provider else None

    async with market_runtime(settings, providers=[provider] if provider else None) as runtime:
        worker = SyncWorker(runtime.store, runtime.providers, settings)
        if args.watch:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, worker.stop)
            await worker.run_forever(batch_size=args.batch, provider=provider)
            return {"ok": True, "mode": "watch"}
        if args.drain:
            result = await worker.drain(batch_size=args.batch, provider=provider)
            return {"ok": True, "mode": "drain", **result.as_dict()}
        result = await worker.process_batch(args.batch, provider)
        return {"ok": True, "mode": "batch", **result.as_dict()}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cli_args = parse_args()
    sys.exit(run_cli(lambda: main(cli_args)))
