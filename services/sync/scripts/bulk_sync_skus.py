#!/usr/bin/env python3
"""Enqueue sync jobs for a list of style codes.

Styles missing from the catalog are created first (empty rows, tier from
--tier). Existing jobs are reset to pending, including permanent failures,
because an explicit bulk sync is an operator decision.

Run:
  cd services/sync
  python -m scripts.bulk_sync_skus DD1391-100 FV5029-010
  python -m scripts.bulk_sync_skus --file skus.txt --providers stockx,alias
"""

import argparse
import logging
import os
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from market_sync.runtime import market_runtime, run_cli  # noqa: E402
from market_sync.services.catalog import ensure_style  # noqa: E402
from market_sync.services.sync_queue import enqueue_for_style  # noqa: E402
from market_sync.services.types import Provider, Tier  # noqa: E402
from market_sync.settings import get_settings  # noqa: E402


def read_skus(args: argparse.Namespace) -> list[str]:
    skus = list(args.skus)
    if args.file:
        with open(args.file, encoding="utf-8") as fh:
            skus.extend(line.split("#", 1)[0].strip() for line in fh)
    seen: set[str] = set()
    out: list[str] = []
    for sku in skus:
        key = sku.strip().upper()
        if key and key not in seen:
            seen.add(key)
            out.append(sku.strip())
    return out


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enqueue market sync jobs for style codes")
    parser.add_argument("skus", nargs="*", help="style codes")
    parser.add_argument("--file", help="file with one style code per line")
    parser.add_argument("--providers", default="", help="comma-separated providers (default: all mapped)")
    parser.add_argument("--tier", choices=[t.value for t in Tier], default=None, help="tier for new styles")
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> dict:
    settings = get_settings()
    skus = read_skus(args)
    providers = [Provider(p.strip().lower()) for p in args.providers.split(",") if p.strip()] or None

    summary: dict = {"ok": True, "skus": len(skus), "jobs": {}, "errors": []}
    async with market_runtime(settings, with_providers=False) as runtime:
        for sku in skus:
            try:
                style = await ensure_style(runtime.store, sku, {"tier": args.tier} if args.tier else None)
                outcomes = await enqueue_for_style(
                    runtime.store, style, settings=settings, providers=providers, reset_permanent=True
                )
            except Exception as e:
                logging.getLogger("uvicorn.error").exception(f"[bulk] {sku} failed: {e}")
                summary["errors"].append({"sku": sku, "error": str(e)})
                continue
            for outcome in outcomes.values():
                summary["jobs"][outcome.value] = summary["jobs"].get(outcome.value, 0) + 1
    return summary


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cli_args = parse_args()
    sys.exit(run_cli(lambda: main(cli_args)))
