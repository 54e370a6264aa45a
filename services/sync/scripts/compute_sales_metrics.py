#!/usr/bin/env python3
"""Recompute eBay sales metrics (outlier flags + rolling medians).

Run:
  cd services/sync
  python -m scripts.compute_sales_metrics            # every SKU with recent sales
  python -m scripts.compute_sales_metrics --sku DD1391-100
"""

import argparse
import logging
import os
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from market_sync.runtime import market_runtime, run_cli  # noqa: E402
from market_sync.services.normalization import normalize_style_id  # noqa: E402
from market_sync.services.sales_metrics import refresh_all_sales_metrics  # noqa: E402
from market_sync.settings import get_settings  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompute sales metrics")
    parser.add_argument("--sku", default=None)
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> dict:
    settings = get_settings()
    async with market_runtime(settings, with_providers=False) as runtime:
        summary = await refresh_all_sales_metrics(
            runtime.store, sku=normalize_style_id(args.sku) if args.sku else None
        )
    return {"ok": True, **summary}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cli_args = parse_args()
    sys.exit(run_cli(lambda: main(cli_args)))
