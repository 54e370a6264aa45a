#!/usr/bin/env python3
"""Daily retention job: roll-ups + pruning.

Exit code stays 0 when a step fails; the failure is in the printed report and
the logs.

Run:
  cd services/sync
  python -m scripts.run_retention
"""

import logging
import os
import sys

# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from market_sync.runtime import market_runtime, run_cli  # noqa: E402
from market_sync.services.retention import run_retention  # noqa: E402
from market_sync.settings import get_settings  # noqa: E402


async def main() -> dict:
    settings = get_settings()
    async with market_runtime(settings, with_providers=False) as runtime:
        report = await run_retention(runtime.store, settings=settings)
    return report.as_dict()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(run_cli(main))
