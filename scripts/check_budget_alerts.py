#!/usr/bin/env python3
"""
Budget Alert Check

Cron entry point: evaluates daily and monthly budget thresholds and
delivers each severity at most once per day.

Usage:
    # Every 15 minutes:
    */15 * * * * cd /app && python scripts/check_budget_alerts.py

Exit code is 2 when a budget is exceeded, so cron wrappers can page.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)

EXIT_EXCEEDED = 2


async def check_alerts(dry_run: bool = False) -> int:
    from src.cache import close_cache_backend, get_cache_backend
    from src.costs import build_cost_stack
    from src.database import init_db
    from src.utils.config import get_settings

    load_dotenv()
    init_db()
    cache = await get_cache_backend()
    try:
        costs = build_cost_stack(get_settings(), cache)
        report = await costs.governor.check_budget_status()

        for status in (report.daily, report.monthly):
            logger.info(
                f"{status.period}: ${status.spent:.4f} / ${status.budget:.2f} "
                f"({status.percent:.2f}%, {status.status})"
            )

        if not dry_run:
            alerts = await costs.governor.check_and_alert()
            logger.info(f"{len(alerts)} alert(s) delivered")
    finally:
        await close_cache_backend()

    exceeded = "exceeded" in (report.daily.status, report.monthly.status)
    return EXIT_EXCEEDED if exceeded else 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Check AI budgets and send threshold alerts")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show budget status without delivering alerts"
    )

    args = parser.parse_args()
    sys.exit(asyncio.run(check_alerts(dry_run=args.dry_run)))


if __name__ == "__main__":
    main()
