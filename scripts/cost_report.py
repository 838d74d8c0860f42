#!/usr/bin/env python3
"""
AI Cost Report

Prints budget status, today's breakdown, the daily trend and the
month-end projection.

Usage:
    python scripts/cost_report.py
    python scripts/cost_report.py --days 30
    python scripts/cost_report.py --json > report.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

STATUS_MARKERS = {"ok": "OK", "warning": "WARN", "critical": "CRIT", "exceeded": "OVER"}


def print_report(report: dict):
    print("\n" + "=" * 60)
    print("AI COST REPORT")
    print("=" * 60)

    for period in ("daily", "monthly"):
        status = report[period]
        print(
            f"{period.capitalize():<8} ${status['spent']:>10.4f} / ${status['budget']:<10.2f} "
            f"{status['percent']:>6.2f}%  [{STATUS_MARKERS.get(status['status'], status['status'])}]"
        )
    print(f"Requests allowed: {'yes' if report['can_make_requests'] else 'NO'}")
    print(f"Last 7 days:      ${report['weekly_total']:.4f}")

    print("\nBy service (today):")
    for service, data in report["by_service"].items():
        print(f"  {service:<12} ${data['total']:>10.4f}  ({data['count']} requests)")

    if report["top_operations"]:
        print("\nTop operations (today):")
        for item in report["top_operations"]:
            print(f"  {item['operation']:<24} ${item['total']:>10.4f}  ({item['count']} requests)")

    print("\nTrend:")
    for day in report["trend"]:
        print(f"  {day['date']}  ${day['total']:.4f}")

    projection = report["projection"]
    print(
        f"\nProjected month-end: ${projection['projected_total']:.2f} "
        f"(avg ${projection['daily_average']:.4f}/day over {projection['days_elapsed']} days)"
    )
    print("=" * 60)


async def build_report(days: int) -> dict:
    from src.cache import close_cache_backend, get_cache_backend
    from src.costs import build_cost_stack
    from src.database import init_db
    from src.utils.config import get_settings

    load_dotenv()
    init_db()
    cache = await get_cache_backend()
    try:
        costs = build_cost_stack(get_settings(), cache)
        return await costs.reporter.report(days)
    finally:
        await close_cache_backend()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Show AI spend against budget")
    parser.add_argument("--days", type=int, default=7, help="Days of trend to show (default: 7)")
    parser.add_argument("--json", action="store_true", help="Print the raw report as JSON")

    args = parser.parse_args()
    report = asyncio.run(build_report(args.days))

    if args.json:
        print(json.dumps(report, indent=2, default=str))
    else:
        print_report(report)


if __name__ == "__main__":
    main()
