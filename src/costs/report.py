"""
Cost Reporting

Read-only summary of AI spend for the API and CLI.
"""

import logging
from typing import Dict

from src.costs.budget import BudgetGovernor
from src.costs.ledger import CostLedger

logger = logging.getLogger(__name__)


class CostReporter:
    """Builds the outward-facing cost report."""

    def __init__(self, ledger: CostLedger, governor: BudgetGovernor):
        self.ledger = ledger
        self.governor = governor

    async def status(self) -> Dict:
        """{daily, monthly, can_make_requests, checked_at}"""
        report = await self.governor.check_budget_status()
        return report.to_dict()

    async def breakdown(self) -> Dict:
        by_operation = await self.ledger.costs_by_operation()
        top = sorted(by_operation.items(), key=lambda item: item[1]["total"], reverse=True)[:5]
        return {
            "by_service": await self.ledger.costs_by_service(),
            "by_operation": by_operation,
            "top_operations": [{"operation": name, **data} for name, data in top],
        }

    async def trend(self, days: int = 7) -> Dict:
        return {"days": days, "trend": await self.ledger.daily_trend(days)}

    async def projection(self) -> Dict:
        return await self.ledger.monthly_projection(self.governor.config.monthly_budget)

    async def report(self, days: int = 7) -> Dict:
        """Full report: budget status, breakdowns, trend and projection."""
        data = await self.status()
        data.update(await self.breakdown())
        data["trend"] = (await self.trend(days))["trend"]
        data["projection"] = await self.projection()
        data["weekly_total"] = await self.ledger.weekly_cost()
        logger.debug(f"Cost report built: daily=${data['daily']['spent']}, monthly=${data['monthly']['spent']}")
        return data
