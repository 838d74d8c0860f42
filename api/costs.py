"""
AI Cost API

Read-only budget and spend endpoints plus a manual alert check.

Endpoints:
- Budget status (daily / monthly, can_make_requests)
- Breakdown by service and operation for today
- Daily trend and month-end projection
- Alert check (cron or manual)
"""

import logging
from datetime import datetime
from typing import Dict, List

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from src.costs import CostStack

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/costs", tags=["AI Costs"])


def get_cost_stack(request: Request) -> CostStack:
    return request.app.state.costs


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class PeriodStatus(BaseModel):
    period: str
    spent: float
    budget: float
    remaining: float
    percent: float
    status: str


class BudgetStatusResponse(BaseModel):
    """Current budget consumption."""
    daily: PeriodStatus
    monthly: PeriodStatus
    can_make_requests: bool
    checked_at: datetime


class TrendResponse(BaseModel):
    days: int
    trend: List[Dict]


class AlertCheckResponse(BaseModel):
    alerts_sent: int
    alerts: List[Dict] = Field(default_factory=list)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/status", response_model=BudgetStatusResponse)
async def budget_status(costs: CostStack = Depends(get_cost_stack)):
    """Daily and monthly spend against budget."""
    return await costs.reporter.status()


@router.get("/breakdown")
async def cost_breakdown(costs: CostStack = Depends(get_cost_stack)):
    """Today's spend per service and per operation."""
    return await costs.reporter.breakdown()


@router.get("/trend", response_model=TrendResponse)
async def cost_trend(
    days: int = Query(default=7, ge=1, le=90),
    costs: CostStack = Depends(get_cost_stack),
):
    """Daily totals for the last `days` days, oldest first."""
    return await costs.reporter.trend(days)


@router.get("/projection")
async def cost_projection(costs: CostStack = Depends(get_cost_stack)):
    """Month-end projection from the average daily spend so far."""
    return await costs.reporter.projection()


@router.post("/check-alerts", response_model=AlertCheckResponse)
async def check_alerts(costs: CostStack = Depends(get_cost_stack)):
    """
    Evaluate budget thresholds and deliver any alert not yet sent today.

    Safe to call repeatedly: each severity fires at most once per day.
    """
    alerts = await costs.governor.check_and_alert()
    if alerts:
        logger.info(f"Budget alert check sent {len(alerts)} alert(s)")
    return AlertCheckResponse(alerts_sent=len(alerts), alerts=[a.to_dict() for a in alerts])
