"""
Budget Governor

Admission control and threshold alerts on top of the cost ledger.

- can_proceed(): gate a prospective AI call against daily/monthly budgets.
  Denies only when block_on_exceeded is enabled; otherwise budgets are
  monitoring-only.
- check_budget_status(): derived view, recomputed on every read.
- check_and_alert(): fires the highest threshold met per period, at most
  once per (period, severity, day) across all workers.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from src.cache.backend import CacheBackend
from src.costs.ledger import CostLedger, CostEvent
from src.utils.timezone import end_of_day

logger = logging.getLogger(__name__)

SEVERITY_ORDER = ("exceeded", "critical", "warning")


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class BudgetConfig:
    """Validated budget limits and alert thresholds (percent)."""
    daily_budget: float = 50.0
    monthly_budget: float = 1000.0
    warning_threshold: float = 80.0
    critical_threshold: float = 95.0
    exceeded_threshold: float = 100.0
    alert_email: Optional[str] = None
    block_on_exceeded: bool = False

    def __post_init__(self):
        if self.daily_budget <= 0 or self.monthly_budget <= 0:
            raise ValueError("Budgets must be positive")
        if not (0 < self.warning_threshold < self.critical_threshold < self.exceeded_threshold):
            raise ValueError(
                "Alert thresholds must be ascending: "
                f"warning={self.warning_threshold}, critical={self.critical_threshold}, "
                f"exceeded={self.exceeded_threshold}"
            )

    @classmethod
    def from_settings(cls, settings) -> "BudgetConfig":
        return cls(
            daily_budget=settings.AI_DAILY_BUDGET,
            monthly_budget=settings.AI_MONTHLY_BUDGET,
            warning_threshold=settings.AI_ALERT_WARNING,
            critical_threshold=settings.AI_ALERT_CRITICAL,
            exceeded_threshold=settings.AI_ALERT_EXCEEDED,
            alert_email=settings.AI_ALERT_EMAIL,
            block_on_exceeded=settings.AI_BLOCK_ON_EXCEEDED,
        )

    def threshold_for(self, severity: str) -> float:
        return {
            "warning": self.warning_threshold,
            "critical": self.critical_threshold,
            "exceeded": self.exceeded_threshold,
        }[severity]


# =============================================================================
# DERIVED VIEWS
# =============================================================================

@dataclass(frozen=True)
class BudgetStatus:
    """Spend versus limit for one period."""
    period: str
    spent: float
    budget: float
    remaining: float
    percent: float
    status: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class BudgetReport:
    daily: BudgetStatus
    monthly: BudgetStatus
    can_make_requests: bool
    checked_at: datetime

    def to_dict(self) -> Dict:
        return {
            "daily": self.daily.to_dict(),
            "monthly": self.monthly.to_dict(),
            "can_make_requests": self.can_make_requests,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass(frozen=True)
class BudgetAlert:
    """Payload handed to alert notifiers."""
    period: str
    severity: str
    percent: float
    spent: float
    budget: float
    remaining: float

    def to_dict(self) -> Dict:
        return asdict(self)


class BudgetGovernor:
    """
    Gate-keeps AI calls and raises budget alerts.

    Usage:
        governor = BudgetGovernor(ledger, cache, BudgetConfig(), notifiers=[LogAlertNotifier()])
        if not await governor.can_proceed(0.05, "openai"):
            ...
        await governor.check_and_alert()
    """

    def __init__(
        self,
        ledger: CostLedger,
        cache: CacheBackend,
        config: Optional[BudgetConfig] = None,
        notifiers: Optional[Sequence] = None,
    ):
        self.ledger = ledger
        self.cache = cache
        self.config = config or BudgetConfig()
        self.notifiers = list(notifiers or [])

    def attach(self):
        """Run check_and_alert after every recorded cost."""
        self.ledger.add_listener(self._on_cost_recorded)
        return self

    async def _on_cost_recorded(self, event: CostEvent):
        await self.check_and_alert()

    # =========================================================================
    # Classification
    # =========================================================================

    def classify(self, percent: float) -> str:
        if percent >= self.config.exceeded_threshold:
            return "exceeded"
        if percent >= self.config.critical_threshold:
            return "critical"
        if percent >= self.config.warning_threshold:
            return "warning"
        return "ok"

    def _status(self, period: str, spent: float, budget: float) -> BudgetStatus:
        percent = round(spent / budget * 100, 2) if budget > 0 else 0.0
        return BudgetStatus(
            period=period,
            spent=round(spent, 4),
            budget=budget,
            remaining=round(max(0.0, budget - spent), 4),
            percent=percent,
            status=self.classify(percent),
        )

    # =========================================================================
    # Admission
    # =========================================================================

    async def can_proceed(self, estimated_cost: float = 0.0, service: str = "all") -> bool:
        """
        Whether a call costing estimated_cost may run now.

        Always True unless block_on_exceeded is set.
        """
        if not self.config.block_on_exceeded:
            return True

        daily = await self.ledger.daily_cost()
        monthly = await self.ledger.monthly_cost()
        projected_daily = daily + estimated_cost
        projected_monthly = monthly + estimated_cost

        if projected_daily > self.config.daily_budget:
            logger.warning(
                f"AI call blocked for {service}: daily budget would be exceeded "
                f"(${daily:.4f} + ${estimated_cost:.4f} > ${self.config.daily_budget:.2f})"
            )
            return False

        if projected_monthly > self.config.monthly_budget:
            logger.warning(
                f"AI call blocked for {service}: monthly budget would be exceeded "
                f"(${monthly:.4f} + ${estimated_cost:.4f} > ${self.config.monthly_budget:.2f})"
            )
            return False

        return True

    async def check_budget_status(self) -> BudgetReport:
        daily = self._status("daily", await self.ledger.daily_cost(), self.config.daily_budget)
        monthly = self._status("monthly", await self.ledger.monthly_cost(), self.config.monthly_budget)

        can_make_requests = True
        if self.config.block_on_exceeded:
            can_make_requests = daily.status != "exceeded" and monthly.status != "exceeded"

        return BudgetReport(
            daily=daily,
            monthly=monthly,
            can_make_requests=can_make_requests,
            checked_at=self.ledger.now(),
        )

    # =========================================================================
    # Alerts
    # =========================================================================

    def alert_key(self, period: str, severity: str, moment: datetime) -> str:
        return self.cache.make_key("ai_alert_sent", period, severity, moment.strftime("%Y-%m-%d"))

    async def check_and_alert(self) -> List[BudgetAlert]:
        """
        Fire at most one alert per period: the highest severity currently met.

        A severity that already fired today for a period is a no-op.
        Returns the alerts actually delivered.
        """
        report = await self.check_budget_status()
        now = report.checked_at
        fired: List[BudgetAlert] = []

        for status in (report.daily, report.monthly):
            severity = next(
                (s for s in SEVERITY_ORDER if status.percent >= self.config.threshold_for(s)),
                None,
            )
            if severity is None:
                continue

            acquired = await self.cache.add(
                self.alert_key(status.period, severity, now),
                now.isoformat(),
                expire_at=end_of_day(now),
            )
            if acquired is False:
                continue
            if acquired is None:
                logger.warning(f"Alert guard unavailable for {status.period}/{severity}, sending anyway")

            alert = BudgetAlert(
                period=status.period,
                severity=severity,
                percent=status.percent,
                spent=status.spent,
                budget=status.budget,
                remaining=status.remaining,
            )
            await self._deliver(alert)
            fired.append(alert)

        return fired

    async def _deliver(self, alert: BudgetAlert):
        for notifier in self.notifiers:
            try:
                await notifier.send(alert)
            except Exception as e:
                logger.error(f"Budget alert delivery failed via {type(notifier).__name__}: {e}")
