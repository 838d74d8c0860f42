"""
Cost Stack Wiring

Builds ledger, governor and reporter from settings so the API, the
worker and the CLI scripts share one construction path.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from src.cache.backend import CacheBackend
from src.costs.alerts import EmailAlertNotifier, LogAlertNotifier
from src.costs.budget import BudgetConfig, BudgetGovernor
from src.costs.ledger import CostLedger
from src.costs.report import CostReporter
from src.database.repository import CostEventLog

logger = logging.getLogger(__name__)


@dataclass
class CostStack:
    ledger: CostLedger
    governor: BudgetGovernor
    reporter: CostReporter


def build_cost_stack(
    settings,
    cache: CacheBackend,
    session_factory=None,
    clock: Optional[Callable[[], datetime]] = None,
) -> CostStack:
    """
    Wire the cost ledger, budget governor and reporter.

    The governor is attached to the ledger so every recorded cost
    triggers an alert check.
    """
    config = BudgetConfig.from_settings(settings)
    ledger = CostLedger(
        CostEventLog(session_factory),
        cache,
        timezone_name=settings.TIMEZONE,
        clock=clock,
    )

    notifiers = [LogAlertNotifier()]
    if config.alert_email:
        notifiers.append(
            EmailAlertNotifier(
                config.alert_email,
                api_key=settings.RESEND_API_KEY,
                from_email=settings.FROM_EMAIL,
            )
        )

    governor = BudgetGovernor(ledger, cache, config, notifiers=notifiers).attach()
    logger.info(
        f"Cost stack ready: daily=${config.daily_budget:.2f}, monthly=${config.monthly_budget:.2f}, "
        f"block_on_exceeded={config.block_on_exceeded}"
    )
    return CostStack(ledger=ledger, governor=governor, reporter=CostReporter(ledger, governor))
