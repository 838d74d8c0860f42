"""
AI Cost Accounting

- CostLedger: durable record of spend, aggregate queries
- BudgetGovernor: admission control and threshold alerts
- Alert notifiers: log and email delivery
- CostReporter: outward-facing report
"""

from .ledger import CostLedger, CostEvent, CostRecordingError, SERVICES
from .budget import BudgetConfig, BudgetGovernor, BudgetStatus, BudgetReport, BudgetAlert
from .alerts import LogAlertNotifier, EmailAlertNotifier, EmailResult
from .report import CostReporter
from .factory import CostStack, build_cost_stack

__all__ = [
    "CostLedger",
    "CostEvent",
    "CostRecordingError",
    "SERVICES",
    "BudgetConfig",
    "BudgetGovernor",
    "BudgetStatus",
    "BudgetReport",
    "BudgetAlert",
    "LogAlertNotifier",
    "EmailAlertNotifier",
    "EmailResult",
    "CostReporter",
    "CostStack",
    "build_cost_stack",
]
