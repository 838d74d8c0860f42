"""
Budget Alert Delivery

Notifiers receive a BudgetAlert and deliver it somewhere. Delivery
failures are logged by the governor and never interrupt generation.

- LogAlertNotifier: always on, severity mapped to log level
- EmailAlertNotifier: Resend, disabled without RESEND_API_KEY
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

import resend

from src.costs.budget import BudgetAlert

logger = logging.getLogger(__name__)


@dataclass
class EmailResult:
    """Result of email delivery."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class LogAlertNotifier:
    """Writes alerts to the application log."""

    LEVELS = {
        "exceeded": logging.ERROR,
        "critical": logging.WARNING,
        "warning": logging.WARNING,
    }

    async def send(self, alert: BudgetAlert) -> bool:
        level = self.LEVELS.get(alert.severity, logging.INFO)
        logger.log(
            level,
            f"AI budget {alert.severity.upper()} ({alert.period}): "
            f"{alert.percent:.2f}% used, ${alert.spent:.2f} of ${alert.budget:.2f}, "
            f"${alert.remaining:.2f} remaining"
        )
        return True


class EmailAlertNotifier:
    """
    Sends budget alerts via Resend.

    Usage:
        notifier = EmailAlertNotifier(to_email="ops@example.com")
        await notifier.send(alert)
    """

    DEFAULT_FROM_EMAIL = "alerts@content-engine.local"
    DEFAULT_FROM_NAME = "Content Engine Budget Monitor"

    SEVERITY_COLORS = {
        "exceeded": "#dc2626",
        "critical": "#ea580c",
        "warning": "#ca8a04",
    }

    def __init__(
        self,
        to_email: Optional[str],
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
    ):
        """
        Initialize email alerts.

        Args:
            to_email: Alert recipient (alerts disabled when empty)
            api_key: Resend API key (defaults to env var)
            from_email: Sender email address
        """
        self.to_email = to_email
        self.api_key = api_key or os.getenv("RESEND_API_KEY")
        if not self.api_key:
            logger.warning("RESEND_API_KEY not set - budget alert emails disabled")

        self.from_email = from_email or os.getenv("FROM_EMAIL", self.DEFAULT_FROM_EMAIL)

        if self.api_key:
            resend.api_key = self.api_key

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.to_email)

    async def send(self, alert: BudgetAlert) -> EmailResult:
        if not self.enabled:
            return EmailResult(
                success=False,
                error="Email alerts not configured (missing API key or recipient)",
            )

        subject = f"[{alert.severity.upper()}] AI {alert.period} budget at {alert.percent:.1f}%"

        try:
            params = {
                "from": f"{self.DEFAULT_FROM_NAME} <{self.from_email}>",
                "to": [self.to_email],
                "subject": subject,
                "html": self._get_alert_html(alert),
            }

            response = resend.Emails.send(params)

            logger.info(f"Budget alert email sent to {self.to_email}: {response.get('id', 'unknown')}")

            return EmailResult(
                success=True,
                message_id=response.get("id"),
            )

        except Exception as e:
            logger.error(f"Budget alert email failed: {e}")
            return EmailResult(
                success=False,
                error=str(e),
            )

    def _get_alert_html(self, alert: BudgetAlert) -> str:
        color = self.SEVERITY_COLORS.get(alert.severity, "#334155")
        return f"""
        <div style="font-family: -apple-system, sans-serif; max-width: 560px;">
            <h2 style="color: {color};">AI budget {alert.severity}</h2>
            <p>The <strong>{alert.period}</strong> AI budget has reached
               <strong>{alert.percent:.2f}%</strong>.</p>
            <table style="border-collapse: collapse;">
                <tr><td>Spent</td><td>${alert.spent:.2f}</td></tr>
                <tr><td>Budget</td><td>${alert.budget:.2f}</td></tr>
                <tr><td>Remaining</td><td>${alert.remaining:.2f}</td></tr>
            </table>
        </div>
        """
