"""
Tests for the budget governor and alert delivery.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.costs.alerts import EmailAlertNotifier, LogAlertNotifier
from src.costs.budget import BudgetAlert, BudgetConfig, BudgetGovernor


def make_alert(severity: str = "warning", period: str = "daily") -> BudgetAlert:
    return BudgetAlert(
        period=period,
        severity=severity,
        percent=85.0,
        spent=8.5,
        budget=10.0,
        remaining=1.5,
    )


class TestBudgetConfig:
    """Validation of limits and thresholds."""

    def test_defaults(self):
        config = BudgetConfig()
        assert config.daily_budget == 50.0
        assert config.monthly_budget == 1000.0
        assert config.block_on_exceeded is False

    def test_non_positive_budget_rejected(self):
        with pytest.raises(ValueError):
            BudgetConfig(daily_budget=0)

    def test_thresholds_must_ascend(self):
        with pytest.raises(ValueError):
            BudgetConfig(warning_threshold=95, critical_threshold=80)


class TestClassification:
    """Percent to status."""

    @pytest.mark.parametrize("percent,expected", [
        (0, "ok"),
        (79.99, "ok"),
        (80, "warning"),
        (94.9, "warning"),
        (95, "critical"),
        (100, "exceeded"),
        (250, "exceeded"),
    ])
    def test_classify(self, governor, percent, expected):
        assert governor.classify(percent) == expected


class TestCanProceed:
    """Admission control."""

    @pytest.mark.asyncio
    async def test_monitoring_only_never_blocks(self, ledger, governor):
        await ledger.record_cost("openai", "article", 25.0)

        assert await governor.can_proceed(5.0, "openai") is True
        report = await governor.check_budget_status()
        assert report.daily.status == "exceeded"
        assert report.can_make_requests is True

    @pytest.mark.asyncio
    async def test_blocks_when_daily_would_be_exceeded(self, ledger, cache):
        governor = BudgetGovernor(ledger, cache, BudgetConfig(daily_budget=10.0, monthly_budget=100.0, block_on_exceeded=True))
        await ledger.record_cost("openai", "article", 9.5)

        assert await governor.can_proceed(0.4, "openai") is True
        assert await governor.can_proceed(0.6, "openai") is False

    @pytest.mark.asyncio
    async def test_blocks_when_monthly_would_be_exceeded(self, ledger, cache, clock):
        governor = BudgetGovernor(ledger, cache, BudgetConfig(daily_budget=10.0, monthly_budget=12.0, block_on_exceeded=True))
        await ledger.record_cost("openai", "article", 8.0)
        clock.advance(days=1)

        assert await ledger.daily_cost() == 0.0
        assert await governor.can_proceed(5.0, "openai") is False

    @pytest.mark.asyncio
    async def test_report_reflects_blocking(self, ledger, cache):
        governor = BudgetGovernor(ledger, cache, BudgetConfig(daily_budget=10.0, monthly_budget=100.0, block_on_exceeded=True))
        await ledger.record_cost("openai", "article", 10.0)

        report = await governor.check_budget_status()
        assert report.can_make_requests is False
        assert report.daily.remaining == 0.0
        assert report.monthly.status == "ok"


class TestCheckAndAlert:
    """Threshold alerts fire at most once per period, severity and day."""

    @pytest.mark.asyncio
    async def test_no_alert_under_warning(self, ledger, governor):
        await ledger.record_cost("openai", "chat", 1.0)
        assert await governor.check_and_alert() == []

    @pytest.mark.asyncio
    async def test_highest_severity_only(self, ledger, cache, budget_config):
        notifier = MagicMock()
        notifier.send = AsyncMock()
        governor = BudgetGovernor(ledger, cache, budget_config, notifiers=[notifier])

        await ledger.record_cost("openai", "chat", 9.6)
        alerts = await governor.check_and_alert()

        assert [(a.period, a.severity) for a in alerts] == [("daily", "critical")]
        notifier.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_same_severity_fires_once_per_day(self, ledger, cache, budget_config, clock):
        notifier = MagicMock()
        notifier.send = AsyncMock()
        governor = BudgetGovernor(ledger, cache, budget_config, notifiers=[notifier])

        await ledger.record_cost("openai", "chat", 8.5)
        assert len(await governor.check_and_alert()) == 1
        assert await governor.check_and_alert() == []

        # Escalation the same day still fires
        await ledger.record_cost("openai", "chat", 2.0)
        alerts = await governor.check_and_alert()
        assert [a.severity for a in alerts] == ["exceeded"]

        # Next day the guard key has expired
        clock.advance(days=1)
        await ledger.record_cost("openai", "chat", 9.0)
        alerts = await governor.check_and_alert()
        assert [a.severity for a in alerts] == ["warning"]
        assert notifier.send.await_count == 3

    @pytest.mark.asyncio
    async def test_alert_guard_shared_between_governors(self, ledger, cache, budget_config):
        first = BudgetGovernor(ledger, cache, budget_config)
        second = BudgetGovernor(ledger, cache, budget_config)

        await ledger.record_cost("openai", "chat", 8.5)

        assert len(await first.check_and_alert()) == 1
        assert await second.check_and_alert() == []

    @pytest.mark.asyncio
    async def test_notifier_failure_is_logged(self, ledger, cache, budget_config, caplog):
        notifier = MagicMock()
        notifier.send = AsyncMock(side_effect=RuntimeError("smtp down"))
        governor = BudgetGovernor(ledger, cache, budget_config, notifiers=[notifier])

        await ledger.record_cost("openai", "chat", 8.5)
        alerts = await governor.check_and_alert()

        assert len(alerts) == 1
        assert "Budget alert delivery failed" in caplog.text

    @pytest.mark.asyncio
    async def test_attach_checks_after_each_cost(self, ledger, cache, budget_config):
        notifier = MagicMock()
        notifier.send = AsyncMock()
        BudgetGovernor(ledger, cache, budget_config, notifiers=[notifier]).attach()

        await ledger.record_cost("openai", "chat", 5.0)
        notifier.send.assert_not_awaited()

        await ledger.record_cost("openai", "chat", 3.5)
        notifier.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unavailable_guard_still_sends(self, ledger, cache, budget_config):
        governor = BudgetGovernor(ledger, cache, budget_config)
        await ledger.record_cost("openai", "chat", 8.5)

        with patch.object(cache, "add", AsyncMock(return_value=None)):
            alerts = await governor.check_and_alert()

        assert len(alerts) == 1


class TestNotifiers:
    """Log and email delivery."""

    @pytest.mark.asyncio
    async def test_log_notifier_levels(self, caplog):
        notifier = LogAlertNotifier()

        await notifier.send(make_alert("exceeded"))
        await notifier.send(make_alert("warning"))

        levels = [record.levelname for record in caplog.records]
        assert levels == ["ERROR", "WARNING"]
        assert "AI budget EXCEEDED (daily)" in caplog.text

    @pytest.mark.asyncio
    async def test_email_disabled_without_key(self, monkeypatch):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)
        notifier = EmailAlertNotifier(to_email="ops@example.com")

        result = await notifier.send(make_alert())

        assert notifier.enabled is False
        assert result.success is False

    @pytest.mark.asyncio
    async def test_email_sent_via_resend(self):
        notifier = EmailAlertNotifier(to_email="ops@example.com", api_key="re_test")

        with patch("src.costs.alerts.resend.Emails.send", return_value={"id": "msg_1"}) as send:
            result = await notifier.send(make_alert("critical", "monthly"))

        assert result.success is True
        assert result.message_id == "msg_1"
        params = send.call_args[0][0]
        assert params["to"] == ["ops@example.com"]
        assert params["subject"].startswith("[CRITICAL] AI monthly budget")

    @pytest.mark.asyncio
    async def test_email_failure_returns_error(self):
        notifier = EmailAlertNotifier(to_email="ops@example.com", api_key="re_test")

        with patch("src.costs.alerts.resend.Emails.send", side_effect=Exception("rate limited")):
            result = await notifier.send(make_alert())

        assert result.success is False
        assert result.error == "rate limited"
