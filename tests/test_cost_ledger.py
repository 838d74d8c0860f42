"""
Tests for the cost ledger.

These tests verify:
- Events are durable before record_cost returns
- Day / month / service counters in the cache
- Fallback to the event log when counters are missing
- Breakdown, trend and projection queries
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from src.costs.ledger import CostLedger, CostRecordingError


class TestRecordCost:
    """Recording and validation."""

    @pytest.mark.asyncio
    async def test_event_is_in_log_before_return(self, ledger, event_log, clock):
        event = await ledger.record_cost("openai", "article", 0.12, {"model": "gpt-4o"})

        assert event.event_id is not None
        rows = event_log.recent()
        assert len(rows) == 1
        assert rows[0]["service"] == "openai"
        assert rows[0]["amount"] == pytest.approx(0.12)
        assert rows[0]["model"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, ledger, event_log):
        with pytest.raises(ValueError):
            await ledger.record_cost("openai", "chat", -0.01)
        assert event_log.recent() == []

    @pytest.mark.asyncio
    async def test_unknown_service_rejected(self, ledger):
        with pytest.raises(ValueError):
            await ledger.record_cost("anthropic", "chat", 0.01)

    @pytest.mark.asyncio
    async def test_zero_amount_allowed(self, ledger):
        await ledger.record_cost("perplexity", "search", 0.0)
        assert await ledger.daily_cost() == 0.0

    @pytest.mark.asyncio
    async def test_log_failure_raises_recording_error(self, cache, clock, caplog):
        broken = MagicMock()
        broken.append.side_effect = RuntimeError("database is locked")
        ledger = CostLedger(broken, cache, clock=clock)

        with pytest.raises(CostRecordingError) as exc_info:
            await ledger.record_cost("openai", "chat", 0.05, {"model": "gpt-4o"})

        assert exc_info.value.event["amount"] == 0.05
        assert "Failed to record AI cost" in caplog.text
        assert await cache.get_float(ledger.day_key(ledger.now())) is None

    @pytest.mark.asyncio
    async def test_listeners_called_after_recording(self, ledger):
        seen = []

        async def listener(event):
            seen.append(event.amount)

        ledger.add_listener(listener)
        await ledger.record_cost("openai", "chat", 0.2)
        assert seen == [0.2]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_recording(self, ledger, event_log):
        async def listener(event):
            raise RuntimeError("boom")

        ledger.add_listener(listener)
        await ledger.record_cost("openai", "chat", 0.2)
        assert len(event_log.recent()) == 1


class TestAggregates:
    """Counter-backed and log-backed reads."""

    @pytest.mark.asyncio
    async def test_daily_and_monthly_totals(self, ledger):
        await ledger.record_cost("openai", "article", 0.10)
        await ledger.record_cost("dalle", "generate", 0.08)
        await ledger.record_cost("openai", "translation", 0.02)

        assert await ledger.daily_cost() == pytest.approx(0.20)
        assert await ledger.monthly_cost() == pytest.approx(0.20)
        assert await ledger.daily_cost("openai") == pytest.approx(0.12)
        assert await ledger.monthly_cost("dalle") == pytest.approx(0.08)

    @pytest.mark.asyncio
    async def test_counters_match_log(self, ledger, cache):
        for amount in (0.1, 0.2, 0.3):
            await ledger.record_cost("openai", "chat", amount)

        counter = await cache.get_float(ledger.day_key(ledger.now()))
        assert counter == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_missing_counter_falls_back_to_log(self, ledger, cache):
        await ledger.record_cost("openai", "chat", 0.25)
        await cache.delete(ledger.day_key(ledger.now()))
        await cache.delete(ledger.month_key(ledger.now()))

        assert await ledger.daily_cost() == pytest.approx(0.25)
        assert await ledger.monthly_cost() == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_counter_reseeded_from_log(self, ledger, cache):
        await ledger.record_cost("openai", "chat", 0.25)
        await cache.delete(ledger.day_key(ledger.now()))

        await ledger.record_cost("openai", "chat", 0.25)
        assert await cache.get_float(ledger.day_key(ledger.now())) == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_new_day_starts_at_zero(self, ledger, clock):
        await ledger.record_cost("openai", "chat", 1.0)
        clock.advance(days=1)

        assert await ledger.daily_cost() == 0.0
        assert await ledger.monthly_cost() == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_weekly_cost_spans_days(self, ledger, clock):
        # Wednesday, then Thursday of the same week
        await ledger.record_cost("openai", "chat", 1.0)
        clock.advance(days=1)
        await ledger.record_cost("openai", "chat", 2.0)

        assert await ledger.weekly_cost() == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_request_count(self, ledger):
        await ledger.record_cost("openai", "chat", 0.1)
        await ledger.record_cost("openai", "chat", 0.1)
        assert await ledger.request_count("openai") == 2
        assert await ledger.request_count("dalle") == 0


class TestTimezone:
    """Periods follow the configured timezone."""

    @pytest.mark.asyncio
    async def test_paris_day_boundary(self, event_log, cache, clock):
        # 23:30 UTC on Jan 15 is already Jan 16 in Paris
        clock.current = datetime(2025, 1, 15, 23, 30, tzinfo=timezone.utc)
        ledger = CostLedger(event_log, cache, timezone_name="Europe/Paris", clock=clock)

        await ledger.record_cost("openai", "chat", 0.5)

        assert ledger.day_key(ledger.now()).endswith("2025-01-16")
        assert await ledger.daily_cost() == pytest.approx(0.5)


class TestReports:
    """Breakdowns, trend and projection."""

    @pytest.mark.asyncio
    async def test_costs_by_service_and_operation(self, ledger):
        await ledger.record_cost("openai", "article", 0.3)
        await ledger.record_cost("openai", "translation", 0.1)
        await ledger.record_cost("dalle", "generate", 0.08)

        by_service = await ledger.costs_by_service()
        assert by_service["openai"] == {"total": pytest.approx(0.4), "count": 2}
        assert by_service["dalle"]["count"] == 1

        by_operation = await ledger.costs_by_operation()
        assert list(by_operation)[0] == "article"

    @pytest.mark.asyncio
    async def test_daily_trend_oldest_first(self, ledger, clock):
        await ledger.record_cost("openai", "chat", 1.0)
        clock.advance(days=1)
        await ledger.record_cost("openai", "chat", 2.0)

        trend = await ledger.daily_trend(3)
        assert [day["date"] for day in trend] == ["2025-01-14", "2025-01-15", "2025-01-16"]
        assert [day["total"] for day in trend] == [0.0, pytest.approx(1.0), pytest.approx(2.0)]

    @pytest.mark.asyncio
    async def test_monthly_projection(self, ledger):
        # Day 15 of a 31-day month
        await ledger.record_cost("openai", "chat", 15.0)

        projection = await ledger.monthly_projection(monthly_budget=100.0)
        assert projection["daily_average"] == pytest.approx(1.0)
        assert projection["projected_total"] == pytest.approx(31.0)
        assert projection["days_remaining"] == 16
        assert projection["projected_percent"] == pytest.approx(31.0)


class TestConcurrentRecording:
    """Counters equal the log total however writers interleave."""

    @pytest.fixture
    def yielding_ledger(self, event_log, yielding_cache, clock):
        return CostLedger(event_log, yielding_cache, timezone_name="UTC", clock=clock)

    @pytest.mark.asyncio
    async def test_concurrent_first_writes(self, yielding_ledger):
        await asyncio.gather(*[yielding_ledger.record_cost("openai", "chat", 1.0) for _ in range(3)])

        assert await yielding_ledger.daily_cost() == pytest.approx(3.0)
        assert await yielding_ledger.monthly_cost() == pytest.approx(3.0)
        counter = await yielding_ledger.cache.get_float(yielding_ledger.service_key("openai", yielding_ledger.now()))
        assert counter == pytest.approx(3.0)

    @pytest.mark.asyncio
    async def test_concurrent_writes_after_counter_loss(self, yielding_ledger):
        await yielding_ledger.record_cost("openai", "chat", 0.5)
        await yielding_ledger.cache.delete(yielding_ledger.day_key(yielding_ledger.now()))

        amounts = [0.1, 0.2, 0.3, 0.4, 1.0]
        await asyncio.gather(*[yielding_ledger.record_cost("dalle", "generate", amount) for amount in amounts])

        counter = await yielding_ledger.cache.get_float(yielding_ledger.day_key(yielding_ledger.now()))
        assert counter == pytest.approx(3.0)
        assert counter == pytest.approx(yielding_ledger.event_log.total(
            datetime(2025, 1, 15), datetime(2025, 1, 16)
        ))

    @pytest.mark.asyncio
    async def test_sequential_and_concurrent_mix(self, yielding_ledger):
        await yielding_ledger.record_cost("openai", "chat", 1.0)
        await asyncio.gather(
            yielding_ledger.record_cost("openai", "chat", 2.0),
            yielding_ledger.record_cost("perplexity", "search", 0.25),
        )
        await yielding_ledger.record_cost("dalle", "generate", 0.75)

        assert await yielding_ledger.daily_cost() == pytest.approx(4.0)


class TestFilteredReads:
    """Per-service reads come from the event log."""

    @pytest.mark.asyncio
    async def test_daily_service_read_ignores_counter(self, ledger, cache):
        await ledger.record_cost("openai", "chat", 0.3)
        await cache.set(ledger.service_key("openai", ledger.now()), 99.0)

        assert await ledger.daily_cost("openai") == pytest.approx(0.3)
        assert await ledger.daily_cost("dalle") == 0.0
