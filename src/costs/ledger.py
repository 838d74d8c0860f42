"""
Cost Ledger

Append-only record of AI spend plus aggregate queries.

Every recorded cost is:
1. Written to the SQL event log (durable, committed before returning)
2. Added to day / month / service-day counters in the shared cache

Unfiltered day and month reads prefer the counters; filtered reads, weekly
reads and missing or unreadable counters re-aggregate the event log.
Period boundaries follow the configured timezone.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from src.cache.backend import CacheBackend
from src.cache.config import CacheTTL
from src.database.models import AIService
from src.database.repository import CostEventLog
from src.utils.timezone import (
    day_bounds,
    week_bounds,
    month_bounds,
    days_in_month,
    to_utc_naive,
)

logger = logging.getLogger(__name__)

SERVICES = tuple(service.value for service in AIService)


class CostRecordingError(Exception):
    """The event log rejected a cost event."""

    def __init__(self, message: str, event: Optional[Dict] = None):
        super().__init__(message)
        self.event = event


@dataclass(frozen=True)
class CostEvent:
    """One successful AI call's spend."""
    service: str
    operation: str
    amount: float
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[int] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


CostListener = Callable[[CostEvent], Awaitable[Any]]


class CostLedger:
    """
    Records AI costs and answers "how much was spent" queries.

    Usage:
        ledger = CostLedger(CostEventLog(), cache, timezone_name="Europe/Paris")
        await ledger.record_cost("openai", "chat", 0.0042, {"model": "gpt-4o-mini"})
        spent_today = await ledger.daily_cost()
    """

    def __init__(
        self,
        event_log: CostEventLog,
        cache: CacheBackend,
        timezone_name: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.event_log = event_log
        self.cache = cache
        self.timezone_name = timezone_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._listeners: List[CostListener] = []

    def now(self) -> datetime:
        """Current time in the ledger's timezone."""
        moment = self._clock()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(ZoneInfo(self.timezone_name))

    def add_listener(self, listener: CostListener):
        """Register a coroutine called after every recorded cost."""
        self._listeners.append(listener)

    # =========================================================================
    # Counter keys
    # =========================================================================

    def day_key(self, moment: datetime) -> str:
        return self.cache.make_key("ai_costs", "total", moment.strftime("%Y-%m-%d"))

    def month_key(self, moment: datetime) -> str:
        return self.cache.make_key("ai_costs", "monthly", moment.strftime("%Y-%m"))

    def service_key(self, service: str, moment: datetime) -> str:
        return self.cache.make_key("ai_costs", service, moment.strftime("%Y-%m-%d"))

    def requests_key(self, service: str, moment: datetime) -> str:
        return self.cache.make_key("ai_requests", service, moment.strftime("%Y-%m-%d"))

    # =========================================================================
    # Recording
    # =========================================================================

    async def record_cost(
        self,
        service: str,
        operation: str,
        amount: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CostEvent:
        """
        Append a cost event and bump the counters.

        Raises:
            ValueError: negative amount or unknown service
            CostRecordingError: the event log write failed
        """
        if service not in SERVICES:
            raise ValueError(f"Unknown AI service: {service}")
        if amount is None or amount < 0:
            raise ValueError(f"Cost amount must be non-negative, got {amount}")

        metadata = dict(metadata or {})
        now = self.now()
        amount = round(float(amount), 6)

        event = CostEvent(
            service=service,
            operation=operation,
            amount=amount,
            timestamp=now,
            metadata=metadata,
        )

        try:
            event_id = self.event_log.append(
                service=service,
                operation=operation,
                amount=amount,
                created_at=to_utc_naive(now),
                model=metadata.get("model"),
                input_tokens=int(metadata.get("input_tokens") or 0),
                output_tokens=int(metadata.get("output_tokens") or 0),
                metadata=metadata,
            )
        except Exception as e:
            logger.error(f"Failed to record AI cost: {e} | event={event.to_dict()}")
            raise CostRecordingError(f"Cost event log write failed: {e}", event.to_dict()) from e

        event = CostEvent(
            service=service,
            operation=operation,
            amount=amount,
            timestamp=now,
            metadata=metadata,
            event_id=event_id,
        )

        await self._increment_counters(event)

        logger.info(
            f"AI cost recorded: {service}/{operation} ${amount:.6f}"
            f"{' (' + metadata['model'] + ')' if metadata.get('model') else ''}"
        )

        for listener in self._listeners:
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Cost listener failed after recording {service}/{operation}: {e}")

        return event

    async def _increment_counters(self, event: CostEvent):
        moment = event.timestamp
        day_start, day_end = day_bounds(moment)
        month_start, month_end = month_bounds(moment)

        await self._bump(self.day_key(moment), event, day_start, day_end)
        await self._bump(self.month_key(moment), event, month_start, month_end)
        await self._bump(self.service_key(event.service, moment), event, day_start, day_end, event.service)

        await self.cache.incr(self.requests_key(event.service, moment), 1, ttl=CacheTTL.REQUEST_COUNTER)

    async def _bump(
        self,
        key: str,
        event: CostEvent,
        start: datetime,
        end: datetime,
        service: Optional[str] = None,
    ):
        """
        Add an event to a counter, seeding it from the event log when missing.

        A seed covers every event up to the log's last id at seeding time and
        stores that id as the counter's watermark. Events at or below the
        watermark are already in the total and are not added again, so
        concurrent writers never count an event twice.
        """
        watermark_key = f"{key}:seeded_to"

        if not await self.cache.exists(key):
            async with self.cache.lock(f"{key}:seed"):
                if not await self.cache.exists(key):
                    last_id = self.event_log.last_id()
                    seed = self.event_log.total(to_utc_naive(start), to_utc_naive(end), service, up_to_id=last_id)
                    # Watermark first: a writer seeing the counter must also see its watermark
                    await self.cache.set(watermark_key, last_id, expire_at=end)
                    await self.cache.set(key, seed, expire_at=end)

        watermark = await self.cache.get(watermark_key)
        if watermark is not None and event.event_id is not None and event.event_id <= int(watermark):
            return

        if await self.cache.incrbyfloat(key, event.amount, expire_at=end) is None:
            # Drop the stale counter so reads fall back to the event log
            await self.cache.delete(key)
            logger.warning(f"Cost counter {key} could not be incremented, reads will use the event log")

    def _log_total(self, start: datetime, end: datetime, service: Optional[str] = None) -> float:
        return self.event_log.total(to_utc_naive(start), to_utc_naive(end), service)

    # =========================================================================
    # Aggregate reads
    # =========================================================================

    async def daily_cost(self, service: Optional[str] = None) -> float:
        """Spend for the current local day, optionally for one service."""
        now = self.now()
        start, end = day_bounds(now)

        if service is None:
            counter = await self.cache.get_float(self.day_key(now))
            if counter is not None:
                return round(counter, 6)

        return self._log_total(start, end, service)

    async def weekly_cost(self, service: Optional[str] = None) -> float:
        """Spend since Monday 00:00 local time."""
        start, end = week_bounds(self.now())
        return self._log_total(start, end, service)

    async def monthly_cost(self, service: Optional[str] = None) -> float:
        """Spend for the current calendar month."""
        now = self.now()
        start, end = month_bounds(now)

        if service is None:
            counter = await self.cache.get_float(self.month_key(now))
            if counter is not None:
                return round(counter, 6)

        return self._log_total(start, end, service)

    async def request_count(self, service: str) -> int:
        """Successful billed calls today for a service."""
        now = self.now()
        start, end = day_bounds(now)
        return self.event_log.count(to_utc_naive(start), to_utc_naive(end), service)

    async def costs_by_service(self) -> Dict[str, Dict]:
        """Today's spend per service."""
        start, end = day_bounds(self.now())
        rows = self.event_log.breakdown(to_utc_naive(start), to_utc_naive(end), group_by="service")
        return {row["key"]: {"total": row["total"], "count": row["count"]} for row in rows}

    async def costs_by_operation(self) -> Dict[str, Dict]:
        """Today's spend per operation."""
        start, end = day_bounds(self.now())
        rows = self.event_log.breakdown(to_utc_naive(start), to_utc_naive(end), group_by="operation")
        return {row["key"]: {"total": row["total"], "count": row["count"]} for row in rows}

    async def daily_trend(self, days: int = 7) -> List[Dict]:
        """Per-day totals for the last N local days, oldest first."""
        now = self.now()
        trend = []
        for offset in range(days - 1, -1, -1):
            start, end = day_bounds(now - timedelta(days=offset))
            trend.append({
                "date": start.strftime("%Y-%m-%d"),
                "total": self._log_total(start, end),
            })
        return trend

    async def monthly_projection(self, monthly_budget: Optional[float] = None) -> Dict:
        """Month-end spend projected linearly from the elapsed-day average."""
        now = self.now()
        spent = await self.monthly_cost()
        day_of_month = now.day
        month_days = days_in_month(now)

        daily_average = spent / day_of_month if day_of_month else 0.0
        projected = daily_average * month_days

        projection = {
            "current_spent": round(spent, 4),
            "daily_average": round(daily_average, 4),
            "projected_total": round(projected, 2),
            "days_elapsed": day_of_month,
            "days_remaining": month_days - day_of_month,
        }
        if monthly_budget:
            projection["budget"] = monthly_budget
            projection["projected_percent"] = round(projected / monthly_budget * 100, 2)
        return projection
