"""
Repository Layer - Cost Event Log

Append-only access to ai_cost_events. Writes commit before returning
so a recorded cost survives a worker crash right after the AI call.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, func

from .models import CostEventRecord
from .session import get_db_context, get_session_factory

logger = logging.getLogger(__name__)


class CostEventLog:
    """
    SQL-backed cost event log.

    Timestamps in and out are naive UTC.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or get_session_factory()

    def append(
        self,
        service: str,
        operation: str,
        amount: float,
        created_at: datetime,
        model: Optional[str] = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        metadata: Optional[Dict] = None,
    ) -> int:
        """Insert one event and commit. Returns the row id."""
        with get_db_context(self._session_factory) as db:
            record = CostEventRecord(
                service=service,
                operation=operation,
                amount=Decimal(str(round(amount, 6))),
                model=model,
                input_tokens=input_tokens or 0,
                output_tokens=output_tokens or 0,
                event_metadata=metadata or {},
                created_at=created_at,
            )
            db.add(record)
            db.flush()
            return record.id

    def total(
        self,
        start: datetime,
        end: datetime,
        service: Optional[str] = None,
        up_to_id: Optional[int] = None,
    ) -> float:
        """Sum of amounts in [start, end), optionally only rows with id <= up_to_id."""
        with get_db_context(self._session_factory) as db:
            query = select(func.coalesce(func.sum(CostEventRecord.amount), 0)).where(
                CostEventRecord.created_at >= start,
                CostEventRecord.created_at < end,
            )
            if service:
                query = query.where(CostEventRecord.service == service)
            if up_to_id is not None:
                query = query.where(CostEventRecord.id <= up_to_id)
            return round(float(db.execute(query).scalar() or 0), 6)

    def last_id(self) -> int:
        """Highest event id written so far, 0 for an empty log."""
        with get_db_context(self._session_factory) as db:
            return int(db.execute(select(func.coalesce(func.max(CostEventRecord.id), 0))).scalar() or 0)

    def count(self, start: datetime, end: datetime, service: Optional[str] = None) -> int:
        with get_db_context(self._session_factory) as db:
            query = select(func.count(CostEventRecord.id)).where(
                CostEventRecord.created_at >= start,
                CostEventRecord.created_at < end,
            )
            if service:
                query = query.where(CostEventRecord.service == service)
            return int(db.execute(query).scalar() or 0)

    def breakdown(self, start: datetime, end: datetime, group_by: str = "service") -> List[Dict]:
        """
        Totals grouped by service or operation, most expensive first.

        Returns:
            [{"key": "openai", "total": 1.23, "count": 42}, ...]
        """
        column = CostEventRecord.service if group_by == "service" else CostEventRecord.operation
        total = func.sum(CostEventRecord.amount)

        with get_db_context(self._session_factory) as db:
            rows = db.execute(
                select(column, total, func.count(CostEventRecord.id))
                .where(CostEventRecord.created_at >= start, CostEventRecord.created_at < end)
                .group_by(column)
                .order_by(total.desc())
            ).all()

        return [
            {"key": key, "total": round(float(amount or 0), 6), "count": int(count)}
            for key, amount, count in rows
        ]

    def recent(self, limit: int = 50, service: Optional[str] = None) -> List[Dict]:
        with get_db_context(self._session_factory) as db:
            query = select(CostEventRecord).order_by(CostEventRecord.id.desc()).limit(limit)
            if service:
                query = query.where(CostEventRecord.service == service)
            records = db.execute(query).scalars().all()

        return [
            {
                "id": r.id,
                "service": r.service,
                "operation": r.operation,
                "amount": float(r.amount),
                "model": r.model,
                "input_tokens": r.input_tokens,
                "output_tokens": r.output_tokens,
                "metadata": r.event_metadata or {},
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in records
        ]
