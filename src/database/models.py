"""
SQLAlchemy Models for the Cost Event Log

The only durable table the pipeline owns. Every successful, non-cached
AI call appends one row; rows are never updated or deleted. Counters in
the cache are a read optimisation over this table.
"""

import enum

from sqlalchemy import (
    Column, String, Integer, DateTime, Numeric, Index, CheckConstraint, JSON, func
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# =============================================================================
# ENUMS
# =============================================================================

class AIService(enum.Enum):
    """Billable AI providers."""
    OPENAI = "openai"
    DALLE = "dalle"
    PERPLEXITY = "perplexity"


# =============================================================================
# COST EVENTS
# =============================================================================

class CostEventRecord(Base):
    """One recorded AI spend. Immutable once written."""
    __tablename__ = "ai_cost_events"

    id = Column(Integer, primary_key=True, autoincrement=True)

    service = Column(String(20), nullable=False)      # openai, dalle, perplexity
    operation = Column(String(100), nullable=False)   # chat, generate, search, ...
    amount = Column(Numeric(12, 6), nullable=False)   # USD

    model = Column(String(100))
    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    event_metadata = Column("metadata", JSON, default=dict)

    # Naive UTC
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_cost_amount_non_negative"),
        Index("idx_cost_events_service_created", "service", "created_at"),
    )

    def __repr__(self):
        return f"<CostEventRecord {self.service}/{self.operation} ${self.amount}>"
