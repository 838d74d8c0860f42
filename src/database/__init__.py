"""
Database Layer

Durable cost event log for the AI pipeline.

Usage:
    from src.database import init_db, CostEventLog

    init_db()
    log = CostEventLog()
    log.append("openai", "chat", 0.0123, created_at=datetime.utcnow())
"""

from .models import Base, AIService, CostEventRecord
from .session import (
    get_database_url,
    create_db_engine,
    get_engine,
    get_session_factory,
    get_db_context,
    init_db,
    check_db_connection,
)
from .repository import CostEventLog

__all__ = [
    # Models
    "Base",
    "AIService",
    "CostEventRecord",
    # Session
    "get_database_url",
    "create_db_engine",
    "get_engine",
    "get_session_factory",
    "get_db_context",
    "init_db",
    "check_db_connection",
    # Repository
    "CostEventLog",
]
