"""
Pytest Configuration and Shared Fixtures

Provides common fixtures and configuration for all test modules.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from src.cache.backend import MemoryCache
from src.content.repository import InMemoryContentRepository
from src.costs.budget import BudgetConfig, BudgetGovernor
from src.costs.ledger import CostLedger
from src.database.repository import CostEventLog
from src.database.session import get_session_factory, init_db
from src.jobs import InMemoryJobQueue, JobOrchestrator, PipelineConfig, Worker
from src.persistence.jobs import JobTracker


# ============================================================================
# Time
# ============================================================================

class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs):
        self.current += timedelta(seconds=seconds, **kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    """Wednesday 2025-01-15 12:00 UTC."""
    return FrozenClock(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc))


# ============================================================================
# Storage
# ============================================================================

class YieldingCache(MemoryCache):
    """MemoryCache that hands control back to the loop before every call."""

    async def exists(self, key):
        await asyncio.sleep(0)
        return await super().exists(key)

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key, value, ttl=None, expire_at=None):
        await asyncio.sleep(0)
        return await super().set(key, value, ttl=ttl, expire_at=expire_at)

    async def add(self, key, value, ttl=None, expire_at=None):
        await asyncio.sleep(0)
        return await super().add(key, value, ttl=ttl, expire_at=expire_at)

    async def compare_and_set(self, key, expected, value, ttl=None):
        await asyncio.sleep(0)
        return await super().compare_and_set(key, expected, value, ttl=ttl)

    async def incrbyfloat(self, key, amount, expire_at=None):
        await asyncio.sleep(0)
        return await super().incrbyfloat(key, amount, expire_at=expire_at)

    async def hgetall(self, key):
        await asyncio.sleep(0)
        return await super().hgetall(key)

    async def hset(self, key, field, value, ttl=None):
        await asyncio.sleep(0)
        return await super().hset(key, field, value, ttl=ttl)


@pytest.fixture
def cache(clock) -> MemoryCache:
    return MemoryCache(namespace="test", clock=clock)


@pytest.fixture
def yielding_cache(clock) -> YieldingCache:
    """Cache whose every call is a suspension point, for interleaving tests."""
    return YieldingCache(namespace="test", clock=clock)


@pytest.fixture
def session_factory():
    """Shared in-memory SQLite database for one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def event_log(session_factory) -> CostEventLog:
    return CostEventLog(session_factory)


@pytest.fixture
def ledger(event_log, cache, clock) -> CostLedger:
    return CostLedger(event_log, cache, timezone_name="UTC", clock=clock)


@pytest.fixture
def budget_config() -> BudgetConfig:
    return BudgetConfig(daily_budget=10.0, monthly_budget=100.0)


@pytest.fixture
def governor(ledger, cache, budget_config) -> BudgetGovernor:
    return BudgetGovernor(ledger, cache, budget_config)


@pytest.fixture
def repository(clock) -> InMemoryContentRepository:
    return InMemoryContentRepository(clock=clock)


# ============================================================================
# Jobs
# ============================================================================

def sample_draft(**overrides) -> Dict[str, Any]:
    draft = {
        "title": "Visa digital nomad en Thailande",
        "excerpt": "Tout savoir sur le visa.",
        "content": "<h2>Conditions</h2><p>...</p>",
        "meta_title": "Visa digital nomad Thailande",
        "meta_description": "Conditions et demarches.",
        "word_count": 1500,
        "quality_score": 82.0,
        "model": "gpt-4o",
        "cost": 0.0123,
    }
    draft.update(overrides)
    return draft


@pytest.fixture
def make_draft():
    """Factory for generator output dicts."""
    return sample_draft


@pytest.fixture
def tracker(clock) -> JobTracker:
    return JobTracker(clock=clock)


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def orchestrator(job_queue, tracker, cache) -> JobOrchestrator:
    return JobOrchestrator(job_queue, tracker, cache)


@pytest.fixture
def services() -> MagicMock:
    """ContentServices double; async collaborators are AsyncMocks."""
    services = MagicMock()
    services.generator.generate = AsyncMock(return_value=sample_draft())
    services.translator.translate = AsyncMock(return_value={"title": "Translated", "cost": 0.001})
    services.image_optimizer.optimize = AsyncMock(return_value={"optimized_url": "https://img.example/1.webp"})
    services.publisher.publish = AsyncMock(return_value={"remote_id": "42", "remote_url": "https://blog.example/visa"})
    services.anti_spam.can_publish_now = AsyncMock(return_value=(True, None))
    services.indexer.request_indexing = AsyncMock(return_value=True)
    services.sitemap.update = AsyncMock(return_value=1)
    services.linker.suggest = MagicMock(return_value=[{"target_id": 2, "anchor": "Visa", "score": 0.5}])
    services.link_verifier.verify = AsyncMock(return_value={"url": "", "ok": True, "status_code": 200})
    return services


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(translation_delay=15, active_languages=("fr", "en", "de", "es"))


@pytest.fixture
def worker(orchestrator, repository, services, pipeline_config) -> Worker:
    return Worker(orchestrator, repository, services, config=pipeline_config, gateway=MagicMock(), poll_interval=0)


# ============================================================================
# HTTP
# ============================================================================

class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def json_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]


def chat_completion(content: str, model: str = "gpt-4o", prompt_tokens: int = 1000, completion_tokens: int = 500) -> Dict:
    return {
        "id": "chatcmpl-test",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


@pytest.fixture
def make_transport():
    """Build a RecordingTransport from a handler or a fixed response."""

    def factory(handler=None, status_code: int = 200, body: Any = None, headers: Dict = None):
        if handler is None:
            def handler(request):
                return httpx.Response(status_code, json=body if body is not None else {}, headers=headers)
        return RecordingTransport(handler)

    return factory


@pytest.fixture
def chat_body():
    """Factory for OpenAI chat completion bodies."""
    return chat_completion
