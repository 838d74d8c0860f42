"""
Tests for job dispatch, uniqueness locks and cancellation.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from src.jobs import (
    GenerateArticleJob,
    GenerateInternalLinksJob,
    InMemoryJobQueue,
    JobOrchestrator,
    TranslateArticleJob,
)
from src.persistence.jobs import JobStatus, JobTracker


class TestDispatch:
    """Tracked records and queue entries."""

    @pytest.mark.asyncio
    async def test_dispatch_creates_pending_record(self, orchestrator, tracker, job_queue, clock):
        record = await orchestrator.dispatch(GenerateArticleJob(keyword="visa japon", language="fr"))

        assert record.status == JobStatus.PENDING
        assert record.kind == "generate_article"
        assert record.queue == "content-generation"
        assert record.max_attempts == 3
        assert record.timeout == 300
        assert record.backoff == [30, 120, 300]
        assert tracker.get_job(record.job_id) is record
        assert job_queue.pop(["content-generation"], clock()) == record.job_id

    @pytest.mark.asyncio
    async def test_delay_sets_available_at(self, orchestrator, job_queue, clock):
        record = await orchestrator.dispatch(TranslateArticleJob(article_id=1, language="en"), delay=45)

        assert record.available_at == clock() + timedelta(seconds=45)
        assert job_queue.pop(["translation"], clock()) is None

    @pytest.mark.asyncio
    async def test_non_unique_jobs_always_dispatch(self, orchestrator):
        job = GenerateArticleJob(keyword="visa japon", language="fr")
        assert await orchestrator.dispatch(job) is not None
        assert await orchestrator.dispatch(job) is not None


class TestUniqueness:
    """At most one live job per unique key."""

    @pytest.mark.asyncio
    async def test_duplicate_dropped_without_record(self, orchestrator, tracker, job_queue, caplog):
        first = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))
        second = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))

        assert first is not None
        assert second is None
        assert len(tracker.list_jobs()) == 1
        assert job_queue.size() == 1
        assert "Duplicate generate_internal_links job for internal_links_42" in caplog.text

    @pytest.mark.asyncio
    async def test_lock_holds_job_id(self, orchestrator, cache):
        record = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))
        assert await cache.get(orchestrator.lock_key("internal_links_42")) == record.job_id

    @pytest.mark.asyncio
    async def test_different_keys_do_not_collide(self, orchestrator):
        assert await orchestrator.dispatch(TranslateArticleJob(article_id=1, language="en")) is not None
        assert await orchestrator.dispatch(TranslateArticleJob(article_id=1, language="de")) is not None

    @pytest.mark.asyncio
    async def test_lock_shared_between_processes(self, cache, clock):
        # Two orchestrators with separate trackers and queues, one cache
        first = JobOrchestrator(InMemoryJobQueue(), JobTracker(clock=clock), cache)
        second = JobOrchestrator(InMemoryJobQueue(), JobTracker(clock=clock), cache)

        assert await first.dispatch(GenerateInternalLinksJob(article_id=42)) is not None
        assert await second.dispatch(GenerateInternalLinksJob(article_id=42)) is None

    @pytest.mark.asyncio
    async def test_release_allows_new_dispatch(self, orchestrator, tracker):
        record = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))
        tracker.transition(record.job_id, JobStatus.RUNNING)
        record = tracker.transition(record.job_id, JobStatus.COMPLETED)
        await orchestrator.release(record)

        assert await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42)) is not None

    @pytest.mark.asyncio
    async def test_stale_lock_of_finished_job_taken_over(self, orchestrator, tracker, cache):
        record = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))
        tracker.transition(record.job_id, JobStatus.RUNNING)
        tracker.transition(record.job_id, JobStatus.FAILED)
        # Lock left behind (no release)

        again = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))

        assert again is not None
        assert await cache.get(orchestrator.lock_key("internal_links_42")) == again.job_id

    @pytest.mark.asyncio
    async def test_stale_takeover_loses_to_newer_holder(self, orchestrator, tracker, cache):
        record = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))
        tracker.transition(record.job_id, JobStatus.RUNNING)
        tracker.transition(record.job_id, JobStatus.FAILED)
        key = orchestrator.lock_key("internal_links_42")
        # Another process replaced the stale lock after this one read it
        await cache.set(key, "job_other")

        with patch.object(cache, "get", AsyncMock(return_value=record.job_id)):
            again = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))

        assert again is None
        assert await cache.get(key) == "job_other"

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_accepts_one(self, tracker, job_queue, yielding_cache):
        orchestrator = JobOrchestrator(job_queue, tracker, yielding_cache)

        results = await asyncio.gather(
            *(orchestrator.dispatch(GenerateInternalLinksJob(article_id=42)) for _ in range(2))
        )

        accepted = [r for r in results if r is not None]
        assert len(accepted) == 1
        assert len(tracker.list_jobs()) == 1
        assert job_queue.size() == 1
        assert await yielding_cache.get(orchestrator.lock_key("internal_links_42")) == accepted[0].job_id

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_across_processes_accepts_one(self, yielding_cache, clock):
        orchestrators = [
            JobOrchestrator(InMemoryJobQueue(), JobTracker(clock=clock), yielding_cache) for _ in range(4)
        ]

        results = await asyncio.gather(
            *(o.dispatch(TranslateArticleJob(article_id=1, language="en")) for o in orchestrators)
        )

        assert sum(1 for r in results if r is not None) == 1

    @pytest.mark.asyncio
    async def test_concurrent_stale_takeover_accepts_one(self, tracker, job_queue, yielding_cache):
        # Two processes sharing the tracker view of a failed holder
        first = JobOrchestrator(job_queue, tracker, yielding_cache)
        record = await first.dispatch(GenerateInternalLinksJob(article_id=42))
        tracker.transition(record.job_id, JobStatus.RUNNING)
        tracker.transition(record.job_id, JobStatus.FAILED)
        second = JobOrchestrator(InMemoryJobQueue(), tracker, yielding_cache)

        results = await asyncio.gather(
            first.dispatch(GenerateInternalLinksJob(article_id=42)),
            second.dispatch(GenerateInternalLinksJob(article_id=42)),
        )

        assert sum(1 for r in results if r is not None) == 1

    @pytest.mark.asyncio
    async def test_lock_expires(self, orchestrator, tracker, cache, clock):
        record = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))
        ttl = GenerateInternalLinksJob(article_id=42).policy.lock_ttl()
        # Forget the job locally so only the cache lock matters
        tracker._jobs.pop(record.job_id)

        clock.advance(ttl - 1)
        assert await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42)) is None
        clock.advance(2)
        assert await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42)) is not None

    @pytest.mark.asyncio
    async def test_release_keeps_foreign_lock(self, orchestrator, tracker, cache):
        record = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))
        await cache.set(orchestrator.lock_key("internal_links_42"), "job_other")

        await orchestrator.release(record)

        assert await cache.get(orchestrator.lock_key("internal_links_42")) == "job_other"

    @pytest.mark.asyncio
    async def test_unavailable_cache_falls_back_to_tracker(self, orchestrator, cache, caplog):
        with patch.object(cache, "add", AsyncMock(return_value=None)):
            first = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))
            second = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))

        assert first is not None
        assert second is None
        assert "relying on local tracker" in caplog.text


class TestCancel:
    """Cancellation of pending jobs."""

    @pytest.mark.asyncio
    async def test_cancel_pending(self, orchestrator, tracker, job_queue, cache, clock):
        record = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))

        assert await orchestrator.cancel(record.job_id) is True
        assert tracker.get_job(record.job_id).status == JobStatus.CANCELLED
        assert job_queue.pop(["linking"], clock()) is None
        assert await cache.get(orchestrator.lock_key("internal_links_42")) is None

    @pytest.mark.asyncio
    async def test_cannot_cancel_running(self, orchestrator, tracker):
        record = await orchestrator.dispatch(GenerateInternalLinksJob(article_id=42))
        tracker.transition(record.job_id, JobStatus.RUNNING)

        assert await orchestrator.cancel(record.job_id) is False
        assert tracker.get_job(record.job_id).status == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, orchestrator):
        assert await orchestrator.cancel("job_missing") is False


class TestCompareOperations:
    """Ownership checks on the cache backend."""

    @pytest.mark.asyncio
    async def test_compare_and_set_swaps_matching_value(self, cache):
        await cache.set("lock", "job_a")

        assert await cache.compare_and_set("lock", "job_a", "job_b", ttl=60) is True
        assert await cache.get("lock") == "job_b"

    @pytest.mark.asyncio
    async def test_compare_and_set_keeps_other_value(self, cache):
        await cache.set("lock", "job_other")

        assert await cache.compare_and_set("lock", "job_a", "job_b") is False
        assert await cache.get("lock") == "job_other"
        assert await cache.compare_and_set("missing", "job_a", "job_b") is False
        assert await cache.exists("missing") is False

    @pytest.mark.asyncio
    async def test_compare_and_set_applies_ttl(self, cache, clock):
        await cache.set("lock", "job_a")
        await cache.compare_and_set("lock", "job_a", "job_b", ttl=10)

        clock.advance(11)
        assert await cache.get("lock") is None

    @pytest.mark.asyncio
    async def test_compare_and_delete(self, cache):
        await cache.set("lock", "job_a")

        assert await cache.compare_and_delete("lock", "job_b") is False
        assert await cache.get("lock") == "job_a"
        assert await cache.compare_and_delete("lock", "job_a") is True
        assert await cache.exists("lock") is False
