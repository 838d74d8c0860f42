"""
Job Orchestrator

Creates tracked jobs from BaseJob instances and puts them on the queue.

Unique jobs hold a lock in the shared cache backend for the whole life
of the job (key `job_unique:{unique_key}`, value = job id). A dispatch
that finds the lock held by a live job is a duplicate and is dropped.
"""

import logging
from datetime import timedelta
from typing import Optional

from src.cache.backend import CacheBackend
from src.jobs.base import BaseJob
from src.jobs.queue import JobQueue
from src.persistence.jobs import Job, JobStatus, JobTracker

logger = logging.getLogger(__name__)


class JobOrchestrator:
    """Dispatch, cancel and requeue pipeline jobs."""

    def __init__(self, queue: JobQueue, tracker: JobTracker, cache: CacheBackend):
        self.queue = queue
        self.tracker = tracker
        self.cache = cache

    def lock_key(self, unique_key: str) -> str:
        return self.cache.make_key("job_unique", unique_key)

    async def _acquire(self, job: BaseJob, unique_key: str, job_id: str, delay: float) -> bool:
        """Take the uniqueness lock for job_id, False on a live duplicate."""
        key = self.lock_key(unique_key)
        ttl = job.policy.lock_ttl(delay)

        acquired = await self.cache.add(key, job_id, ttl=ttl)
        if acquired:
            return True

        if acquired is None:
            # Cache unavailable: only the local tracker check applies
            logger.warning(f"Uniqueness lock for {unique_key} unavailable, relying on local tracker")
            return True

        holder_id = await self.cache.get(key)
        holder = self.tracker.get_job(holder_id) if holder_id else None
        if holder is not None and holder.is_terminal:
            # Swap only while the finished job still holds it
            if await self.cache.compare_and_set(key, holder_id, job_id, ttl=ttl):
                logger.warning(f"Stale lock on {unique_key} held by finished job {holder_id}, taken over")
                return True

        return False

    async def dispatch(self, job: BaseJob, delay: float = 0) -> Optional[Job]:
        """
        Track and enqueue a job.

        Args:
            job: Job to run
            delay: Seconds before the job becomes available

        Returns:
            The tracked Job, or None when a live duplicate exists
        """
        policy = job.policy
        unique_key = job.unique_key()
        job_id = self.tracker.new_job_id()

        if unique_key:
            active = self.tracker.find_active(unique_key)
            if active is not None or not await self._acquire(job, unique_key, job_id, delay):
                holder = active.job_id if active is not None else "another worker"
                logger.warning(f"Duplicate {job.kind.value} job for {unique_key} not dispatched (held by {holder})")
                return None

        record = self.tracker.create_job(
            kind=job.kind.value,
            payload=job.payload,
            queue=policy.queue,
            max_attempts=policy.tries,
            timeout=policy.timeout,
            backoff=list(policy.backoff),
            unique_key=unique_key,
            tags=job.tags(),
            available_at=self.tracker.now() + timedelta(seconds=delay),
            job_id=job_id,
        )
        self.queue.push(record)
        logger.info(
            f"Dispatched {record.kind} {record.job_id} on {record.queue}"
            + (f" (delay {delay:.0f}s)" if delay else "")
        )
        return record

    async def release(self, record: Job):
        """Drop the uniqueness lock if this job still holds it."""
        if not record.unique_key:
            return
        key = self.lock_key(record.unique_key)
        await self.cache.compare_and_delete(key, record.job_id)

    def requeue(self, record: Job):
        """Put a tracked job back on its lane at its available_at."""
        self.queue.push(record)

    async def cancel(self, job_id: str) -> bool:
        """Cancel a job that has not started. Returns False otherwise."""
        record = self.tracker.get_job(job_id)
        if record is None or record.status != JobStatus.PENDING:
            return False

        self.queue.remove(job_id)
        self.tracker.transition(job_id, JobStatus.CANCELLED, note="cancelled")
        await self.release(record)
        logger.info(f"Cancelled {record.kind} {job_id}")
        return True
