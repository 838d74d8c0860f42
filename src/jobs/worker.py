"""
Job Worker

Pops due jobs, runs their handler under the policy timeout and maps the
outcome onto the job state machine:

    success              -> COMPLETED, lock released
    UnknownTargetError   -> COMPLETED as a no-op, never retried
    PermanentJobError    -> FAILED
    non-retryable AIError -> FAILED
    anything else        -> RETRYING while attempts remain, else FAILED

A FAILED job runs its failed() hook exactly once and is never re-raised.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from src.ai.errors import AIError
from src.jobs.base import (
    BaseJob,
    JobContext,
    PermanentJobError,
    PipelineConfig,
    RetryableJobError,
    UnknownTargetError,
    build_job,
)
from src.jobs.orchestrator import JobOrchestrator
from src.jobs.policies import QUEUE_PRIORITY
from src.persistence.jobs import Job, JobStatus

logger = logging.getLogger(__name__)


def _error_kind(error: BaseException) -> str:
    if isinstance(error, AIError):
        return error.kind
    if isinstance(error, asyncio.TimeoutError):
        return "timeout"
    return type(error).__name__


class Worker:
    """Runs jobs from an orchestrator's queue."""

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        repository: Any,
        services: Any,
        config: Optional[PipelineConfig] = None,
        gateway: Any = None,
        content_cache: Any = None,
        poll_interval: float = 1.0,
        cleanup_interval: float = 3600.0,
    ):
        self.orchestrator = orchestrator
        self.tracker = orchestrator.tracker
        self.queue = orchestrator.queue
        self.repository = repository
        self.services = services
        self.config = config or PipelineConfig()
        self.gateway = gateway
        self.content_cache = content_cache
        self.poll_interval = poll_interval
        self.cleanup_interval = cleanup_interval
        self._last_cleanup: Optional[datetime] = None
        self._stopping = False

    def _context(self, record: Job) -> JobContext:
        return JobContext(
            orchestrator=self.orchestrator,
            repository=self.repository,
            services=self.services,
            config=self.config,
            gateway=self.gateway,
            content_cache=self.content_cache,
            job=record,
            attempt=record.attempts,
            timeout=record.timeout,
        )

    # =========================================================================
    # Single job
    # =========================================================================

    async def run_once(self, queue_names: Iterable[str] = QUEUE_PRIORITY) -> Optional[Job]:
        """
        Run the next due job, if any.

        Returns:
            The job record after this attempt, or None when nothing was due
        """
        job_id = self.queue.pop(queue_names, self.tracker.now())
        if job_id is None:
            return None

        record = self.tracker.get_job(job_id)
        if record is None or record.status not in (JobStatus.PENDING, JobStatus.RETRYING):
            logger.debug(f"Skipping {job_id}: no longer runnable")
            return record

        if record.status == JobStatus.RETRYING:
            self.tracker.transition(job_id, JobStatus.PENDING, note="backoff elapsed")
        record = self.tracker.transition(job_id, JobStatus.RUNNING)
        ctx = self._context(record)

        try:
            job = build_job(record.kind, record.payload)
        except ValueError as e:
            return await self._fail(record, None, ctx, e)

        logger.info(f"Running {record.kind} {job_id} (attempt {record.attempts}/{record.max_attempts})")

        try:
            result = await asyncio.wait_for(job.handle(ctx), timeout=record.timeout)
        except UnknownTargetError as e:
            logger.error(f"{record.kind} {job_id}: {e}, nothing to do")
            return await self._complete(record, None, note=f"no-op: {e}")
        except PermanentJobError as e:
            return await self._fail(record, job, ctx, e)
        except AIError as e:
            if not e.retryable:
                return await self._fail(record, job, ctx, e)
            return await self._retry(record, job, ctx, e, e.retry_after)
        except RetryableJobError as e:
            return await self._retry(record, job, ctx, e, e.retry_after)
        except asyncio.TimeoutError as e:
            logger.error(f"{record.kind} {job_id} timed out after {record.timeout}s")
            return await self._retry(record, job, ctx, e, None)
        except Exception as e:
            logger.exception(f"{record.kind} {job_id} raised an unexpected error")
            return await self._retry(record, job, ctx, e, None)

        return await self._complete(record, result)

    # =========================================================================
    # Outcomes
    # =========================================================================

    async def _complete(self, record: Job, result: Optional[dict], note: Optional[str] = None) -> Job:
        record = self.tracker.transition(record.job_id, JobStatus.COMPLETED, note=note, result=result)
        await self.orchestrator.release(record)
        logger.info(f"Completed {record.kind} {record.job_id} in {record.duration_seconds or 0:.2f}s")
        return record

    async def _retry(
        self,
        record: Job,
        job: BaseJob,
        ctx: JobContext,
        error: BaseException,
        retry_after: Optional[float],
    ) -> Job:
        if record.attempts_left <= 0:
            return await self._fail(record, job, ctx, error)

        delay = job.policy.retry_delay(record.attempts, retry_after)
        record = self.tracker.transition(
            record.job_id,
            JobStatus.RETRYING,
            note=str(error),
            available_at=self.tracker.now() + timedelta(seconds=delay),
            error_message=str(error) or type(error).__name__,
            error_kind=_error_kind(error),
        )
        self.orchestrator.requeue(record)
        logger.warning(
            f"{record.kind} {record.job_id} attempt {record.attempts}/{record.max_attempts} failed "
            f"({_error_kind(error)}: {error}); retrying in {delay:.0f}s"
        )
        return record

    async def _fail(
        self,
        record: Job,
        job: Optional[BaseJob],
        ctx: JobContext,
        error: BaseException,
    ) -> Job:
        record = self.tracker.transition(
            record.job_id,
            JobStatus.FAILED,
            note=str(error),
            error_message=str(error) or type(error).__name__,
            error_kind=_error_kind(error),
        )

        if job is not None:
            try:
                await job.failed(ctx, error)
            except Exception as hook_error:
                logger.error(f"failed() hook of {record.kind} {record.job_id} raised: {hook_error}")

        logger.critical(
            f"Job permanently failed: {record.kind} {record.job_id} after {record.attempts} "
            f"attempt(s): {_error_kind(error)}: {error}"
        )
        await self.orchestrator.release(record)
        return record

    # =========================================================================
    # Retention
    # =========================================================================

    def cleanup(self, force: bool = False) -> int:
        """Drop finished jobs past the retention window, at most once per cleanup_interval."""
        now = self.tracker.now()
        if not force and self._last_cleanup is not None:
            if (now - self._last_cleanup).total_seconds() < self.cleanup_interval:
                return 0

        self._last_cleanup = now
        return self.tracker.cleanup_old_jobs(self.config.job_retention_hours)

    # =========================================================================
    # Loop
    # =========================================================================

    async def run(
        self,
        queue_names: Iterable[str] = QUEUE_PRIORITY,
        max_jobs: Optional[int] = None,
        stop_when_empty: bool = False,
    ) -> int:
        """
        Process jobs until stopped.

        Args:
            queue_names: Lanes in priority order
            max_jobs: Stop after this many jobs
            stop_when_empty: Stop once the lanes hold no job, due or delayed

        Returns:
            Number of jobs processed
        """
        queue_names = tuple(queue_names)
        processed = 0
        self._stopping = False

        logger.info(f"Worker started on lanes: {', '.join(queue_names)}")
        while not self._stopping:
            self.cleanup()
            record = await self.run_once(queue_names)
            if record is None:
                if stop_when_empty and not any(self.queue.size(name) for name in queue_names):
                    break
                await asyncio.sleep(self.poll_interval)
                continue

            processed += 1
            if max_jobs is not None and processed >= max_jobs:
                break

        logger.info(f"Worker stopped after {processed} jobs")
        return processed

    def stop(self):
        self._stopping = True
