"""
Job Tracking

Track pipeline jobs from dispatch to a terminal state.

State machine:
    PENDING -> RUNNING -> COMPLETED | RETRYING | FAILED
    RETRYING -> PENDING   (backoff elapsed)
    PENDING -> CANCELLED
"""

import json
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    """Job status states."""
    PENDING = "pending"           # Queued, waiting for a worker or its delay
    RUNNING = "running"           # Handler executing
    RETRYING = "retrying"         # Failed, waiting for backoff
    COMPLETED = "completed"       # Successfully finished (or skipped)
    FAILED = "failed"             # Terminal failure, failed() hook ran
    CANCELLED = "cancelled"       # Cancelled before it started


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

ALLOWED_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.RETRYING, JobStatus.FAILED}),
    JobStatus.RETRYING: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised for a status change the state machine does not allow."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus):
        super().__init__(f"Job {job_id}: illegal transition {current.value} -> {target.value}")
        self.job_id = job_id
        self.current = current
        self.target = target


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Job:
    """Pipeline job record."""
    job_id: str
    kind: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime

    # Policy
    payload: Dict = field(default_factory=dict)
    queue: str = "default"
    max_attempts: int = 1
    timeout: int = 60
    backoff: List[int] = field(default_factory=list)
    unique_key: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    # Scheduling
    attempts: int = 0
    available_at: Optional[datetime] = None

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    # Outcome
    result: Optional[Dict] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    history: List[Dict] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("created_at", "updated_at", "available_at", "started_at", "completed_at"):
            data[key] = _iso(getattr(self, key))
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Job":
        """Create from dictionary."""
        data = dict(data)
        data["status"] = JobStatus(data["status"])
        for key in ("created_at", "updated_at", "available_at", "started_at", "completed_at"):
            data[key] = _parse(data.get(key))
        return cls(**data)

    def update_status(self, status: JobStatus, now: datetime, note: Optional[str] = None):
        """Apply a state-machine transition."""
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.job_id, self.status, status)

        self.history.append({
            "from": self.status.value,
            "to": status.value,
            "at": now.isoformat(),
            "attempt": self.attempts,
            "note": note,
        })
        self.status = status
        self.updated_at = now

        if status == JobStatus.RUNNING:
            self.attempts += 1
            if not self.started_at:
                self.started_at = now

        if status in TERMINAL_STATUSES:
            self.completed_at = now
            if self.started_at:
                self.duration_seconds = (self.completed_at - self.started_at).total_seconds()


class JobTracker:
    """
    Tracks pipeline jobs.

    Keeps every job in memory; with a storage path, each job is also
    written as JSON so active jobs survive a restart.
    """

    def __init__(
        self,
        storage_path: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize job tracker.

        Args:
            storage_path: Directory for job JSON files (memory only when None)
            clock: Returns the current aware datetime
        """
        self._clock = clock or _utcnow
        self._jobs: Dict[str, Job] = {}

        self.storage_path: Optional[Path] = None
        if storage_path:
            self.storage_path = Path(storage_path)
            self.storage_path.mkdir(parents=True, exist_ok=True)
            self._load_active_jobs()

    def now(self) -> datetime:
        return self._clock()

    def _get_job_path(self, job_id: str) -> Path:
        return self.storage_path / f"{job_id}.json"

    def _load_active_jobs(self):
        """Load active (non-terminal) jobs from storage."""
        for file_path in self.storage_path.glob("*.json"):
            try:
                with open(file_path, "r") as f:
                    job = Job.from_dict(json.load(f))
            except (OSError, ValueError, TypeError, KeyError) as e:
                logger.warning(f"Failed to load job from {file_path}: {e}")
                continue

            if not job.is_terminal:
                self._jobs[job.job_id] = job

        logger.info(f"Loaded {len(self._jobs)} active jobs")

    def _save_job(self, job: Job):
        """Persist job to storage."""
        if self.storage_path is None:
            return
        path = self._get_job_path(job.job_id)
        try:
            with open(path, "w") as f:
                json.dump(job.to_dict(), f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Failed to save job {job.job_id}: {e}")

    @staticmethod
    def new_job_id() -> str:
        return f"job_{uuid.uuid4().hex[:16]}"

    def create_job(
        self,
        kind: str,
        payload: Dict,
        queue: str,
        max_attempts: int,
        timeout: int,
        backoff: List[int],
        unique_key: Optional[str] = None,
        tags: Optional[List[str]] = None,
        available_at: Optional[datetime] = None,
        job_id: Optional[str] = None,
    ) -> Job:
        """
        Create a new PENDING job.

        Returns:
            The created Job object
        """
        job_id = job_id or self.new_job_id()
        now = self.now()

        job = Job(
            job_id=job_id,
            kind=kind,
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
            payload=dict(payload),
            queue=queue,
            max_attempts=max_attempts,
            timeout=timeout,
            backoff=list(backoff),
            unique_key=unique_key,
            tags=list(tags or []),
            available_at=available_at or now,
        )

        self._jobs[job_id] = job
        self._save_job(job)

        logger.debug(f"Created job {job_id} ({kind}) on queue {queue}")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get job by ID."""
        if job_id in self._jobs:
            return self._jobs[job_id]

        if self.storage_path is not None:
            path = self._get_job_path(job_id)
            if path.exists():
                try:
                    with open(path, "r") as f:
                        return Job.from_dict(json.load(f))
                except (OSError, ValueError, TypeError, KeyError) as e:
                    logger.error(f"Failed to load job {job_id}: {e}")

        return None

    def transition(self, job_id: str, status: JobStatus, note: Optional[str] = None, **fields) -> Job:
        """
        Move a job to a new status and update fields.

        Raises:
            KeyError: Unknown job
            InvalidTransitionError: Transition not allowed
        """
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(f"Unknown job {job_id}")

        job.update_status(status, self.now(), note)
        for key, value in fields.items():
            if hasattr(job, key):
                setattr(job, key, value)

        self._jobs[job_id] = job
        self._save_job(job)
        return job

    def find_active(self, unique_key: str) -> Optional[Job]:
        """Non-terminal job holding a uniqueness key, if any."""
        for job in self._jobs.values():
            if job.unique_key == unique_key and not job.is_terminal:
                return job
        return None

    def list_jobs(
        self,
        kind: Optional[str] = None,
        status: Optional[JobStatus] = None,
        queue: Optional[str] = None,
        limit: int = 100,
    ) -> List[Job]:
        """
        List jobs with optional filters, newest first.
        """
        jobs = list(self._jobs.values())

        if kind:
            jobs = [j for j in jobs if j.kind == kind]
        if status:
            jobs = [j for j in jobs if j.status == status]
        if queue:
            jobs = [j for j in jobs if j.queue == queue]

        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def cleanup_old_jobs(self, max_age_hours: float = 24) -> int:
        """
        Forget finished jobs older than max_age_hours.

        Age runs from completed_at (updated_at when unset). Pending, running
        and retrying jobs are never removed. Job files left on disk by an
        earlier process are swept too.

        Returns:
            Number of jobs removed
        """
        cutoff = self.now() - timedelta(hours=max_age_hours)

        def is_expired(job: Job) -> bool:
            return job.is_terminal and (job.completed_at or job.updated_at) < cutoff

        expired = {job_id for job_id, job in self._jobs.items() if is_expired(job)}
        for job_id in expired:
            del self._jobs[job_id]

        if self.storage_path is not None:
            for file_path in self.storage_path.glob("*.json"):
                job_id = file_path.stem
                if job_id in self._jobs:
                    continue
                try:
                    if job_id not in expired:
                        with open(file_path, "r") as f:
                            if not is_expired(Job.from_dict(json.load(f))):
                                continue
                        expired.add(job_id)
                    file_path.unlink()
                except (OSError, ValueError, TypeError, KeyError) as e:
                    logger.warning(f"Failed to clean up job file {file_path}: {e}")

        if expired:
            logger.info(f"Cleaned up {len(expired)} jobs older than {max_age_hours}h")
        return len(expired)

    def get_active_jobs_count(self) -> int:
        """Get count of non-terminal jobs."""
        return len([j for j in self._jobs.values() if not j.is_terminal])

    def get_job_stats(self) -> Dict[str, Any]:
        """Get job statistics."""
        all_jobs = list(self._jobs.values())

        by_status = {status.value: 0 for status in JobStatus}
        by_kind: Dict[str, Dict[str, int]] = {}
        for job in all_jobs:
            by_status[job.status.value] += 1
            kind_stats = by_kind.setdefault(job.kind, {"total": 0, "completed": 0, "failed": 0})
            kind_stats["total"] += 1
            if job.status == JobStatus.COMPLETED:
                kind_stats["completed"] += 1
            elif job.status == JobStatus.FAILED:
                kind_stats["failed"] += 1

        finished = by_status["completed"] + by_status["failed"]
        timed = [j.duration_seconds for j in all_jobs if j.status == JobStatus.COMPLETED and j.duration_seconds]

        return {
            "total_jobs": len(all_jobs),
            "by_status": by_status,
            "by_kind": by_kind,
            "active": self.get_active_jobs_count(),
            "success_rate": round(by_status["completed"] / finished * 100, 2) if finished else 0,
            "avg_duration_seconds": round(sum(timed) / len(timed), 2) if timed else 0,
        }
