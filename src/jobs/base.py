"""
Job Definitions

BaseJob is the unit of pipeline work: a kind, a payload, a policy and a
handler. Job classes register themselves by kind so workers can rebuild
them from a tracked Job record.

Handlers signal outcomes with exceptions:
- UnknownTargetError: target entity is gone, complete without retry
- PermanentJobError: retrying cannot help, go straight to failed()
- RetryableJobError / retryable AIError / timeout: retry per policy
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

from src.jobs.policies import JobKind, JobPolicy, get_policy

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class JobError(Exception):
    """Base class for job outcome errors."""


class UnknownTargetError(JobError):
    """The entity a job refers to no longer exists."""

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class RetryableJobError(JobError):
    """Transient failure; the queue retries after the backoff delay."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentJobError(JobError):
    """Failure that no retry can fix."""


# =============================================================================
# CONTEXT
# =============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """Fan-out switches and thresholds."""
    auto_translate: bool = False
    auto_generate_image: bool = False
    auto_publish: bool = False
    min_quality_score: float = 75.0
    translation_delay: int = 15
    publish_reschedule_delay: int = 900
    job_retention_hours: float = 24.0
    active_languages: Tuple[str, ...] = ("fr", "en", "de", "es", "pt", "ru", "zh", "ar", "hi")

    def __post_init__(self):
        if self.translation_delay < 0:
            raise ValueError("translation_delay must be >= 0")
        if not 0 <= self.min_quality_score <= 100:
            raise ValueError("min_quality_score must be between 0 and 100")
        if self.job_retention_hours <= 0:
            raise ValueError("job_retention_hours must be > 0")

    @classmethod
    def from_settings(cls, settings) -> "PipelineConfig":
        return cls(
            auto_translate=settings.AUTO_TRANSLATE,
            auto_generate_image=settings.AUTO_GENERATE_IMAGE,
            auto_publish=settings.AUTO_PUBLISH,
            min_quality_score=settings.MIN_QUALITY_SCORE,
            translation_delay=settings.TRANSLATION_DELAY,
            publish_reschedule_delay=settings.PUBLISH_RESCHEDULE_DELAY,
            job_retention_hours=settings.JOB_RETENTION_HOURS,
            active_languages=tuple(settings.active_languages),
        )


@dataclass
class JobContext:
    """Collaborators handed to a job handler for one attempt."""
    orchestrator: Any
    repository: Any
    services: Any
    config: PipelineConfig = field(default_factory=PipelineConfig)
    gateway: Any = None
    content_cache: Any = None
    job: Any = None
    attempt: int = 1
    timeout: Optional[float] = None


# =============================================================================
# BASE JOB
# =============================================================================

JOB_REGISTRY: Dict[str, Type["BaseJob"]] = {}


def register_job(cls: Type["BaseJob"]) -> Type["BaseJob"]:
    """Class decorator mapping a job kind to its class."""
    JOB_REGISTRY[cls.kind.value] = cls
    return cls


def build_job(kind: str, payload: Dict) -> "BaseJob":
    """Rebuild a job instance from a tracked record."""
    cls = JOB_REGISTRY.get(kind)
    if cls is None:
        raise ValueError(f"Unsupported job kind: {kind}")
    return cls(**payload)


class BaseJob:
    """
    A dispatchable unit of work.

    Subclasses set `kind`, list `required` payload fields and implement
    `handle(ctx)`. `failed(ctx, error)` runs once when the job fails for
    good; it must not raise.
    """

    kind: JobKind
    required: Tuple[str, ...] = ()

    def __init__(self, **payload):
        missing = [name for name in self.required if payload.get(name) in (None, "")]
        if missing:
            raise ValueError(f"{self.kind.value} missing payload fields: {', '.join(missing)}")
        self.payload: Dict[str, Any] = payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.payload})"

    @property
    def policy(self) -> JobPolicy:
        return get_policy(self.kind)

    @property
    def force(self) -> bool:
        return bool(self.payload.get("force", False))

    def unique_key(self) -> Optional[str]:
        """Key preventing concurrent duplicates, None when not unique."""
        return None

    def tags(self) -> List[str]:
        return [self.policy.queue, self.kind.value]

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        raise NotImplementedError

    async def failed(self, ctx: JobContext, error: BaseException):
        """Compensating state changes after the last attempt."""
