"""
Content Pipeline Jobs

Job classes register themselves by kind on import; importing this
package makes every kind available to workers.

Usage:
    orchestrator = JobOrchestrator(InMemoryJobQueue(), JobTracker(), cache)
    await orchestrator.dispatch(GenerateArticleJob(keyword="visa digital nomad", language="fr"))

    worker = Worker(orchestrator, repository, services, gateway=gateway)
    await worker.run()
"""

from src.jobs.policies import JobKind, JobPolicy, JOB_POLICIES, QUEUE_PRIORITY, get_policy
from src.jobs.base import (
    BaseJob,
    JobContext,
    JobError,
    PermanentJobError,
    PipelineConfig,
    RetryableJobError,
    UnknownTargetError,
    JOB_REGISTRY,
    build_job,
    register_job,
)
from src.jobs.generation import (
    GenerationJob,
    GenerateArticleJob,
    GenerateLandingJob,
    GenerateComparativeJob,
    ProcessManualTitleJob,
)
from src.jobs.translation import (
    TranslationJob,
    TranslateArticleJob,
    TranslateAllLanguagesJob,
    TranslatePressReleaseJob,
    TranslatePressDossierJob,
)
from src.jobs.media import GenerateImageJob, OptimizeImageJob
from src.jobs.linking import (
    GenerateInternalLinksJob,
    GenerateInternalLinksBatchJob,
    DiscoverExternalLinksJob,
    VerifyExternalLinksJob,
)
from src.jobs.publishing import (
    PublishArticleJob,
    ProcessPublicationJob,
    RequestIndexingJob,
    UpdateSitemapJob,
)
from src.jobs.batch import ProcessBatchGenerationJob, ProcessProgramJob
from src.jobs.queue import JobQueue, InMemoryJobQueue
from src.jobs.orchestrator import JobOrchestrator
from src.jobs.worker import Worker

__all__ = [
    # Policies
    "JobKind",
    "JobPolicy",
    "JOB_POLICIES",
    "QUEUE_PRIORITY",
    "get_policy",
    # Base
    "BaseJob",
    "JobContext",
    "JobError",
    "PermanentJobError",
    "PipelineConfig",
    "RetryableJobError",
    "UnknownTargetError",
    "JOB_REGISTRY",
    "build_job",
    "register_job",
    # Jobs
    "GenerationJob",
    "GenerateArticleJob",
    "GenerateLandingJob",
    "GenerateComparativeJob",
    "ProcessManualTitleJob",
    "TranslationJob",
    "TranslateArticleJob",
    "TranslateAllLanguagesJob",
    "TranslatePressReleaseJob",
    "TranslatePressDossierJob",
    "GenerateImageJob",
    "OptimizeImageJob",
    "GenerateInternalLinksJob",
    "GenerateInternalLinksBatchJob",
    "DiscoverExternalLinksJob",
    "VerifyExternalLinksJob",
    "PublishArticleJob",
    "ProcessPublicationJob",
    "RequestIndexingJob",
    "UpdateSitemapJob",
    "ProcessBatchGenerationJob",
    "ProcessProgramJob",
    # Runtime
    "JobQueue",
    "InMemoryJobQueue",
    "JobOrchestrator",
    "Worker",
]
