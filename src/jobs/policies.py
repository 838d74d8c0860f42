"""
Job Policies

Attempts, timeout, backoff schedule and queue lane for every job kind.

Retry n (1-based) waits backoff[min(n, len) - 1] seconds, raised to any
provider retry-after hint. An empty schedule retries immediately.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class JobKind(str, Enum):
    GENERATE_ARTICLE = "generate_article"
    GENERATE_LANDING = "generate_landing"
    GENERATE_COMPARATIVE = "generate_comparative"
    PROCESS_MANUAL_TITLE = "process_manual_title"
    TRANSLATE_ARTICLE = "translate_article"
    TRANSLATE_ALL_LANGUAGES = "translate_all_languages"
    TRANSLATE_PRESS_RELEASE = "translate_press_release"
    TRANSLATE_PRESS_DOSSIER = "translate_press_dossier"
    GENERATE_IMAGE = "generate_image"
    OPTIMIZE_IMAGE = "optimize_image"
    GENERATE_INTERNAL_LINKS = "generate_internal_links"
    GENERATE_INTERNAL_LINKS_BATCH = "generate_internal_links_batch"
    DISCOVER_EXTERNAL_LINKS = "discover_external_links"
    VERIFY_EXTERNAL_LINKS = "verify_external_links"
    PUBLISH_ARTICLE = "publish_article"
    PROCESS_PUBLICATION = "process_publication"
    REQUEST_INDEXING = "request_indexing"
    UPDATE_SITEMAP = "update_sitemap"
    PROCESS_BATCH_GENERATION = "process_batch_generation"
    PROCESS_PROGRAM = "process_program"


# Queue lanes
CONTENT_GENERATION = "content-generation"
CONTENT_GENERATION_LOW = "content-generation-low"
TRANSLATION = "translation"
IMAGE_GENERATION = "image-generation"
LINKING = "linking"
PUBLICATION = "publication"
INDEXING = "indexing"
BATCH = "batch"

# Worker polling order: first due job of the earliest lane wins
QUEUE_PRIORITY = (
    PUBLICATION,
    CONTENT_GENERATION,
    TRANSLATION,
    IMAGE_GENERATION,
    INDEXING,
    LINKING,
    CONTENT_GENERATION_LOW,
    BATCH,
)

GENERATION_BACKOFF = (30, 120, 300)
LONG_GENERATION_BACKOFF = (60, 180, 300)
TRANSLATION_BACKOFF = (30, 60, 120)

# Uniqueness locks outlive the job by this much
LOCK_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class JobPolicy:
    tries: int
    timeout: int
    backoff: Tuple[int, ...]
    queue: str

    def retry_delay(self, retry_number: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait before retry `retry_number` (1-based)."""
        delay = 0.0
        if self.backoff:
            index = min(max(retry_number, 1), len(self.backoff)) - 1
            delay = float(self.backoff[index])
        if retry_after:
            delay = max(delay, float(retry_after))
        return delay

    def lock_ttl(self, delay: float = 0) -> int:
        """How long a uniqueness lock may be held by one dispatch."""
        waits = sum(self.retry_delay(n) for n in range(1, self.tries))
        return int(delay + self.tries * self.timeout + waits + LOCK_MARGIN_SECONDS)


JOB_POLICIES: Dict[JobKind, JobPolicy] = {
    JobKind.GENERATE_ARTICLE: JobPolicy(3, 300, GENERATION_BACKOFF, CONTENT_GENERATION),
    JobKind.GENERATE_LANDING: JobPolicy(3, 300, GENERATION_BACKOFF, CONTENT_GENERATION),
    JobKind.GENERATE_COMPARATIVE: JobPolicy(3, 600, LONG_GENERATION_BACKOFF, CONTENT_GENERATION_LOW),
    JobKind.TRANSLATE_ARTICLE: JobPolicy(3, 180, TRANSLATION_BACKOFF, TRANSLATION),
    JobKind.TRANSLATE_ALL_LANGUAGES: JobPolicy(1, 60, (), TRANSLATION),
    JobKind.TRANSLATE_PRESS_RELEASE: JobPolicy(3, 180, TRANSLATION_BACKOFF, TRANSLATION),
    JobKind.TRANSLATE_PRESS_DOSSIER: JobPolicy(3, 600, LONG_GENERATION_BACKOFF, TRANSLATION),
    JobKind.GENERATE_IMAGE: JobPolicy(3, 120, (30, 60, 120), IMAGE_GENERATION),
    JobKind.OPTIMIZE_IMAGE: JobPolicy(3, 120, (30,), IMAGE_GENERATION),
    JobKind.GENERATE_INTERNAL_LINKS: JobPolicy(3, 120, (30, 60, 120), LINKING),
    JobKind.GENERATE_INTERNAL_LINKS_BATCH: JobPolicy(2, 3600, (), LINKING),
    JobKind.DISCOVER_EXTERNAL_LINKS: JobPolicy(3, 180, (60, 120, 300), LINKING),
    JobKind.VERIFY_EXTERNAL_LINKS: JobPolicy(2, 3600, (), LINKING),
    JobKind.PUBLISH_ARTICLE: JobPolicy(3, 60, GENERATION_BACKOFF, PUBLICATION),
    JobKind.PROCESS_PUBLICATION: JobPolicy(3, 60, (), PUBLICATION),
    JobKind.REQUEST_INDEXING: JobPolicy(3, 60, (), INDEXING),
    JobKind.UPDATE_SITEMAP: JobPolicy(2, 120, (), INDEXING),
    JobKind.PROCESS_BATCH_GENERATION: JobPolicy(1, 7200, (), BATCH),
    JobKind.PROCESS_PROGRAM: JobPolicy(3, 7200, GENERATION_BACKOFF, BATCH),
    JobKind.PROCESS_MANUAL_TITLE: JobPolicy(3, 600, GENERATION_BACKOFF, CONTENT_GENERATION),
}


def get_policy(kind) -> JobPolicy:
    """Policy for a JobKind or its string value."""
    return JOB_POLICIES[JobKind(kind)]
