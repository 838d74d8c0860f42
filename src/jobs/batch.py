"""
Batch Jobs

Expand a batch or a program run into individual generation jobs.
"""

import itertools
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from src.content.repository import BATCH, PROGRAM, STATUS_COMPLETED, STATUS_PROCESSING
from src.jobs.base import BaseJob, JobContext, PermanentJobError, UnknownTargetError, register_job
from src.jobs.generation import GenerateArticleJob, GenerateComparativeJob, GenerateLandingJob
from src.jobs.policies import JobKind

logger = logging.getLogger(__name__)

GENERATION_JOBS = {
    "article": GenerateArticleJob,
    "landing": GenerateLandingJob,
    "comparative": GenerateComparativeJob,
}

PROGRAM_ACTIVE = "active"


def generation_job_for(item: Dict) -> BaseJob:
    content_type = item.get("content_type", "article")
    cls = GENERATION_JOBS.get(content_type)
    if cls is None:
        raise ValueError(f"Unsupported content type: {content_type}")
    params = {key: value for key, value in item.items() if key != "content_type"}
    return cls(**params)


@register_job
class ProcessBatchGenerationJob(BaseJob):
    """Dispatch one generation job per batch item."""

    kind = JobKind.PROCESS_BATCH_GENERATION
    required = ("batch_id",)

    def unique_key(self) -> Optional[str]:
        return f"batch_{self.payload['batch_id']}"

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        batch_id = self.payload["batch_id"]
        batch = await ctx.repository.get(BATCH, batch_id)
        if batch is None:
            raise UnknownTargetError(BATCH, batch_id)

        items = batch.get("items") or []
        await ctx.repository.update(BATCH, batch_id, status=STATUS_PROCESSING)

        dispatched = 0
        invalid = 0
        for item in items:
            try:
                job = generation_job_for(dict(item, batch_id=batch_id))
            except ValueError as e:
                invalid += 1
                logger.warning(f"Batch {batch_id}: skipping item {item}: {e}")
                continue
            if await ctx.orchestrator.dispatch(job) is not None:
                dispatched += 1

        await ctx.repository.update(BATCH, batch_id, status=STATUS_COMPLETED, dispatched=dispatched, invalid=invalid)
        logger.info(f"Batch {batch_id}: {dispatched}/{len(items)} generation jobs dispatched")
        return {"dispatched": dispatched, "invalid": invalid}

    async def failed(self, ctx: JobContext, error: BaseException):
        await ctx.repository.mark_failed(BATCH, self.payload["batch_id"], str(error))


@register_job
class ProcessProgramJob(BaseJob):
    """
    Run a content program: every content type x country x language x keyword
    combination, capped by quantity_value.
    """

    kind = JobKind.PROCESS_PROGRAM
    required = ("program_id",)

    def unique_key(self) -> Optional[str]:
        return f"program_{self.payload['program_id']}"

    @staticmethod
    def combinations(program: Dict) -> List[Dict]:
        content_types = program.get("content_types") or []
        countries = program.get("countries") or [None]
        languages = program.get("languages") or ["fr"]
        keywords = program.get("keywords") or []

        combos = [
            {
                "content_type": content_type,
                "country": country,
                "language": language,
                "keyword": keyword,
                "platform_id": program.get("platform_id"),
                "program_id": program["id"],
            }
            for content_type, country, language, keyword in itertools.product(
                content_types, countries, languages, keywords
            )
        ]
        limit = program.get("quantity_value")
        return combos[:limit] if limit else combos

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        program_id = self.payload["program_id"]
        program = await ctx.repository.get(PROGRAM, program_id)
        if program is None:
            raise UnknownTargetError(PROGRAM, program_id)

        if program.get("status") != PROGRAM_ACTIVE and not self.force:
            logger.info(f"Program {program_id} is {program.get('status')}, not running")
            return {"skipped": True}

        combos = self.combinations(program)
        if not combos:
            raise PermanentJobError(f"Program {program_id} has nothing to generate")

        # Build every job before dispatching any, so a bad program dispatches nothing
        try:
            jobs = [generation_job_for(combo) for combo in combos]
        except ValueError as e:
            raise PermanentJobError(f"Program {program_id}: {e}") from e

        dispatched = 0
        for job in jobs:
            if await ctx.orchestrator.dispatch(job) is not None:
                dispatched += 1

        await ctx.repository.update(
            PROGRAM,
            program_id,
            run_count=program.get("run_count", 0) + 1,
            total_generated=program.get("total_generated", 0) + dispatched,
            last_run_at=datetime.now(timezone.utc).isoformat(),
        )
        logger.info(f"Program {program_id}: {dispatched}/{len(combos)} generation jobs dispatched")
        return {"dispatched": dispatched}

    async def failed(self, ctx: JobContext, error: BaseException):
        await ctx.repository.update(PROGRAM, self.payload["program_id"], error_message=str(error))
