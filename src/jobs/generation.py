"""
Generation Jobs

Article, landing, comparative and manual-title generation. Content goes
through the Content Cache first; on a miss the generator pays for an AI
call. Success fans out into translation, image and publication jobs.
"""

import logging
from typing import Dict, List, Optional, Tuple

from src.content.repository import ARTICLE, MANUAL_TITLE, STATUS_COMPLETED, STATUS_DRAFT, STATUS_PROCESSING
from src.jobs.base import BaseJob, JobContext, UnknownTargetError, register_job
from src.jobs.media import GenerateImageJob
from src.jobs.policies import JobKind
from src.jobs.publishing import PublishArticleJob
from src.jobs.translation import TranslateAllLanguagesJob, TranslateArticleJob

logger = logging.getLogger(__name__)

ARTICLE_FIELDS = ("title", "excerpt", "content", "meta_title", "meta_description", "word_count", "quality_score", "model")


class GenerationJob(BaseJob):
    """Shared pipeline for content generation jobs."""

    content_type = "article"
    required = ("keyword", "language")

    def unique_key(self) -> Optional[str]:
        """Program runs dispatch each combination at most once at a time."""
        program_id = self.payload.get("program_id")
        if program_id is None:
            return None
        parts = (self.content_type, self.payload.get("country"), self.payload["language"], self.payload["keyword"])
        return f"program_{program_id}_" + "_".join(str(part) for part in parts)

    def tags(self) -> List[str]:
        tags = super().tags() + [self.content_type]
        if self.payload.get("platform_id") is not None:
            tags.append(f"platform:{self.payload['platform_id']}")
        if self.payload.get("country"):
            tags.append(f"country:{self.payload['country']}")
        return tags

    def generation_params(self) -> Dict:
        return dict(self.payload)

    async def produce(self, ctx: JobContext, params: Dict) -> Tuple[Dict, bool]:
        """
        Draft for params, reused from the Content Cache when similar enough.

        Only drafts of the same content type are reused; `force` always
        generates fresh content.
        """

        async def generate() -> Dict:
            return await ctx.services.generator.generate(self.content_type, params, timeout=ctx.timeout)

        if ctx.content_cache is None or self.force:
            return await generate(), False

        result = await ctx.content_cache.get_cached_or_generate(
            params["keyword"],
            params["language"],
            params.get("country") or "",
            generate,
            content_type=self.content_type,
        )
        draft = dict(result.content)
        if result.from_cache:
            draft["cost"] = 0.0
            draft["reused_from"] = result.cached_keyword
        return draft, result.from_cache

    async def save(self, ctx: JobContext, params: Dict, draft: Dict, from_cache: bool) -> Dict:
        fields = {name: draft.get(name) for name in ARTICLE_FIELDS}
        fields.update(
            type=self.content_type,
            keyword=params["keyword"],
            language=params["language"],
            country=params.get("country"),
            platform_id=params.get("platform_id"),
            status=STATUS_DRAFT,
            generation_cost=draft.get("cost", 0.0),
            from_cache=from_cache,
        )

        article_id = self.payload.get("article_id")
        if article_id is not None:
            article = await ctx.repository.update(ARTICLE, article_id, **fields)
            if article is None:
                raise UnknownTargetError(ARTICLE, article_id)
            return article

        source_job_id = ctx.job.job_id if ctx.job is not None else None
        if source_job_id is None:
            return await ctx.repository.create(ARTICLE, fields)

        # A retried attempt updates the article its earlier attempt created
        existing = await ctx.repository.find(ARTICLE, limit=1, source_job_id=source_job_id)
        if existing:
            logger.info(f"Reusing article {existing[0]['id']} created by an earlier attempt of {source_job_id}")
            return await ctx.repository.update(ARTICLE, existing[0]["id"], **fields)
        return await ctx.repository.create(ARTICLE, {**fields, "source_job_id": source_job_id})

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        params = self.generation_params()
        logger.info(f"Generating {self.content_type} for '{params['keyword']}' ({params['language']}), attempt {ctx.attempt}")

        draft, from_cache = await self.produce(ctx, params)
        article = await self.save(ctx, params, draft, from_cache)

        logger.info(
            f"{self.content_type.capitalize()} {article['id']} generated: '{article.get('title')}' "
            f"(quality={article.get('quality_score')}, cost=${article.get('generation_cost', 0):.4f}, "
            f"from_cache={from_cache})"
        )

        await self.fan_out(ctx, article)
        return {"article_id": article["id"], "from_cache": from_cache, "quality_score": article.get("quality_score")}

    # =========================================================================
    # Fan-out
    # =========================================================================

    def _option(self, name: str, default):
        value = self.payload.get(name)
        return default if value is None else value

    async def fan_out(self, ctx: JobContext, article: Dict):
        await self.dispatch_translations(ctx, article)

        if self._option("generate_image", ctx.config.auto_generate_image):
            await ctx.orchestrator.dispatch(GenerateImageJob(article_id=article["id"]))

        await self.handle_auto_publish(ctx, article)

    async def dispatch_translations(self, ctx: JobContext, article: Dict):
        languages = [lang for lang in (self.payload.get("languages") or []) if lang != article["language"]]

        if languages:
            for index, language in enumerate(languages):
                await ctx.orchestrator.dispatch(
                    TranslateArticleJob(article_id=article["id"], language=language),
                    delay=index * ctx.config.translation_delay,
                )
            logger.info(f"Translations dispatched for article {article['id']}: {', '.join(languages)}")
        elif self._option("auto_translate", ctx.config.auto_translate):
            await ctx.orchestrator.dispatch(TranslateAllLanguagesJob(article_id=article["id"]))

    async def handle_auto_publish(self, ctx: JobContext, article: Dict):
        if not self._option("auto_publish", ctx.config.auto_publish):
            return

        min_score = self._option("min_quality_score", ctx.config.min_quality_score)
        score = article.get("quality_score") or 0
        if score < min_score:
            logger.debug(f"Auto-publish skipped for article {article['id']}: score {score} < {min_score}")
            return

        if article.get("platform_id") is None:
            logger.warning(f"Auto-publish skipped for article {article['id']}: no platform")
            return

        await ctx.orchestrator.dispatch(
            PublishArticleJob(article_id=article["id"], platform_id=article["platform_id"])
        )

    async def failed(self, ctx: JobContext, error: BaseException):
        article_id = self.payload.get("article_id")
        if article_id is not None:
            await ctx.repository.mark_failed(ARTICLE, article_id, str(error))


@register_job
class GenerateArticleJob(GenerationJob):
    kind = JobKind.GENERATE_ARTICLE
    content_type = "article"


@register_job
class GenerateLandingJob(GenerationJob):
    kind = JobKind.GENERATE_LANDING
    content_type = "landing"


@register_job
class GenerateComparativeJob(GenerationJob):
    kind = JobKind.GENERATE_COMPARATIVE
    content_type = "comparative"


@register_job
class ProcessManualTitleJob(GenerationJob):
    """Generates an article from a title queued by an editor."""

    kind = JobKind.PROCESS_MANUAL_TITLE
    content_type = "manual_title"
    required = ("title_id",)

    def unique_key(self) -> Optional[str]:
        return f"manual_title_{self.payload['title_id']}"

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        title_id = self.payload["title_id"]
        title = await ctx.repository.get(MANUAL_TITLE, title_id)
        if title is None:
            raise UnknownTargetError(MANUAL_TITLE, title_id)

        if title.get("status") == STATUS_COMPLETED and title.get("article_id") and not self.force:
            logger.info(f"Manual title {title_id} already has article {title['article_id']}, skipping")
            return {"skipped": True, "article_id": title["article_id"]}

        await ctx.repository.update(MANUAL_TITLE, title_id, status=STATUS_PROCESSING)

        params = {
            "keyword": title["title"],
            "title": title["title"],
            "language": title.get("language", "fr"),
            "country": title.get("country"),
            "platform_id": title.get("platform_id"),
            "word_count": title.get("word_count"),
        }
        draft, from_cache = await self.produce(ctx, params)
        article = await self.save(ctx, params, draft, from_cache)

        await ctx.repository.update(MANUAL_TITLE, title_id, status=STATUS_COMPLETED, article_id=article["id"])
        logger.info(f"Manual title {title_id} -> article {article['id']}")

        await self.fan_out(ctx, article)
        return {"article_id": article["id"], "from_cache": from_cache, "quality_score": article.get("quality_score")}

    async def failed(self, ctx: JobContext, error: BaseException):
        await ctx.repository.mark_failed(MANUAL_TITLE, self.payload["title_id"], str(error))
