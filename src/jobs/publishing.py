"""
Publishing Jobs

PublishArticleJob queues a publication item; ProcessPublicationJob
performs the platform call behind the anti-spam gate and, once
published, triggers indexing and a sitemap rebuild.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from src.content.repository import (
    ARTICLE,
    PUBLICATION,
    STATUS_PENDING,
    STATUS_PUBLISHED,
    STATUS_PUBLISHING,
    STATUS_SCHEDULED,
)
from src.jobs.base import BaseJob, JobContext, UnknownTargetError, register_job
from src.jobs.policies import JobKind

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@register_job
class PublishArticleJob(BaseJob):
    kind = JobKind.PUBLISH_ARTICLE
    required = ("article_id", "platform_id")

    def unique_key(self) -> Optional[str]:
        return f"publish_{self.payload['article_id']}_{self.payload['platform_id']}"

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        article_id = self.payload["article_id"]
        platform_id = self.payload["platform_id"]

        article = await ctx.repository.get(ARTICLE, article_id)
        if article is None:
            raise UnknownTargetError(ARTICLE, article_id)

        if article.get("status") == STATUS_PUBLISHED and not self.force:
            logger.info(f"Article {article_id} is already published, skipping")
            return {"skipped": True}

        item = await ctx.repository.create(PUBLICATION, {
            "article_id": article_id,
            "platform_id": platform_id,
            "status": STATUS_PENDING,
            "attempts": 0,
        })
        await ctx.repository.update(ARTICLE, article_id, status=STATUS_SCHEDULED)

        await ctx.orchestrator.dispatch(
            ProcessPublicationJob(item_id=item["id"]),
            delay=self.payload.get("delay", 0),
        )
        logger.info(f"Article {article_id} queued for publication on platform {platform_id} (item {item['id']})")
        return {"item_id": item["id"]}


@register_job
class ProcessPublicationJob(BaseJob):
    kind = JobKind.PROCESS_PUBLICATION
    required = ("item_id",)

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        item_id = self.payload["item_id"]
        item = await ctx.repository.get(PUBLICATION, item_id)
        if item is None:
            raise UnknownTargetError(PUBLICATION, item_id)

        article = await ctx.repository.get(ARTICLE, item["article_id"])
        if article is None:
            await ctx.repository.mark_failed(PUBLICATION, item_id, "article not found")
            raise UnknownTargetError(ARTICLE, item["article_id"])

        platform_id = item["platform_id"]
        allowed, reason = await ctx.services.anti_spam.can_publish_now(platform_id)
        if not allowed:
            delay = ctx.config.publish_reschedule_delay
            logger.warning(f"Publication of article {article['id']} refused by anti-spam: {reason}; retrying in {delay}s")
            await ctx.repository.update(
                PUBLICATION,
                item_id,
                status=STATUS_SCHEDULED,
                scheduled_at=(datetime.now(timezone.utc) + timedelta(seconds=delay)).isoformat(),
                last_refusal=reason,
            )
            await ctx.orchestrator.dispatch(ProcessPublicationJob(item_id=item_id), delay=delay)
            return {"rescheduled": True, "reason": reason}

        await ctx.repository.update(
            PUBLICATION, item_id, status=STATUS_PUBLISHING, attempts=item.get("attempts", 0) + 1
        )

        try:
            remote = await ctx.services.publisher.publish(article, platform_id)
        except Exception as e:
            logger.error(f"Publication of article {article['id']} on platform {platform_id} failed: {e}")
            await ctx.repository.update(PUBLICATION, item_id, status=STATUS_PENDING, last_error=str(e))
            raise

        published_at = _now_iso()
        await ctx.repository.update(PUBLICATION, item_id, status=STATUS_PUBLISHED, published_at=published_at)
        await ctx.repository.update(
            ARTICLE,
            article["id"],
            status=STATUS_PUBLISHED,
            published_at=published_at,
            remote_id=remote.get("remote_id"),
            remote_url=remote.get("remote_url"),
        )
        logger.info(f"Article {article['id']} published on platform {platform_id}")

        await ctx.orchestrator.dispatch(RequestIndexingJob(article_id=article["id"]))
        await ctx.orchestrator.dispatch(UpdateSitemapJob(platform_id=platform_id))
        return remote

    async def failed(self, ctx: JobContext, error: BaseException):
        item = await ctx.repository.mark_failed(PUBLICATION, self.payload["item_id"], str(error))
        if item is not None:
            await ctx.repository.mark_failed(ARTICLE, item["article_id"], f"publication failed: {error}")


@register_job
class RequestIndexingJob(BaseJob):
    kind = JobKind.REQUEST_INDEXING
    required = ("article_id",)

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        article_id = self.payload["article_id"]
        article = await ctx.repository.get(ARTICLE, article_id)
        if article is None:
            raise UnknownTargetError(ARTICLE, article_id)

        url = article.get("remote_url")
        if not url:
            logger.info(f"Article {article_id} has no public URL yet, skipping indexing")
            return {"skipped": True}

        submitted = await ctx.services.indexer.request_indexing(url)
        await ctx.repository.update(ARTICLE, article_id, indexing_requested=submitted)
        return {"submitted": submitted}


@register_job
class UpdateSitemapJob(BaseJob):
    kind = JobKind.UPDATE_SITEMAP
    required = ("platform_id",)

    def unique_key(self) -> Optional[str]:
        return f"sitemap_{self.payload['platform_id']}"

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        count = await ctx.services.sitemap.update(self.payload["platform_id"])
        return {"urls": count}
