"""
Linking Jobs

Internal links between same-language articles, external authority links
discovered through Perplexity, and periodic external link verification.
"""

import logging
from typing import Dict, Optional

from src.content.repository import ARTICLE
from src.jobs.base import BaseJob, JobContext, UnknownTargetError, register_job
from src.jobs.policies import JobKind

logger = logging.getLogger(__name__)

INTERNAL = "internal"
EXTERNAL = "external"

MAX_INTERNAL_LINKS = 5
MAX_EXTERNAL_LINKS = 5


@register_job
class GenerateInternalLinksJob(BaseJob):
    kind = JobKind.GENERATE_INTERNAL_LINKS
    required = ("article_id",)

    def unique_key(self) -> Optional[str]:
        return f"internal_links_{self.payload['article_id']}"

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        article_id = self.payload["article_id"]
        article = await ctx.repository.get(ARTICLE, article_id)
        if article is None:
            raise UnknownTargetError(ARTICLE, article_id)

        existing = await ctx.repository.get_links(article_id, INTERNAL)
        if existing and not self.force:
            logger.info(f"Article {article_id} already has {len(existing)} internal links, skipping")
            return {"skipped": True}

        candidates = await ctx.repository.find(
            ARTICLE, platform_id=article.get("platform_id"), language=article.get("language")
        )
        links = ctx.services.linker.suggest(article, candidates, max_links=MAX_INTERNAL_LINKS)
        count = await ctx.repository.save_links(article_id, INTERNAL, links)

        logger.info(f"Article {article_id}: {count} internal links generated")
        return {"links": count}


@register_job
class GenerateInternalLinksBatchJob(BaseJob):
    """Dispatch GenerateInternalLinksJob for every article lacking links."""

    kind = JobKind.GENERATE_INTERNAL_LINKS_BATCH

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        filters = {}
        if self.payload.get("platform_id") is not None:
            filters["platform_id"] = self.payload["platform_id"]
        articles = await ctx.repository.find(ARTICLE, limit=self.payload.get("limit"), **filters)

        dispatched = 0
        for article in articles:
            if not self.force and await ctx.repository.get_links(article["id"], INTERNAL):
                continue
            job = await ctx.orchestrator.dispatch(GenerateInternalLinksJob(article_id=article["id"], force=self.force))
            if job is not None:
                dispatched += 1

        logger.info(f"Internal links batch: {dispatched} jobs dispatched over {len(articles)} articles")
        return {"dispatched": dispatched, "scanned": len(articles)}


@register_job
class DiscoverExternalLinksJob(BaseJob):
    """Authority sources for an article, from Perplexity citations."""

    kind = JobKind.DISCOVER_EXTERNAL_LINKS
    required = ("article_id",)

    def unique_key(self) -> Optional[str]:
        return f"external_links_{self.payload['article_id']}"

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        article_id = self.payload["article_id"]
        article = await ctx.repository.get(ARTICLE, article_id)
        if article is None:
            raise UnknownTargetError(ARTICLE, article_id)

        existing = await ctx.repository.get_links(article_id, EXTERNAL)
        if existing and not self.force:
            logger.info(f"Article {article_id} already has external links, skipping")
            return {"skipped": True}

        subject = article.get("title") or article.get("keyword")
        country = article.get("country") or ""
        response = await ctx.gateway.search(
            f"Official and authoritative sources about: {subject} {country}".strip(),
            system_prompt="List official government and institutional sources with URLs.",
            use_cache=True,
            operation="discover_links",
            timeout=ctx.timeout,
        )
        response.raise_for_error()

        links = [
            {"url": url, "source": "perplexity", "verified": None}
            for url in dict.fromkeys(response.citations)
        ][:MAX_EXTERNAL_LINKS]
        count = await ctx.repository.save_links(article_id, EXTERNAL, links)

        logger.info(f"Article {article_id}: {count} external links discovered")
        return {"links": count, "cost": response.cost}


@register_job
class VerifyExternalLinksJob(BaseJob):
    """Check external links of one article or of a platform."""

    kind = JobKind.VERIFY_EXTERNAL_LINKS

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        if self.payload.get("article_id") is not None:
            article_ids = [self.payload["article_id"]]
        else:
            filters = {}
            if self.payload.get("platform_id") is not None:
                filters["platform_id"] = self.payload["platform_id"]
            article_ids = [a["id"] for a in await ctx.repository.find(ARTICLE, **filters)]

        only_unverified = self.payload.get("only_unverified", False)
        checked = broken = 0

        for article_id in article_ids:
            links = await ctx.repository.get_links(article_id, EXTERNAL)
            if not links:
                continue

            for link in links:
                if only_unverified and link.get("verified") is not None:
                    continue
                result = await ctx.services.link_verifier.verify(link["url"])
                link["verified"] = result["ok"]
                link["last_status_code"] = result["status_code"]
                checked += 1
                if not result["ok"]:
                    broken += 1

            await ctx.repository.save_links(article_id, EXTERNAL, links)

        logger.info(f"External link verification: {checked} checked, {broken} broken")
        return {"checked": checked, "broken": broken}
