"""
Media Jobs

GenerateImageJob calls DALL-E through the gateway and stores the URL;
OptimizeImageJob hands the image to the optimizer service.
"""

import logging
from typing import Dict, Optional

from src.content.repository import ARTICLE
from src.jobs.base import BaseJob, JobContext, UnknownTargetError, register_job
from src.jobs.policies import JobKind

logger = logging.getLogger(__name__)


def build_image_prompt(article: Dict) -> str:
    subject = article.get("title") or article.get("keyword") or "travel and expatriation"
    country = article.get("country")
    location = f" in {country}" if country else ""
    return (
        f"Editorial photograph illustrating: {subject}{location}. "
        "Natural light, realistic, no text, no logos."
    )


@register_job
class GenerateImageJob(BaseJob):
    kind = JobKind.GENERATE_IMAGE
    required = ("article_id",)

    def unique_key(self) -> Optional[str]:
        return f"image_{self.payload['article_id']}"

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        article_id = self.payload["article_id"]
        article = await ctx.repository.get(ARTICLE, article_id)
        if article is None:
            raise UnknownTargetError(ARTICLE, article_id)

        if article.get("image_url") and not self.force:
            logger.info(f"Article {article_id} already has an image, skipping")
            return {"skipped": True}

        prompt = self.payload.get("prompt") or build_image_prompt(article)
        response = await ctx.gateway.generate_image(prompt, operation="generate", timeout=ctx.timeout)
        response.raise_for_error()

        await ctx.repository.update(
            ARTICLE,
            article_id,
            image_url=response.image_url,
            image_alt=article.get("title"),
            image_prompt=response.revised_prompt or prompt,
        )
        logger.info(f"Image generated for article {article_id} (cost=${response.cost:.4f})")

        await ctx.orchestrator.dispatch(OptimizeImageJob(article_id=article_id))
        return {"image_url": response.image_url, "cost": response.cost}


@register_job
class OptimizeImageJob(BaseJob):
    kind = JobKind.OPTIMIZE_IMAGE
    required = ("article_id",)

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        article_id = self.payload["article_id"]
        article = await ctx.repository.get(ARTICLE, article_id)
        if article is None:
            raise UnknownTargetError(ARTICLE, article_id)

        if not article.get("image_url"):
            logger.info(f"Article {article_id} has no image to optimize")
            return {"skipped": True}

        variants = await ctx.services.image_optimizer.optimize(article["image_url"])
        await ctx.repository.update(ARTICLE, article_id, image_variants=variants)
        return variants
