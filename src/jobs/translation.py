"""
Translation Jobs

One job per (entity, language), unique while active and skipped when
the translation already exists unless forced. TranslateAllLanguagesJob
fans out over the active languages with a staggered delay.
"""

import logging
from typing import Dict, Optional

from src.content.repository import ARTICLE, PRESS_DOSSIER, PRESS_RELEASE
from src.jobs.base import BaseJob, JobContext, UnknownTargetError, register_job
from src.jobs.policies import JobKind

logger = logging.getLogger(__name__)


class TranslationJob(BaseJob):
    """Translate one entity into one language."""

    entity_type = ARTICLE
    id_field = "article_id"
    required = ("article_id", "language")

    @property
    def entity_id(self):
        return self.payload[self.id_field]

    @property
    def language(self) -> str:
        return self.payload["language"]

    def unique_key(self) -> Optional[str]:
        return f"translate_{self.entity_type}_{self.entity_id}_{self.language}"

    def tags(self):
        return super().tags() + [f"{self.entity_type}:{self.entity_id}", f"language:{self.language}"]

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        entity = await ctx.repository.get(self.entity_type, self.entity_id)
        if entity is None:
            raise UnknownTargetError(self.entity_type, self.entity_id)

        if entity.get("language") == self.language:
            logger.info(f"{self.entity_type} {self.entity_id} is already in {self.language}, nothing to translate")
            return {"skipped": True}

        existing = await ctx.repository.get_translation(self.entity_type, self.entity_id, self.language)
        if existing is not None and not self.force:
            logger.info(f"Translation {self.entity_type} {self.entity_id} -> {self.language} exists, skipping")
            return {"skipped": True}

        translated = await ctx.services.translator.translate(entity, self.language, timeout=ctx.timeout)
        await ctx.repository.save_translation(self.entity_type, self.entity_id, self.language, translated)

        logger.info(
            f"Translated {self.entity_type} {self.entity_id} -> {self.language} "
            f"(cost=${translated.get('cost', 0):.4f})"
        )
        return {"language": self.language, "cost": translated.get("cost", 0.0)}


@register_job
class TranslateArticleJob(TranslationJob):
    kind = JobKind.TRANSLATE_ARTICLE


@register_job
class TranslatePressReleaseJob(TranslationJob):
    kind = JobKind.TRANSLATE_PRESS_RELEASE
    entity_type = PRESS_RELEASE
    id_field = "press_release_id"
    required = ("press_release_id", "language")


@register_job
class TranslatePressDossierJob(TranslationJob):
    kind = JobKind.TRANSLATE_PRESS_DOSSIER
    entity_type = PRESS_DOSSIER
    id_field = "dossier_id"
    required = ("dossier_id", "language")


@register_job
class TranslateAllLanguagesJob(BaseJob):
    """Dispatch one TranslateArticleJob per active language except the source."""

    kind = JobKind.TRANSLATE_ALL_LANGUAGES
    required = ("article_id",)

    def unique_key(self) -> Optional[str]:
        return f"translate_all_{self.payload['article_id']}"

    async def handle(self, ctx: JobContext) -> Optional[Dict]:
        article_id = self.payload["article_id"]
        article = await ctx.repository.get(ARTICLE, article_id)
        if article is None:
            raise UnknownTargetError(ARTICLE, article_id)

        source = article.get("language")
        targets = [lang for lang in ctx.config.active_languages if lang != source]

        dispatched = 0
        for index, language in enumerate(targets):
            job = await ctx.orchestrator.dispatch(
                TranslateArticleJob(article_id=article_id, language=language, force=self.force),
                delay=index * ctx.config.translation_delay,
            )
            if job is not None:
                dispatched += 1

        logger.info(f"Article {article_id}: {dispatched}/{len(targets)} translations dispatched from '{source}'")
        return {"dispatched": dispatched, "languages": targets}
