"""
Content Domain

Entity storage and the collaborators pipeline jobs call into:
generation, translation, publishing, indexing, sitemaps and links.
"""

from src.content.repository import ContentRepository, InMemoryContentRepository
from src.content.services import (
    ContentServices,
    ContentGenerator,
    Translator,
    ImageOptimizer,
    Publisher,
    AntiSpamChecker,
    Indexer,
    SitemapUpdater,
    InternalLinker,
    LinkVerifier,
)
from src.content.generation import GatewayContentGenerator, GatewayTranslator, estimate_quality
from src.content.linking import KeywordOverlapLinker, HttpLinkVerifier
from src.content.publishing import (
    HttpPublisher,
    PublicationRateLimiter,
    IndexNowIndexer,
    RepositorySitemap,
    PassthroughImageOptimizer,
)


def build_services(settings, gateway, repository: ContentRepository) -> ContentServices:
    """Wire the default collaborators from settings."""
    return ContentServices(
        generator=GatewayContentGenerator(gateway),
        translator=GatewayTranslator(gateway),
        image_optimizer=PassthroughImageOptimizer(),
        publisher=HttpPublisher(settings.PUBLISH_PLATFORMS, timeout=settings.PUBLISH_TIMEOUT),
        anti_spam=PublicationRateLimiter(
            repository,
            max_per_day=settings.PUBLISH_MAX_PER_DAY,
            max_per_hour=settings.PUBLISH_MAX_PER_HOUR,
            min_interval_minutes=settings.PUBLISH_MIN_INTERVAL_MINUTES,
        ),
        indexer=IndexNowIndexer(settings.INDEXNOW_KEY),
        sitemap=RepositorySitemap(repository),
        linker=KeywordOverlapLinker(),
        link_verifier=HttpLinkVerifier(),
    )


__all__ = [
    "ContentRepository",
    "InMemoryContentRepository",
    "ContentServices",
    "ContentGenerator",
    "Translator",
    "ImageOptimizer",
    "Publisher",
    "AntiSpamChecker",
    "Indexer",
    "SitemapUpdater",
    "InternalLinker",
    "LinkVerifier",
    "GatewayContentGenerator",
    "GatewayTranslator",
    "estimate_quality",
    "KeywordOverlapLinker",
    "HttpLinkVerifier",
    "HttpPublisher",
    "PublicationRateLimiter",
    "IndexNowIndexer",
    "RepositorySitemap",
    "PassthroughImageOptimizer",
    "build_services",
]
