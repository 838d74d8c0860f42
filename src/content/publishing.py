"""
Publishing Collaborators

- HttpPublisher: pushes an article to a platform's REST API
- PublicationRateLimiter: anti-spam quotas per platform
- IndexNowIndexer: search engine recrawl requests
- RepositorySitemap: rebuilds a platform sitemap from published articles
- PassthroughImageOptimizer: records images without conversion
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlparse
from xml.sax.saxutils import escape

import httpx

from src.content.repository import ARTICLE, PUBLICATION, STATUS_PUBLISHED, ContentRepository
from src.content.services import AntiSpamChecker, ImageOptimizer, Indexer, Publisher, SitemapUpdater
from src.jobs.base import PermanentJobError, RetryableJobError

logger = logging.getLogger(__name__)

INDEXNOW_API = "https://api.indexnow.org/indexnow"


class HttpPublisher(Publisher):
    """
    Publishes to platforms exposing POST {api_url}/articles.

    Platforms come from settings as {platform_id: {"api_url": ..., "api_key": ...}}.
    """

    def __init__(
        self,
        platforms: Dict[str, Dict[str, str]],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.platforms = {str(key): value for key, value in (platforms or {}).items()}
        self.timeout = timeout
        self._transport = transport

    def _payload(self, article: Dict) -> Dict:
        return {
            "title": article.get("title"),
            "slug": article.get("slug"),
            "content": article.get("content"),
            "excerpt": article.get("excerpt"),
            "status": "publish",
            "meta": {
                "title": article.get("meta_title"),
                "description": article.get("meta_description"),
            },
            "featured_image": {
                "url": article.get("image_url"),
                "alt": article.get("image_alt"),
            },
            "localization": {
                "language": article.get("language"),
                "country": article.get("country"),
            },
            "metadata": {
                "word_count": article.get("word_count"),
                "quality_score": article.get("quality_score"),
            },
        }

    async def publish(self, article: Dict, platform_id: Any) -> Dict:
        platform = self.platforms.get(str(platform_id))
        if not platform or not platform.get("api_url") or not platform.get("api_key"):
            raise PermanentJobError(f"No API configuration for platform {platform_id}")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    f"{platform['api_url'].rstrip('/')}/articles",
                    json=self._payload(article),
                    headers={
                        "Authorization": f"Bearer {platform['api_key']}",
                        "X-Article-ID": str(article.get("id")),
                        "X-Platform": str(platform_id),
                    },
                )
            except httpx.HTTPError as e:
                raise RetryableJobError(f"Publish request to platform {platform_id} failed: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise RetryableJobError(f"Platform {platform_id} API error {response.status_code}: {response.text[:200]}")
        if response.status_code >= 400:
            raise PermanentJobError(f"Platform {platform_id} rejected article: {response.status_code} {response.text[:200]}")

        data = response.json() if response.content else {}
        return {"remote_id": data.get("id"), "remote_url": data.get("url")}


class PublicationRateLimiter(AntiSpamChecker):
    """Daily, hourly and minimum-interval quotas per platform."""

    def __init__(
        self,
        repository: ContentRepository,
        max_per_day: int = 20,
        max_per_hour: int = 4,
        min_interval_minutes: int = 10,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.max_per_day = max_per_day
        self.max_per_hour = max_per_hour
        self.min_interval = timedelta(minutes=min_interval_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def can_publish_now(self, platform_id: Any) -> Tuple[bool, Optional[str]]:
        now = self._clock()
        published = await self.repository.find(PUBLICATION, platform_id=platform_id, status=STATUS_PUBLISHED)
        times = sorted(
            datetime.fromisoformat(item["published_at"]) for item in published if item.get("published_at")
        )

        if len([t for t in times if now - t < timedelta(days=1)]) >= self.max_per_day:
            return False, f"daily limit of {self.max_per_day} reached"
        if len([t for t in times if now - t < timedelta(hours=1)]) >= self.max_per_hour:
            return False, f"hourly limit of {self.max_per_hour} reached"
        if times and now - times[-1] < self.min_interval:
            return False, f"minimum interval of {self.min_interval.seconds // 60} minutes not elapsed"
        return True, None


class IndexNowIndexer(Indexer):
    """IndexNow submission (Bing, Yandex, Seznam...). Disabled without a key."""

    def __init__(self, key: Optional[str], transport: Optional[httpx.AsyncBaseTransport] = None):
        self.key = key
        self._transport = transport

    async def request_indexing(self, url: str) -> bool:
        if not self.key:
            logger.info(f"IndexNow key not configured, skipping indexing of {url}")
            return False

        host = urlparse(url).netloc
        async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
            try:
                response = await client.post(INDEXNOW_API, json={"host": host, "key": self.key, "urlList": [url]})
            except httpx.HTTPError as e:
                raise RetryableJobError(f"IndexNow request failed: {e}") from e

        if response.status_code in (200, 202):
            logger.info(f"IndexNow accepted {url}")
            return True
        if response.status_code == 429 or response.status_code >= 500:
            raise RetryableJobError(f"IndexNow error {response.status_code}")

        logger.warning(f"IndexNow rejected {url}: {response.status_code}")
        return False


class RepositorySitemap(SitemapUpdater):
    """Stores a sitemap XML document per platform in the repository."""

    def __init__(self, repository: ContentRepository):
        self.repository = repository

    async def update(self, platform_id: Any) -> int:
        articles = await self.repository.find(ARTICLE, platform_id=platform_id, status=STATUS_PUBLISHED)
        urls = [a["remote_url"] for a in articles if a.get("remote_url")]

        entries = "".join(f"<url><loc>{escape(url)}</loc></url>" for url in urls)
        xml = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'
        )

        existing = await self.repository.find("sitemap", platform_id=platform_id, limit=1)
        if existing:
            await self.repository.update("sitemap", existing[0]["id"], xml=xml, url_count=len(urls))
        else:
            await self.repository.create("sitemap", {"platform_id": platform_id, "xml": xml, "url_count": len(urls)})

        logger.info(f"Sitemap for platform {platform_id} rebuilt with {len(urls)} URLs")
        return len(urls)


class PassthroughImageOptimizer(ImageOptimizer):
    """Keeps the original image; format conversion is left to the CDN."""

    async def optimize(self, image_url: str) -> Dict:
        return {"optimized_url": image_url, "format": "original"}
