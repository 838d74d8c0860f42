"""
Content Service Interfaces

Domain collaborators called by pipeline jobs. Jobs depend on these
interfaces only; concrete implementations live in the sibling modules
and are wired by build_services().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


class ContentGenerator(ABC):
    """Produces an article, landing page or comparative."""

    @abstractmethod
    async def generate(self, content_type: str, params: Dict, timeout: Optional[float] = None) -> Dict:
        """
        Returns:
            {title, content, excerpt, meta_title, meta_description,
             word_count, quality_score, model, cost}
        """


class Translator(ABC):
    """Translates the text fields of an entity."""

    @abstractmethod
    async def translate(self, entity: Dict, target_language: str, timeout: Optional[float] = None) -> Dict:
        """Translated copies of the entity's text fields."""


class ImageOptimizer(ABC):
    @abstractmethod
    async def optimize(self, image_url: str) -> Dict:
        """Optimized variants of an image, e.g. {"webp_url": ...}."""


class Publisher(ABC):
    @abstractmethod
    async def publish(self, article: Dict, platform_id: Any) -> Dict:
        """Push an article to a platform; returns {remote_id, remote_url}."""


class AntiSpamChecker(ABC):
    @abstractmethod
    async def can_publish_now(self, platform_id: Any) -> Tuple[bool, Optional[str]]:
        """(allowed, reason when refused)"""


class Indexer(ABC):
    @abstractmethod
    async def request_indexing(self, url: str) -> bool:
        """Ask search engines to (re)crawl a URL."""


class SitemapUpdater(ABC):
    @abstractmethod
    async def update(self, platform_id: Any) -> int:
        """Rebuild a platform's sitemap; returns the URL count."""


class InternalLinker(ABC):
    @abstractmethod
    def suggest(self, article: Dict, candidates: List[Dict], max_links: int = 5) -> List[Dict]:
        """Internal link suggestions {target_id, anchor, score}."""


class LinkVerifier(ABC):
    @abstractmethod
    async def verify(self, url: str) -> Dict:
        """{url, ok, status_code}"""


@dataclass
class ContentServices:
    """Bundle of collaborators handed to jobs through JobContext."""
    generator: ContentGenerator
    translator: Translator
    image_optimizer: ImageOptimizer
    publisher: Publisher
    anti_spam: AntiSpamChecker
    indexer: Indexer
    sitemap: SitemapUpdater
    linker: InternalLinker
    link_verifier: LinkVerifier
