"""
Content Repository

Domain-entity storage used by pipeline jobs: articles, translations,
press releases and dossiers, manual titles, links, publication queue
items, batches and programs.

Jobs only talk to the ContentRepository interface; the in-memory
implementation backs tests and single-process runs.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Entity types
ARTICLE = "article"
PRESS_RELEASE = "press_release"
PRESS_DOSSIER = "press_dossier"
MANUAL_TITLE = "manual_title"
PUBLICATION = "publication"
BATCH = "batch"
PROGRAM = "program"

# Entity statuses
STATUS_DRAFT = "draft"
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_SCHEDULED = "scheduled"
STATUS_PUBLISHING = "publishing"
STATUS_PUBLISHED = "published"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class ContentRepository(ABC):
    """Storage interface for pipeline entities."""

    @abstractmethod
    async def get(self, entity_type: str, entity_id: Any) -> Optional[Dict]:
        """Entity dict with its `id`, or None."""

    @abstractmethod
    async def create(self, entity_type: str, data: Dict) -> Dict:
        """Store a new entity and return it with its assigned `id`."""

    @abstractmethod
    async def update(self, entity_type: str, entity_id: Any, **fields) -> Optional[Dict]:
        """Merge fields into an entity; None when it does not exist."""

    @abstractmethod
    async def find(self, entity_type: str, limit: Optional[int] = None, **filters) -> List[Dict]:
        """Entities whose fields equal every filter value."""

    @abstractmethod
    async def get_translation(self, entity_type: str, entity_id: Any, language: str) -> Optional[Dict]:
        """Translation of an entity into a language, or None."""

    @abstractmethod
    async def save_translation(self, entity_type: str, entity_id: Any, language: str, data: Dict) -> Dict:
        """Create or replace the translation of an entity."""

    @abstractmethod
    async def get_links(self, article_id: Any, link_type: str) -> List[Dict]:
        """Internal or external links of an article."""

    @abstractmethod
    async def save_links(self, article_id: Any, link_type: str, links: List[Dict]) -> int:
        """Replace the links of a type; returns how many were stored."""

    async def mark_failed(self, entity_type: str, entity_id: Any, reason: str) -> Optional[Dict]:
        """Flag an entity as permanently failed."""
        return await self.update(entity_type, entity_id, status=STATUS_FAILED, error_message=reason)


class InMemoryContentRepository(ContentRepository):
    """Dict-backed repository."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entities: Dict[str, Dict[Any, Dict]] = {}
        self._translations: Dict[tuple, Dict] = {}
        self._links: Dict[tuple, List[Dict]] = {}
        self._ids = itertools.count(1)

    async def get(self, entity_type: str, entity_id: Any) -> Optional[Dict]:
        entity = self._entities.get(entity_type, {}).get(entity_id)
        return dict(entity) if entity is not None else None

    async def create(self, entity_type: str, data: Dict) -> Dict:
        entity = dict(data)
        entity.setdefault("id", next(self._ids))
        entity.setdefault("created_at", self._clock().isoformat())
        self._entities.setdefault(entity_type, {})[entity["id"]] = entity
        return dict(entity)

    async def update(self, entity_type: str, entity_id: Any, **fields) -> Optional[Dict]:
        entity = self._entities.get(entity_type, {}).get(entity_id)
        if entity is None:
            logger.warning(f"Cannot update missing {entity_type} {entity_id}")
            return None
        entity.update(fields)
        entity["updated_at"] = self._clock().isoformat()
        return dict(entity)

    async def find(self, entity_type: str, limit: Optional[int] = None, **filters) -> List[Dict]:
        matches = [
            dict(entity)
            for entity in self._entities.get(entity_type, {}).values()
            if all(entity.get(key) == value for key, value in filters.items())
        ]
        return matches[:limit] if limit else matches

    async def get_translation(self, entity_type: str, entity_id: Any, language: str) -> Optional[Dict]:
        translation = self._translations.get((entity_type, entity_id, language))
        return dict(translation) if translation is not None else None

    async def save_translation(self, entity_type: str, entity_id: Any, language: str, data: Dict) -> Dict:
        translation = dict(data, language=language, source_id=entity_id, translated_at=self._clock().isoformat())
        self._translations[(entity_type, entity_id, language)] = translation
        return dict(translation)

    async def get_links(self, article_id: Any, link_type: str) -> List[Dict]:
        return [dict(link) for link in self._links.get((article_id, link_type), [])]

    async def save_links(self, article_id: Any, link_type: str, links: List[Dict]) -> int:
        self._links[(article_id, link_type)] = [dict(link) for link in links]
        return len(links)
