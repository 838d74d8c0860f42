"""
Content Reuse Cache

Similarity-based reuse layer in front of text generation. When a
keyword is close enough to one already generated for the same
(language, country) bucket, the stored content is adapted to the new
keyword instead of paying for a fresh generation.

Buckets live in the shared cache backend as hashes keyed by the
normalized keyword. Similarity is computed on the lowercased
original keywords, not on the normalized keys.
"""

import inspect
import logging
import re
import time
import unicodedata
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from difflib import SequenceMatcher
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from src.cache.backend import CacheBackend
from src.cache.config import CacheTTL

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.95
MAX_ENTRIES_PER_BUCKET = 10_000
DEFAULT_CONTENT_TYPE = "article"

# Estimated generation cost avoided by a hit, per language (USD)
SAVING_BY_LANGUAGE: Dict[str, float] = {
    "fr": 0.45,
    "en": 0.42,
    "de": 0.48,
    "es": 0.40,
    "it": 0.40,
    "pt": 0.40,
    "ar": 0.50,
    "zh": 0.35,
    "ja": 0.38,
}
DEFAULT_SAVING = 0.45

# First matching rule wins
SINGULAR_RULES: Dict[str, list] = {
    "fr": [
        (re.compile(r"eaux$", re.I), "eau"),
        (re.compile(r"aux$", re.I), "al"),
        (re.compile(r"oux$", re.I), "ou"),
        (re.compile(r"s$", re.I), ""),
    ],
    "en": [
        (re.compile(r"ies$", re.I), "y"),
        (re.compile(r"ves$", re.I), "fe"),
        (re.compile(r"oes$", re.I), "o"),
        (re.compile(r"ses$", re.I), "s"),
        (re.compile(r"s$", re.I), ""),
    ],
    "es": [
        (re.compile(r"ces$", re.I), "z"),
        (re.compile(r"([aeiou])s$", re.I), r"\1"),
    ],
    "de": [
        (re.compile(r"en$", re.I), ""),
    ],
}

MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

STALE_YEAR_PATTERN = re.compile(r"\b202[0-4]\b")
UPDATED_DATE_PATTERN = re.compile(
    r"(mis à jour|actualisé|dernière mise à jour|last updated|updated)[\s:]+[a-zéû]+\s+\d{4}",
    re.IGNORECASE,
)

Generator = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass
class CachedResult:
    """Outcome of a reuse lookup."""
    content: Any
    from_cache: bool
    similarity: float = 0.0
    cached_keyword: Optional[str] = None
    saving: float = 0.0
    generation_time: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


# =============================================================================
# KEYWORD HELPERS
# =============================================================================

def remove_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def singularize(text: str, language: str) -> str:
    for pattern, replacement in SINGULAR_RULES.get(language, []):
        singular = pattern.sub(replacement, text)
        if singular != text:
            return singular
    return text


def normalize_keyword(keyword: str, language: str) -> str:
    """
    Storage key for a keyword.

    Only the end of the whole string is singularized:
    "Hôtels Paris Bureaux" (fr) -> "hotels paris bureau".
    """
    normalized = keyword.lower()
    normalized = remove_accents(normalized)
    normalized = singularize(normalized, language)
    normalized = re.sub(r"[^a-z0-9\s\-]", "", normalized)
    return re.sub(r"\s+", " ", normalized.strip())


def similarity(first: str, second: str) -> float:
    """Character-level match ratio on lowercased strings (0.0 - 1.0)."""
    a = first.lower()
    b = second.lower()
    if a == b:
        return 1.0
    return SequenceMatcher(None, a, b, autojunk=False).ratio()


def replace_keyword_preserving_case(content: str, old: str, new: str) -> str:
    """Replace old with new, keeping Title / UPPER / lower casing of each match."""
    if not old:
        return content

    def _swap(match: re.Match) -> str:
        found = match.group(0)
        if found == old.lower().capitalize():
            return new.lower().capitalize()
        if found == old.upper():
            return new.upper()
        return new.lower()

    return re.sub(re.escape(old), _swap, content, flags=re.IGNORECASE)


class ContentCache:
    """
    Similarity-based content reuse.

    Usage:
        cache = ContentCache(backend)
        result = await cache.get_cached_or_generate(
            "visa thailande", "fr", "FR", lambda: generate_article(...)
        )
        if result.from_cache:
            ...
    """

    def __init__(
        self,
        backend: CacheBackend,
        threshold: float = SIMILARITY_THRESHOLD,
        max_entries: int = MAX_ENTRIES_PER_BUCKET,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.backend = backend
        self.threshold = threshold
        self.max_entries = max_entries
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def bucket_key(self, language: str, country: str, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        """Buckets are per language, country and content type; articles keep the bare key."""
        if content_type == DEFAULT_CONTENT_TYPE:
            return self.backend.make_key("content_cache", language, country)
        return self.backend.make_key("content_cache", language, country, content_type)

    async def get_cached_or_generate(
        self,
        keyword: str,
        language: str,
        country: str,
        generator: Generator,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> CachedResult:
        """
        Reuse similar content or generate fresh content.

        Args:
            keyword: Requested keyword
            language: Language code
            country: Country code
            generator: Zero-arg callable producing the content (sync or async)
            content_type: Only content of the same type is reused

        Returns:
            CachedResult; generator is not called on a hit
        """
        start = time.time()
        normalized = normalize_keyword(keyword, language)
        best = await self._find_most_similar(keyword, language, country, content_type)

        if best and best["similarity"] >= self.threshold:
            adapted = self.adapt_content(best["content"], keyword, best["original_keyword"])
            saving = SAVING_BY_LANGUAGE.get(language, DEFAULT_SAVING)

            logger.info(
                f"Content cache HIT for '{keyword}' ({language}/{country}): "
                f"reused '{best['original_keyword']}' at {best['similarity'] * 100:.2f}% "
                f"similarity, saved ~${saving:.4f}"
            )
            return CachedResult(
                content=adapted,
                from_cache=True,
                similarity=best["similarity"],
                cached_keyword=best["original_keyword"],
                saving=saving,
                generation_time=time.time() - start,
            )

        reason = f"best similarity {best['similarity'] * 100:.0f}%" if best else "no similar content"
        logger.info(f"Content cache MISS for '{keyword}' ({language}/{country}): {reason}")

        generated = generator()
        if inspect.isawaitable(generated):
            generated = await generated

        await self._store(normalized, keyword, generated, language, country, content_type)

        return CachedResult(
            content=generated,
            from_cache=False,
            generation_time=time.time() - start,
        )

    async def _find_most_similar(
        self, keyword: str, language: str, country: str, content_type: str = DEFAULT_CONTENT_TYPE
    ) -> Optional[Dict]:
        entries = await self.backend.hgetall(self.bucket_key(language, country, content_type))
        best: Optional[Dict] = None

        for entry in entries.values():
            score = similarity(keyword, entry["original_keyword"])
            if best is None or score > best["similarity"]:
                best = {
                    "content": entry["content"],
                    "original_keyword": entry["original_keyword"],
                    "similarity": score,
                    "created_at": entry.get("created_at"),
                }

        return best

    async def _store(
        self,
        normalized: str,
        keyword: str,
        content: Any,
        language: str,
        country: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ):
        bucket = self.bucket_key(language, country, content_type)

        async with self.backend.lock(f"{bucket}:lock"):
            entries = await self.backend.hgetall(bucket)

            if normalized not in entries and len(entries) >= self.max_entries:
                overflow = len(entries) - self.max_entries + 1
                oldest = sorted(entries.items(), key=lambda item: item[1].get("created_at") or "")[:overflow]
                await self.backend.hdel(bucket, *[key for key, _ in oldest])
                logger.debug(f"Content cache bucket {language}/{country} full, evicted {overflow} entry")

            await self.backend.hset(
                bucket,
                normalized,
                {
                    "original_keyword": keyword,
                    "content": content,
                    "created_at": self._clock().isoformat(),
                    "language": language,
                    "country": country,
                    "content_type": content_type,
                },
                ttl=CacheTTL.CONTENT,
            )

        logger.info(f"Content cache stored '{keyword}' as '{normalized}' ({language}/{country})")

    def adapt_content(self, content: Any, new_keyword: str, old_keyword: str) -> Any:
        """Adapt cached content to a new keyword and refresh stale dates."""
        if isinstance(content, dict):
            return {k: self.adapt_content(v, new_keyword, old_keyword) for k, v in content.items()}
        if not isinstance(content, str):
            return content

        now = self._clock()
        adapted = replace_keyword_preserving_case(content, old_keyword, new_keyword)
        adapted = STALE_YEAR_PATTERN.sub(str(now.year), adapted)
        adapted = UPDATED_DATE_PATTERN.sub(
            lambda m: f"{m.group(1)} {MONTHS[now.month - 1]} {now.year}",
            adapted,
        )
        return adapted

    # =========================================================================
    # Statistics and maintenance
    # =========================================================================

    async def statistics(self, language: str, country: str, content_type: str = DEFAULT_CONTENT_TYPE) -> Dict:
        entries = await self.backend.hgetall(self.bucket_key(language, country, content_type))
        created = sorted(e.get("created_at") for e in entries.values() if e.get("created_at"))

        return {
            "language": language,
            "country": country,
            "content_type": content_type,
            "cached_count": len(entries),
            "max_capacity": self.max_entries,
            "fill_percentage": round(len(entries) / self.max_entries * 100, 2),
            "oldest_entry": created[0] if created else None,
            "newest_entry": created[-1] if created else None,
        }

    async def clear(self, language: str, country: str, content_type: str = DEFAULT_CONTENT_TYPE) -> bool:
        cleared = await self.backend.delete(self.bucket_key(language, country, content_type))
        logger.info(f"Content cache cleared for {language}/{country}")
        return cleared
