"""
Link Collaborators

- KeywordOverlapLinker: internal link suggestions by title overlap
- HttpLinkVerifier: external link health checks
"""

import logging
import re
from typing import Dict, List, Optional, Set

import httpx

from src.content.services import InternalLinker, LinkVerifier

logger = logging.getLogger(__name__)

VALID_STATUS_CODES = frozenset({200, 301, 302, 307, 308})

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "of", "in", "to", "for", "with", "on",
    "le", "la", "les", "de", "des", "du", "un", "une", "et", "en", "pour", "au", "aux",
    "der", "die", "das", "und", "el", "los", "las", "y", "para",
})


def _terms(text: str) -> Set[str]:
    words = re.findall(r"\w+", (text or "").lower())
    return {w for w in words if len(w) > 2 and w not in STOPWORDS}


class KeywordOverlapLinker(InternalLinker):
    """Ranks same-language candidates by Jaccard overlap of title terms."""

    def __init__(self, min_score: float = 0.1):
        self.min_score = min_score

    def suggest(self, article: Dict, candidates: List[Dict], max_links: int = 5) -> List[Dict]:
        source = _terms(article.get("title", "")) | _terms(article.get("keyword", ""))
        if not source:
            return []

        scored = []
        for candidate in candidates:
            if candidate.get("id") == article.get("id"):
                continue
            if candidate.get("language") != article.get("language"):
                continue
            target = _terms(candidate.get("title", ""))
            if not target:
                continue
            score = len(source & target) / len(source | target)
            if score >= self.min_score:
                scored.append({
                    "target_id": candidate["id"],
                    "anchor": candidate.get("title", ""),
                    "score": round(score, 3),
                })

        scored.sort(key=lambda link: link["score"], reverse=True)
        return scored[:max_links]


class HttpLinkVerifier(LinkVerifier):
    """HEAD request, falling back to GET when HEAD is refused."""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def verify(self, url: str) -> Dict:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.head(url)
                if response.status_code in (405, 501):
                    response = await client.get(url)
            except httpx.TimeoutException:
                return {"url": url, "ok": False, "status_code": 0, "error": "connection_timeout"}
            except httpx.HTTPError as e:
                return {"url": url, "ok": False, "status_code": 0, "error": str(e)}

        ok = response.status_code in VALID_STATUS_CODES
        if not ok:
            logger.info(f"Broken link {url}: HTTP {response.status_code}")
        return {"url": url, "ok": ok, "status_code": response.status_code}
