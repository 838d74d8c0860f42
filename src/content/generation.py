"""
Gateway-backed Generation and Translation

Thin prompt builders over AIGateway. Prompt wording is intentionally
minimal; the pipeline cares about model choice, cost and failure
classification, not template details.
"""

import json
import logging
import re
from typing import Dict, List, Optional

from src.content.services import ContentGenerator, Translator
from src.integrations.gpt import parse_json_content

logger = logging.getLogger(__name__)

# content type -> task type used for model selection
TASK_TYPES = {
    "article": "article",
    "landing": "landing",
    "comparative": "comparative",
    "manual_title": "manual_title",
    "press_release": "press_release",
    "press_dossier": "press_dossier",
}

DEFAULT_WORD_COUNTS = {
    "article": 1500,
    "landing": 800,
    "comparative": 2000,
    "manual_title": 1500,
}

TRANSLATABLE_FIELDS = ("title", "excerpt", "content", "meta_title", "meta_description")

# ~1.4 tokens per word plus JSON envelope
TOKENS_PER_WORD = 1.4
MAX_OUTPUT_TOKENS = 8000


def count_words(text: str) -> int:
    return len(re.findall(r"\w+", re.sub(r"<[^>]+>", " ", text or "")))


def estimate_quality(draft: Dict, target_words: int) -> float:
    """
    Rough 0-100 quality score from length and structure.

    Length against target counts for 60 points, headings for 20,
    meta fields for 20.
    """
    words = draft.get("word_count") or count_words(draft.get("content", ""))
    length_score = min(1.0, words / target_words) * 60 if target_words else 60

    headings = len(re.findall(r"<h2|^## ", draft.get("content", ""), flags=re.MULTILINE))
    structure_score = min(headings, 4) * 5

    meta_score = 0.0
    title = draft.get("meta_title") or ""
    description = draft.get("meta_description") or ""
    if 0 < len(title) <= 60:
        meta_score += 10
    if 0 < len(description) <= 160:
        meta_score += 10

    return round(length_score + structure_score + meta_score, 1)


class GatewayContentGenerator(ContentGenerator):
    """Generates content through AIGateway.complete()."""

    def __init__(self, gateway):
        self.gateway = gateway

    def _messages(self, content_type: str, params: Dict, word_count: int) -> List[Dict[str, str]]:
        language = params.get("language", "fr")
        keyword = params.get("keyword") or params.get("title", "")
        system = (
            f"You write {content_type.replace('_', ' ')} content in language '{language}'. "
            "Answer with a JSON object with keys: title, excerpt, content (HTML with <h2> sections), "
            "meta_title (max 60 chars), meta_description (max 160 chars)."
        )
        user = (
            f"Topic: {keyword}\n"
            f"Country: {params.get('country', '')}\n"
            f"Target length: about {word_count} words."
        )
        if params.get("research"):
            user += f"\n\nResearch notes:\n{params['research']}"
        return [{"role": "system", "content": system}, {"role": "user", "content": user}]

    async def generate(self, content_type: str, params: Dict, timeout: Optional[float] = None) -> Dict:
        word_count = int(params.get("word_count") or DEFAULT_WORD_COUNTS.get(content_type, 1500))
        task_type = TASK_TYPES.get(content_type, content_type)

        response = await self.gateway.complete(
            task_type,
            self._messages(content_type, params, word_count),
            word_count_hint=word_count,
            max_tokens=min(MAX_OUTPUT_TOKENS, int(word_count * TOKENS_PER_WORD) + 500),
            timeout=timeout,
            language=params.get("language", "en"),
            response_format={"type": "json_object"},
        )
        response.raise_for_error()

        draft = parse_json_content(response.content)
        if not isinstance(draft, dict):
            draft = {"title": params.get("keyword") or params.get("title", ""), "content": response.content or ""}

        draft["word_count"] = count_words(draft.get("content", ""))
        draft["quality_score"] = estimate_quality(draft, word_count)
        draft["model"] = response.model
        draft["cost"] = response.cost
        return draft


class GatewayTranslator(Translator):
    """Translates entity text fields with the cheap translation tier."""

    def __init__(self, gateway):
        self.gateway = gateway

    async def translate(self, entity: Dict, target_language: str, timeout: Optional[float] = None) -> Dict:
        fields = {name: entity[name] for name in TRANSLATABLE_FIELDS if entity.get(name)}
        if not fields:
            return {}

        messages = [
            {
                "role": "system",
                "content": (
                    f"Translate every value of the JSON object into language '{target_language}'. "
                    "Keep HTML tags and JSON keys unchanged. Answer with the JSON object only."
                ),
            },
            {"role": "user", "content": json.dumps(fields, ensure_ascii=False)},
        ]
        source_text = " ".join(fields.values())
        response = await self.gateway.complete(
            "translation",
            messages,
            temperature=0.3,
            max_tokens=min(MAX_OUTPUT_TOKENS, int(count_words(source_text) * TOKENS_PER_WORD * 1.3) + 200),
            timeout=timeout,
            language=entity.get("language", "en"),
            response_format={"type": "json_object"},
        )
        response.raise_for_error()

        translated = parse_json_content(response.content)
        if not isinstance(translated, dict):
            translated = {"content": response.content or ""}

        result = {name: translated.get(name, "") for name in fields}
        result["cost"] = response.cost
        return result
