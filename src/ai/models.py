"""
Model Selection and Pricing

Static task-to-model policy and per-1K-token price tables.
Everything here is pure: it runs before any network call and
never touches the ledger.

Tiers:
- cheap:   gpt-4o-mini  (translations, meta tags, FAQs, short articles)
- mid:     gpt-4o       (default for anything not listed)
- quality: gpt-4        (pillar content, deep research, press dossiers)
"""

import logging
import math
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# PRICE TABLES
# =============================================================================

# USD per 1K tokens
TOKEN_PRICES: Dict[str, Dict[str, float]] = {
    "gpt-4": {"input": 0.03, "output": 0.06},
    "gpt-4-turbo-preview": {"input": 0.01, "output": 0.03},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
    # Perplexity
    "sonar-small-online": {"input": 0.0002, "output": 0.0002},
    "sonar": {"input": 0.001, "output": 0.001},
    "sonar-pro": {"input": 0.005, "output": 0.005},
}

# USD per image
IMAGE_PRICES: Dict[str, Dict[str, Dict[str, float]]] = {
    "dall-e-3": {
        "standard": {"1024x1024": 0.04, "1024x1792": 0.08, "1792x1024": 0.08},
        "hd": {"1024x1024": 0.08, "1024x1792": 0.12, "1792x1024": 0.12},
    },
    "dall-e-2": {
        "standard": {"256x256": 0.016, "512x512": 0.018, "1024x1024": 0.02},
    },
}

CHEAP_MODEL = "gpt-4o-mini"
MID_MODEL = "gpt-4o"
QUALITY_MODEL = "gpt-4"

CHEAP_TASKS = frozenset({
    "translation",
    "meta",
    "faq",
    "image_prompt",
    "title",
    "hook",
    "slug",
    "conclusion",
    "summary",
    "excerpt",
    "keyword_extraction",
    "tag",
    "alt_text",
})

QUALITY_TASKS = frozenset({
    "pillar",
    "deep_research",
    "press_dossier",
})

MID_TASKS = frozenset({
    "landing",
    "comparative",
    "press_release",
    "introduction",
    "section",
    "research_synthesis",
    "manual_title",
})

ARTICLE_QUALITY_WORDS = 2500
ARTICLE_CHEAP_WORDS = 500

# Characters per token by language, used when no tokenizer is available
TOKEN_RATIOS: Dict[str, float] = {
    "en": 0.25, "fr": 0.30, "de": 0.28, "es": 0.29, "pt": 0.29,
    "it": 0.28, "nl": 0.27, "ru": 0.35, "zh": 0.50, "ja": 0.50,
    "ko": 0.45, "ar": 0.38, "hi": 0.40, "he": 0.35, "th": 0.45,
    "vi": 0.32, "pl": 0.30, "tr": 0.28,
}
DEFAULT_TOKEN_RATIO = 0.30
TOKEN_SAFETY_MARGIN = 1.10


@dataclass(frozen=True)
class ModelChoice:
    """Model chosen for a task plus its per-1K-token prices."""
    model: str
    input_price_per_1k: float
    output_price_per_1k: float
    tier: str = "mid"

    def to_dict(self) -> Dict:
        return asdict(self)


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """
    Cost in USD for a chat/search call, rounded to 6 decimals.

    Unknown models cost 0.0 (logged) so a pricing gap never blocks work.
    """
    prices = TOKEN_PRICES.get(model)
    if prices is None:
        logger.warning(f"Unknown model for cost calculation: {model}")
        return 0.0

    cost = (input_tokens / 1000) * prices["input"] + (output_tokens / 1000) * prices["output"]
    return round(cost, 6)


def image_cost(model: str, size: str, quality: str = "standard", count: int = 1) -> float:
    """Cost in USD for generated images."""
    by_quality = IMAGE_PRICES.get(model)
    if by_quality is None:
        logger.warning(f"Unknown image model for cost calculation: {model}")
        return 0.0

    prices = by_quality.get(quality) or by_quality["standard"]
    price = prices.get(size)
    if price is None:
        logger.warning(f"Unknown image size {size} for {model}")
        price = max(prices.values())
    return round(price * count, 6)


def estimate_tokens(text: str, language: str = "en") -> int:
    """Rough token count for text in the given language, never below 1."""
    ratio = TOKEN_RATIOS.get(language, DEFAULT_TOKEN_RATIO)
    return max(1, math.ceil(len(text) * ratio * TOKEN_SAFETY_MARGIN))


class ModelSelector:
    """
    Picks a model for a task type.

    Usage:
        selector = ModelSelector()
        choice = selector.select_model("article", word_count_hint=3000)
        # choice.model == "gpt-4"
    """

    def _choice(self, model: str, tier: str) -> ModelChoice:
        prices = TOKEN_PRICES[model]
        return ModelChoice(
            model=model,
            input_price_per_1k=prices["input"],
            output_price_per_1k=prices["output"],
            tier=tier,
        )

    def select_model(self, task_type: str, word_count_hint: Optional[int] = None) -> ModelChoice:
        """
        Select the model for a task.

        Args:
            task_type: Task identifier (article, translation, pillar, ...)
            word_count_hint: Expected length, only used for articles

        Returns:
            ModelChoice with model id and price table
        """
        task = (task_type or "").lower()

        if task in CHEAP_TASKS:
            return self._choice(CHEAP_MODEL, "cheap")

        if task in QUALITY_TASKS:
            return self._choice(QUALITY_MODEL, "quality")

        if task == "article":
            if word_count_hint is not None and word_count_hint > ARTICLE_QUALITY_WORDS:
                return self._choice(QUALITY_MODEL, "quality")
            if word_count_hint is not None and word_count_hint < ARTICLE_CHEAP_WORDS:
                return self._choice(CHEAP_MODEL, "cheap")
            return self._choice(MID_MODEL, "mid")

        if task not in MID_TASKS:
            logger.debug(f"Unknown task type '{task_type}', using {MID_MODEL}")

        return self._choice(MID_MODEL, "mid")

    def estimate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        return estimate_cost(model, input_tokens, output_tokens)

    def savings_report(self, usage: List[Dict]) -> Dict:
        """
        Compare actual spend with what the same calls would cost on the quality tier.

        Each usage row needs model_used, input_tokens and output_tokens.
        """
        total_current = 0.0
        total_quality = 0.0

        for row in usage:
            total_current += estimate_cost(row["model_used"], row["input_tokens"], row["output_tokens"])
            total_quality += estimate_cost(QUALITY_MODEL, row["input_tokens"], row["output_tokens"])

        savings = total_quality - total_current
        percentage = (savings / total_quality) * 100 if total_quality > 0 else 0.0

        return {
            "total_cost_current": round(total_current, 2),
            "total_cost_if_all_quality": round(total_quality, 2),
            "total_savings": round(savings, 2),
            "savings_percentage": round(percentage, 1),
            "tasks_analyzed": len(usage),
            "period_projection": {
                "monthly": round(savings * 30, 2),
                "yearly": round(savings * 365, 2),
            },
        }
