"""
DALL-E Image Client

Optional provider: without a key the client is disabled and calls
return a ConfigurationError result. Cost comes from the static
per-image price table, not from token usage.
"""

import logging
import re
from typing import Optional

from src.ai.errors import UnknownAIError
from src.ai.models import image_cost
from src.integrations.base import AIResponse, BaseAIClient, TokenUsage

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 4000


def sanitize_prompt(prompt: str) -> str:
    """Strip control characters, collapse whitespace and cap the length."""
    cleaned = re.sub(r"[\x00-\x1f\x7f]", " ", prompt or "")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned[:MAX_PROMPT_LENGTH]


class DalleClient(BaseAIClient):
    """
    Async client for OpenAI image generation.

    Usage:
        client = DalleClient(api_key="sk-...", ledger=ledger)
        response = await client.generate_image("A lighthouse at dawn")
        response.image_url
    """

    service = "dalle"
    BASE_URL = "https://api.openai.com/v1"

    DEFAULT_MODEL = "dall-e-3"
    DEFAULT_SIZE = "1792x1024"
    DEFAULT_QUALITY = "standard"
    DEFAULT_STYLE = "natural"

    def __init__(self, api_key: Optional[str], **kwargs):
        super().__init__(api_key, **kwargs)
        if not api_key:
            logger.warning("DALL-E API key not configured - image generation disabled")

    async def generate_image(
        self,
        prompt: str,
        model: str = DEFAULT_MODEL,
        size: str = DEFAULT_SIZE,
        quality: str = DEFAULT_QUALITY,
        style: str = DEFAULT_STYLE,
        operation: str = "generate",
        timeout: Optional[float] = None,
    ) -> AIResponse:
        """
        Generate one image.

        Returns:
            AIResponse with image_url, revised_prompt and per-image cost
        """
        payload = {
            "model": model,
            "prompt": sanitize_prompt(prompt),
            "n": 1,
            "size": size,
            "response_format": "url",
        }
        if model == "dall-e-3":
            payload["quality"] = quality
            payload["style"] = style

        async def call() -> AIResponse:
            data = await self._post("/images/generations", payload, timeout=timeout)

            images = data.get("data") or []
            if not images or not images[0].get("url"):
                raise UnknownAIError("dalle returned no image", provider=self.service, response=data)

            return AIResponse(
                image_url=images[0]["url"],
                revised_prompt=images[0].get("revised_prompt"),
                usage=TokenUsage(),
                cost=image_cost(model, size, quality),
                model=model,
            )

        return await self._execute(operation, call, model=model)
