"""
Perplexity API Client

Async client for Perplexity's online search models, used for
research grounding and external link discovery.

Features:
- Answers with source citations
- Optional 7-day response cache for repeated research queries
- Cost recorded per call from reported token usage
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

from src.ai.errors import UnknownAIError
from src.ai.models import estimate_cost
from src.cache.config import CacheTTL
from src.integrations.base import AIResponse, BaseAIClient, TokenUsage

logger = logging.getLogger(__name__)


class PerplexityClient(BaseAIClient):
    """
    Async client for Perplexity API.

    Usage:
        client = PerplexityClient(api_key="your_api_key", ledger=ledger)

        result = await client.search("Latest EU regulations on e-scooters")
        # result.content = "In 2024 the EU..."
        # result.citations = ["https://...", ...]

        await client.close()
    """

    service = "perplexity"
    BASE_URL = "https://api.perplexity.ai"

    # Perplexity rate limits rarely carry a hint; let the job backoff decide
    default_retry_after = None

    DEFAULT_MODEL = "sonar"

    def __init__(self, api_key: Optional[str], default_model: str = DEFAULT_MODEL, **kwargs):
        """
        Initialize Perplexity client.

        Args:
            api_key: Perplexity API key (client disabled when empty)
            default_model: Default model (sonar, sonar-pro)
        """
        super().__init__(api_key, **kwargs)
        self.default_model = default_model
        if not api_key:
            logger.warning("Perplexity API key not configured - search disabled")

    def _search_cache_key(self, payload: Dict[str, Any]) -> str:
        params = json.dumps(payload, sort_keys=True)
        return self.cache.make_key("perplexity", hashlib.md5(params.encode()).hexdigest())

    async def search(
        self,
        query: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 2000,
        search_recency_filter: Optional[str] = None,
        use_cache: bool = False,
        operation: str = "search",
        timeout: Optional[float] = None,
    ) -> AIResponse:
        """
        Ask Perplexity a research question.

        Args:
            query: The question to ask
            system_prompt: Optional system prompt for context
            model: Model to use (overrides default)
            temperature: Response temperature (0-1)
            max_tokens: Maximum tokens in response
            search_recency_filter: Filter by recency (day, week, month, year)
            use_cache: Serve repeated queries from the 7-day cache
            operation: Ledger operation name
            timeout: Upper bound for this request

        Returns:
            AIResponse with answer text and citations
        """
        model_name = model or self.default_model

        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": query})

        payload: Dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "return_citations": True,
        }
        if search_recency_filter:
            payload["search_recency_filter"] = search_recency_filter

        cache_key = None
        if use_cache and self.cache is not None:
            cache_key = self._search_cache_key(payload)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Perplexity cache hit for query: {query[:60]}")
                return AIResponse.from_cache_dict(cached)

        async def call() -> AIResponse:
            data = await self._post("/chat/completions", payload, timeout=timeout)

            choices = data.get("choices") or []
            if not choices:
                raise UnknownAIError("perplexity returned no choices", provider=self.service, response=data)

            usage = data.get("usage") or {}
            tokens = TokenUsage(
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
            )
            return AIResponse(
                content=choices[0].get("message", {}).get("content", ""),
                citations=data.get("citations") or [],
                usage=tokens,
                cost=estimate_cost(model_name, tokens.input_tokens, tokens.output_tokens),
                model=model_name,
            )

        response = await self._execute(operation, call, model=model_name)

        if cache_key and response.success:
            await self.cache.set(cache_key, response.to_cache_dict(), ttl=CacheTTL.SEARCH_RESPONSE)

        return response
