"""
OpenAI Chat Completions Client

Required provider: a missing API key is a configuration error at
construction time, unlike the optional DALL-E and Perplexity clients.

Deterministic calls can go through chat_with_cache(), which serves
repeated {model, messages, temperature, max_tokens} requests from the
shared cache at zero cost.
"""

import hashlib
import json
import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from src.ai.errors import ConfigurationError, UnknownAIError
from src.ai.models import estimate_cost
from src.cache.config import CacheTTL
from src.integrations.base import AIResponse, BaseAIClient, TokenUsage

logger = logging.getLogger(__name__)


class GptClient(BaseAIClient):
    """
    Async client for OpenAI chat completions.

    Usage:
        client = GptClient(api_key="sk-...", ledger=ledger, cache=cache)
        response = await client.chat([{"role": "user", "content": "Hello"}], model="gpt-4o-mini")
        if response.success:
            print(response.content, response.cost)
    """

    service = "openai"
    BASE_URL = "https://api.openai.com/v1"

    DEFAULT_MODEL = "gpt-4o"
    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_MAX_TOKENS = 2000

    # Above this temperature cached answers are probably not what callers want
    CACHE_TEMPERATURE_WARNING = 0.5

    def __init__(self, api_key: Optional[str], **kwargs):
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured", provider=self.service)
        super().__init__(api_key, **kwargs)

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        response_format: Optional[Dict[str, Any]] = None,
        operation: str = "chat",
        timeout: Optional[float] = None,
    ) -> AIResponse:
        """
        Send a chat completion request.

        Args:
            messages: OpenAI-style message list
            model: Model id (defaults to gpt-4o)
            temperature: Sampling temperature
            max_tokens: Maximum output tokens
            response_format: e.g. {"type": "json_object"}
            operation: Ledger operation name
            timeout: Upper bound for this request (job timeout)

        Returns:
            AIResponse with content, usage and actual cost
        """
        model = model or self.DEFAULT_MODEL
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format

        async def call() -> AIResponse:
            data = await self._post("/chat/completions", payload, timeout=timeout)

            choices = data.get("choices") or []
            if not choices:
                raise UnknownAIError("openai returned no choices", provider=self.service, response=data)

            usage = data.get("usage") or {}
            tokens = TokenUsage(
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
            )
            used_model = data.get("model") or model

            return AIResponse(
                content=choices[0].get("message", {}).get("content", ""),
                usage=tokens,
                # Price by the requested model: providers report dated snapshots
                cost=estimate_cost(model, tokens.input_tokens, tokens.output_tokens),
                model=used_model,
            )

        return await self._execute(operation, call, model=model)

    def cache_key(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        params = json.dumps(
            {"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens},
            sort_keys=True,
        )
        return self.cache.make_key("gpt", hashlib.md5(params.encode()).hexdigest())

    async def chat_with_cache(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        ttl: timedelta = CacheTTL.AI_RESPONSE,
        **kwargs,
    ) -> AIResponse:
        """
        chat() with an idempotent response cache.

        A hit costs nothing, records nothing and is marked from_cache=True.
        """
        model = model or self.DEFAULT_MODEL

        if self.cache is None:
            return await self.chat(messages, model, temperature, max_tokens, **kwargs)

        if temperature > self.CACHE_TEMPERATURE_WARNING:
            logger.warning(
                f"chat_with_cache used with temperature {temperature}: "
                f"cached answers will repeat non-deterministic output"
            )

        key = self.cache_key(messages, model, temperature, max_tokens)
        cached = await self.cache.get(key)
        if cached is not None:
            logger.info(f"GPT response cache hit ({model})")
            return AIResponse.from_cache_dict(cached)

        response = await self.chat(messages, model, temperature, max_tokens, **kwargs)
        if response.success:
            await self.cache.set(key, response.to_cache_dict(), ttl=ttl)
        return response

    async def invalidate_cache(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> bool:
        if self.cache is None:
            return False
        key = self.cache_key(messages, model or self.DEFAULT_MODEL, temperature, max_tokens)
        return await self.cache.delete(key)


def parse_json_content(content: Optional[str]) -> Optional[Any]:
    """Decode a JSON answer, tolerating ```json fences around it."""
    if not content:
        return None
    cleaned = re.sub(r"^\s*```(?:json)?\s*|\s*```\s*$", "", content.strip())
    try:
        return json.loads(cleaned)
    except ValueError:
        logger.warning(f"Could not parse JSON response: {cleaned[:200]}")
        return None
