"""
AI Gateway

Single entry point for budget-aware AI calls.

Each call:
1. Selects the model for the task (ModelSelector)
2. Estimates the cost before any network traffic
3. Asks the BudgetGovernor whether the call may proceed
4. Delegates to the provider client, which records the actual cost

A denied call returns an AIResponse carrying BudgetExceededError;
no request leaves the process and nothing is recorded.
"""

import logging
from typing import Dict, List, Optional

from src.ai.errors import BudgetExceededError, ConfigurationError
from src.ai.models import ModelSelector, estimate_tokens, image_cost
from src.integrations.base import AIResponse, RetryConfig
from src.integrations.dalle import DalleClient
from src.integrations.gpt import GptClient
from src.integrations.perplexity import PerplexityClient

logger = logging.getLogger(__name__)


class AIGateway:
    """
    Budget-aware facade over the provider clients.

    Usage:
        gateway = build_gateway(settings, cache, ledger, governor)
        response = await gateway.complete("article", messages, word_count_hint=1500)
        response.raise_for_error()
    """

    def __init__(
        self,
        gpt: GptClient,
        governor,
        dalle: Optional[DalleClient] = None,
        perplexity: Optional[PerplexityClient] = None,
        selector: Optional[ModelSelector] = None,
    ):
        self.gpt = gpt
        self.governor = governor
        self.dalle = dalle
        self.perplexity = perplexity
        self.selector = selector or ModelSelector()

    async def _admit(self, service: str, operation: str, model: str, estimated_cost: float) -> Optional[AIResponse]:
        """Return a denial response when the governor refuses the call."""
        if await self.governor.can_proceed(estimated_cost, service):
            return None

        error = BudgetExceededError(
            f"Budget exceeded: {service}/{operation} (estimated ${estimated_cost:.4f}) denied",
            provider=service,
        )
        return AIResponse.failure(error, service, operation, model)

    async def complete(
        self,
        task_type: str,
        messages: List[Dict[str, str]],
        word_count_hint: Optional[int] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        cacheable: bool = False,
        timeout: Optional[float] = None,
        language: str = "en",
        response_format: Optional[Dict] = None,
    ) -> AIResponse:
        """
        Chat completion for a task type.

        Args:
            task_type: Task identifier driving model selection
            messages: OpenAI-style message list
            word_count_hint: Expected article length
            temperature: Sampling temperature
            max_tokens: Maximum output tokens (also the output estimate)
            cacheable: Serve identical requests from the response cache
            timeout: Upper bound for the provider request (job timeout)
            language: Prompt language, for the token estimate
            response_format: Passed through to the chat API
        """
        choice = self.selector.select_model(task_type, word_count_hint)

        prompt_text = "\n".join(message.get("content", "") for message in messages)
        input_tokens = estimate_tokens(prompt_text, language)
        estimated = self.selector.estimate_cost(choice.model, input_tokens, max_tokens)

        denied = await self._admit(self.gpt.service, task_type, choice.model, estimated)
        if denied is not None:
            return denied

        logger.debug(
            f"AI complete: task={task_type}, model={choice.model} ({choice.tier}), "
            f"estimated=${estimated:.4f}"
        )

        kwargs = {"operation": task_type, "timeout": timeout, "response_format": response_format}
        if cacheable:
            return await self.gpt.chat_with_cache(
                messages, model=choice.model, temperature=temperature, max_tokens=max_tokens, **kwargs
            )
        return await self.gpt.chat(
            messages, model=choice.model, temperature=temperature, max_tokens=max_tokens, **kwargs
        )

    async def generate_image(
        self,
        prompt: str,
        size: str = DalleClient.DEFAULT_SIZE,
        quality: str = DalleClient.DEFAULT_QUALITY,
        style: str = DalleClient.DEFAULT_STYLE,
        model: str = DalleClient.DEFAULT_MODEL,
        operation: str = "generate",
        timeout: Optional[float] = None,
    ) -> AIResponse:
        """Generate one image at the static table price."""
        if self.dalle is None:
            error = ConfigurationError("dalle is not configured", provider="dalle")
            return AIResponse.failure(error, "dalle", operation, model)

        estimated = image_cost(model, size, quality)
        denied = await self._admit(self.dalle.service, operation, model, estimated)
        if denied is not None:
            return denied

        return await self.dalle.generate_image(
            prompt, model=model, size=size, quality=quality, style=style, operation=operation, timeout=timeout
        )

    async def search(
        self,
        query: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        recency: Optional[str] = None,
        max_tokens: int = 2000,
        use_cache: bool = False,
        operation: str = "search",
        timeout: Optional[float] = None,
    ) -> AIResponse:
        """Research query with citations."""
        model = model or PerplexityClient.DEFAULT_MODEL
        if self.perplexity is None:
            error = ConfigurationError("perplexity is not configured", provider="perplexity")
            return AIResponse.failure(error, "perplexity", operation, model)

        input_tokens = estimate_tokens(f"{system_prompt or ''}\n{query}")
        estimated = self.selector.estimate_cost(model, input_tokens, max_tokens)
        denied = await self._admit(self.perplexity.service, operation, model, estimated)
        if denied is not None:
            return denied

        return await self.perplexity.search(
            query,
            system_prompt=system_prompt,
            model=model,
            max_tokens=max_tokens,
            search_recency_filter=recency,
            use_cache=use_cache,
            operation=operation,
            timeout=timeout,
        )

    async def close(self):
        for client in (self.gpt, self.dalle, self.perplexity):
            if client is not None:
                await client.close()


def build_gateway(settings, cache, ledger, governor, transport=None) -> AIGateway:
    """
    Build the gateway and its provider clients from settings.

    Raises:
        ConfigurationError: OPENAI_API_KEY is missing
    """
    common = dict(
        ledger=ledger,
        cache=cache,
        verify_ssl=settings.verify_ssl,
        connect_timeout=settings.OPENAI_CONNECT_TIMEOUT,
        circuit_threshold=settings.AI_CIRCUIT_BREAKER_THRESHOLD,
        circuit_timeout=settings.AI_CIRCUIT_BREAKER_TIMEOUT,
        transport=transport,
    )
    retry_config = RetryConfig(max_retries=settings.AI_INLINE_RETRIES)

    gpt = GptClient(settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT, retry_config=retry_config, **common)
    dalle = DalleClient(
        settings.DALLE_API_KEY or settings.OPENAI_API_KEY,
        timeout=settings.DALLE_TIMEOUT,
        retry_config=RetryConfig(max_retries=settings.AI_INLINE_RETRIES),
        **common,
    )
    perplexity = PerplexityClient(
        settings.PERPLEXITY_API_KEY,
        timeout=settings.PERPLEXITY_TIMEOUT,
        retry_config=RetryConfig(max_retries=settings.AI_INLINE_RETRIES),
        **common,
    )

    logger.info(
        f"AI gateway ready: openai=enabled, "
        f"dalle={'enabled' if dalle.is_available() else 'disabled'}, "
        f"perplexity={'enabled' if perplexity.is_available() else 'disabled'}"
    )
    return AIGateway(gpt, governor, dalle=dalle, perplexity=perplexity)
