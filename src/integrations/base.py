"""
Shared AI Provider Client

Common plumbing for the OpenAI chat, DALL-E and Perplexity clients:
- httpx.AsyncClient with bearer auth, timeouts and TLS override
- Error classification into the src.ai.errors taxonomy
- Per-provider circuit breaker shared through the cache backend
- Optional inline retries (off by default: jobs own retry policy)
- Exactly one ledger entry per successful, non-cached call

Calls never raise provider errors: they return an AIResponse with
success=False and the classified error attached.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from src.ai.errors import (
    AIError,
    CircuitOpenError,
    ConfigurationError,
    ServerError,
    classify_http_error,
    classify_transport_error,
    MAX_RETRY_AFTER,
)
from src.cache.backend import CacheBackend
from src.cache.config import CacheTTL

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    """Token counts reported by the provider."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> Dict:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class AIResponse:
    """Normalized result of a provider call."""
    content: Optional[str] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    cost: float = 0.0
    model: Optional[str] = None
    service: Optional[str] = None
    operation: Optional[str] = None
    citations: List[str] = field(default_factory=list)
    image_url: Optional[str] = None
    revised_prompt: Optional[str] = None
    from_cache: bool = False
    success: bool = True
    error: Optional[AIError] = None

    @classmethod
    def failure(
        cls,
        error: AIError,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        model: Optional[str] = None,
    ) -> "AIResponse":
        return cls(
            service=service,
            operation=operation,
            model=model,
            success=False,
            error=error,
        )

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)

    def raise_for_error(self):
        """Raise the classified error, if any."""
        if self.error is not None:
            raise self.error

    def to_cache_dict(self) -> Dict:
        data = asdict(self)
        data.pop("error", None)
        data["usage"] = self.usage.to_dict()
        return data

    @classmethod
    def from_cache_dict(cls, data: Dict) -> "AIResponse":
        usage = data.get("usage") or {}
        return cls(
            content=data.get("content"),
            usage=TokenUsage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
            cost=0.0,
            model=data.get("model"),
            service=data.get("service"),
            operation=data.get("operation"),
            citations=data.get("citations") or [],
            image_url=data.get("image_url"),
            revised_prompt=data.get("revised_prompt"),
            from_cache=True,
        )


@dataclass
class RetryConfig:
    """Inline retry behaviour. max_retries=0 leaves retries to the job queue."""

    max_retries: int = 0
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    max_jitter: float = 0.5

    def delay_for(self, attempt: int, error: AIError) -> float:
        if error.retry_after:
            return min(error.retry_after, MAX_RETRY_AFTER)
        delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
        return delay + random.uniform(0, self.max_jitter)


class ProviderCircuitBreaker:
    """
    Circuit breaker per AI provider, shared by all workers through the cache.

    Consecutive server failures within the failure window open the circuit
    for `timeout` seconds; calls fail fast with CircuitOpenError meanwhile.
    """

    def __init__(
        self,
        cache: Optional[CacheBackend],
        service: str,
        threshold: int = 5,
        timeout: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.service = service
        self.threshold = threshold
        self.timeout = timeout
        self._clock = clock

    def _key(self, suffix: str) -> str:
        return self.cache.make_key("ai_circuit", self.service, suffix)

    async def open_remaining(self) -> Optional[float]:
        """Seconds until the circuit closes, or None when closed."""
        if self.cache is None:
            return None
        open_until = await self.cache.get(self._key("open_until"))
        if open_until is None:
            return None
        remaining = float(open_until) - self._clock()
        return remaining if remaining > 0 else None

    async def record_success(self):
        if self.cache is not None:
            await self.cache.delete(self._key("failures"))

    async def record_failure(self):
        if self.cache is None:
            return
        failures = await self.cache.incr(self._key("failures"), 1, ttl=CacheTTL.CIRCUIT_FAILURES)
        if failures is not None and failures >= self.threshold:
            await self.cache.set(self._key("open_until"), self._clock() + self.timeout, ttl=self.timeout)
            await self.cache.delete(self._key("failures"))
            logger.warning(
                f"{self.service} circuit breaker opened after {failures} failures. "
                f"Calls fail fast for {self.timeout} seconds."
            )


class BaseAIClient:
    """
    Base async client for an AI provider.

    Subclasses set `service` and `BASE_URL` and build calls with `_post`,
    wrapping them in `_execute(operation, call)`.
    """

    service: str = ""
    BASE_URL: str = ""

    # 429 without a hint waits this long
    default_retry_after: Optional[float] = 60.0

    def __init__(
        self,
        api_key: Optional[str],
        ledger=None,
        cache: Optional[CacheBackend] = None,
        timeout: float = 60.0,
        connect_timeout: float = 10.0,
        verify_ssl: bool = True,
        retry_config: Optional[RetryConfig] = None,
        circuit_threshold: int = 5,
        circuit_timeout: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize provider client.

        Args:
            api_key: Provider API key (client disabled when empty)
            ledger: CostLedger receiving one event per successful call
            cache: Shared cache backend (circuit breaker, response cache)
            timeout: Request timeout in seconds
            connect_timeout: Connection timeout in seconds
            verify_ssl: TLS verification (off only for local development)
            retry_config: Inline retry configuration
            transport: Custom httpx transport (tests)
        """
        self.api_key = api_key
        self.ledger = ledger
        self.cache = cache
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self.circuit_breaker = ProviderCircuitBreaker(
            cache, self.service, threshold=circuit_threshold, timeout=circuit_timeout
        )

        self._client: Optional[httpx.AsyncClient] = None
        if api_key:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(timeout, connect=connect_timeout),
                verify=verify_ssl,
                transport=transport,
            )
        self._closed = False

    def is_available(self) -> bool:
        return self._client is not None and not self._closed

    async def _post(self, path: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        """POST JSON and return the decoded body, raising a classified AIError on failure."""
        request_timeout = min(timeout, self.timeout) if timeout else None

        try:
            if request_timeout:
                response = await self._client.post(path, json=payload, timeout=request_timeout)
            else:
                response = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise classify_transport_error(self.service, e) from e

        if response.status_code >= 400:
            try:
                body = response.json() if response.content else {}
            except ValueError:
                body = response.text
            raise classify_http_error(
                self.service,
                response.status_code,
                body,
                response.headers,
                default_retry_after=self.default_retry_after,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ServerError(f"{self.service} returned invalid JSON: {e}", provider=self.service) from e

    async def _execute(
        self,
        operation: str,
        call: Callable[[], Awaitable[AIResponse]],
        model: Optional[str] = None,
    ) -> AIResponse:
        """
        Run a provider call with circuit breaker, optional inline retries
        and cost recording.
        """
        if not self.is_available():
            error = ConfigurationError(f"{self.service} is not configured", provider=self.service)
            logger.warning(f"{self.service}/{operation} skipped: provider not configured")
            return AIResponse.failure(error, self.service, operation, model)

        remaining = await self.circuit_breaker.open_remaining()
        if remaining is not None:
            error = CircuitOpenError(
                f"{self.service} circuit breaker open",
                provider=self.service,
                retry_after=round(remaining, 1),
            )
            logger.warning(f"{self.service}/{operation} rejected: circuit open for {remaining:.0f}s more")
            return AIResponse.failure(error, self.service, operation, model)

        config = self.retry_config
        for attempt in range(config.max_retries + 1):
            try:
                response = await call()
            except AIError as error:
                if isinstance(error, ServerError):
                    await self.circuit_breaker.record_failure()

                if error.retryable and attempt < config.max_retries:
                    delay = config.delay_for(attempt, error)
                    logger.warning(
                        f"{self.service}/{operation} failed ({error.kind}), retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{config.max_retries + 1})"
                    )
                    await asyncio.sleep(delay)
                    continue

                log = logger.warning if error.retryable else logger.error
                log(f"{self.service}/{operation} failed: {error.kind}: {error.message}")
                return AIResponse.failure(error, self.service, operation, model)

            await self.circuit_breaker.record_success()
            response.service = self.service
            response.operation = operation
            await self._record_cost(response)
            return response

        # Unreachable: the loop always returns
        return AIResponse.failure(ServerError("retries exhausted", provider=self.service), self.service, operation, model)

    async def _record_cost(self, response: AIResponse):
        """Record the call's cost. Ledger failures are logged, never raised."""
        if self.ledger is None:
            logger.warning(f"No cost ledger configured, {self.service} cost ${response.cost:.6f} not recorded")
            return

        metadata = {
            "model": response.model,
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        }
        try:
            await self.ledger.record_cost(self.service, response.operation, response.cost, metadata)
        except Exception as e:
            logger.error(
                f"Cost recording failed for {self.service}/{response.operation} "
                f"(${response.cost:.6f}, {metadata}): {e}"
            )

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None and not self._closed:
            await self._client.aclose()
        self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
