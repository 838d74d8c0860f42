"""
Tests for the AI provider clients.

These tests verify:
- HTTP failures are classified, not raised
- One ledger event per successful, non-cached call
- Circuit breaker opens after consecutive server errors
- Response caches serve repeats at zero cost
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.ai.errors import (
    CircuitOpenError,
    ConfigurationError,
    ContextTooLongError,
    InsufficientQuotaError,
    InvalidRequestError,
    RateLimitError,
    ServerError,
    UnauthorizedError,
    classify_http_error,
    parse_retry_after,
    MAX_RETRY_AFTER,
)
from src.integrations.base import RetryConfig
from src.integrations.dalle import DalleClient, sanitize_prompt
from src.integrations.gpt import GptClient, parse_json_content
from src.integrations.perplexity import PerplexityClient

MESSAGES = [{"role": "user", "content": "Write a meta description about e-bikes"}]


@pytest.fixture
def gpt_factory(ledger, cache):
    def factory(transport, **kwargs):
        kwargs.setdefault("ledger", ledger)
        kwargs.setdefault("cache", cache)
        return GptClient("sk-test", transport=transport, **kwargs)
    return factory


class TestErrorClassification:
    """HTTP status and body to error type."""

    def test_rate_limit_with_header(self):
        error = classify_http_error("openai", 429, {"error": {"message": "slow down"}}, {"retry-after": "7"})
        assert isinstance(error, RateLimitError)
        assert error.retryable is True
        assert error.retry_after == 7.0

    def test_rate_limit_default_wait(self):
        error = classify_http_error("openai", 429, {}, {}, default_retry_after=60.0)
        assert error.retry_after == 60.0

    def test_insufficient_quota_is_terminal(self):
        body = {"error": {"message": "You exceeded your current quota", "code": "insufficient_quota"}}
        error = classify_http_error("openai", 429, body)
        assert isinstance(error, InsufficientQuotaError)
        assert error.retryable is False

    def test_context_too_long(self):
        body = {"error": {"message": "This model's maximum context length is 8192 tokens", "code": "context_length_exceeded"}}
        assert isinstance(classify_http_error("openai", 400, body), ContextTooLongError)

    def test_bad_request(self):
        assert isinstance(classify_http_error("openai", 400, {"error": {"message": "bad"}}), InvalidRequestError)

    @pytest.mark.parametrize("status", [401, 403])
    def test_unauthorized(self, status):
        assert isinstance(classify_http_error("openai", status, {}), UnauthorizedError)

    @pytest.mark.parametrize("status", [500, 502, 503])
    def test_server_errors_are_retryable(self, status):
        error = classify_http_error("openai", status, "upstream down")
        assert isinstance(error, ServerError)
        assert error.retryable is True

    def test_retry_after_capped(self):
        assert parse_retry_after({"retry-after": "3600"}) == MAX_RETRY_AFTER

    def test_retry_after_from_body(self):
        assert parse_retry_after({}, {"error": {"retry_after": 12}}) == 12.0

    def test_unparseable_retry_after_uses_default(self):
        assert parse_retry_after({"retry-after": "soon"}, default=30.0) == 30.0


class TestGptClient:
    """Chat completions."""

    def test_missing_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            GptClient(None)

    @pytest.mark.asyncio
    async def test_success_records_one_cost_event(self, gpt_factory, make_transport, chat_body, event_log):
        transport = make_transport(body=chat_body("Great e-bikes.", model="gpt-4o-2024-08-06"))
        client = gpt_factory(transport)

        response = await client.chat(MESSAGES, model="gpt-4o", operation="meta")

        assert response.success is True
        assert response.content == "Great e-bikes."
        # Priced by the requested model, not the dated snapshot
        assert response.cost == pytest.approx(0.0075)
        assert response.usage.total_tokens == 1500

        events = event_log.recent()
        assert len(events) == 1
        assert events[0]["operation"] == "meta"
        assert events[0]["model"] == "gpt-4o-2024-08-06"
        assert events[0]["input_tokens"] == 1000

        body = transport.json_bodies()[0]
        assert body["model"] == "gpt-4o"
        assert body["max_tokens"] == 2000
        assert transport.requests[0].headers["authorization"] == "Bearer sk-test"
        await client.close()

    @pytest.mark.asyncio
    async def test_failure_returns_error_and_records_nothing(self, gpt_factory, make_transport, event_log):
        transport = make_transport(status_code=429, body={"error": {"message": "rate limited"}}, headers={"retry-after": "5"})
        client = gpt_factory(transport)

        response = await client.chat(MESSAGES)

        assert response.success is False
        assert isinstance(response.error, RateLimitError)
        assert response.retryable is True
        assert response.error.retry_after == 5.0
        assert event_log.recent() == []
        with pytest.raises(RateLimitError):
            response.raise_for_error()

    @pytest.mark.asyncio
    async def test_timeout_classified_as_server_error(self, gpt_factory, make_transport):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = gpt_factory(make_transport(handler))
        response = await client.chat(MESSAGES)

        assert isinstance(response.error, ServerError)
        assert response.retryable is True

    @pytest.mark.asyncio
    async def test_empty_choices_is_an_error(self, gpt_factory, make_transport, event_log):
        client = gpt_factory(make_transport(body={"choices": [], "usage": {}}))
        response = await client.chat(MESSAGES)

        assert response.success is False
        assert event_log.recent() == []

    @pytest.mark.asyncio
    async def test_ledger_failure_does_not_fail_call(self, make_transport, chat_body, cache, caplog):
        ledger = MagicMock()
        ledger.record_cost = AsyncMock(side_effect=RuntimeError("db down"))
        client = GptClient("sk-test", ledger=ledger, cache=cache, transport=make_transport(body=chat_body("ok")))

        response = await client.chat(MESSAGES)

        assert response.success is True
        assert "Cost recording failed" in caplog.text

    @pytest.mark.asyncio
    async def test_inline_retry_when_enabled(self, gpt_factory, make_transport, chat_body, event_log):
        statuses = iter([503, 200])

        def handler(request):
            status = next(statuses)
            if status == 503:
                return httpx.Response(503, json={"error": {"message": "overloaded"}})
            return httpx.Response(200, json=chat_body("second time lucky"))

        transport = make_transport(handler)
        client = gpt_factory(transport, retry_config=RetryConfig(max_retries=1, initial_delay=0, max_jitter=0))

        response = await client.chat(MESSAGES)

        assert response.success is True
        assert len(transport.requests) == 2
        assert len(event_log.recent()) == 1


class TestCircuitBreaker:
    """Consecutive server errors open the provider circuit."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, gpt_factory, make_transport):
        transport = make_transport(status_code=503, body={"error": {"message": "down"}})
        client = gpt_factory(transport, circuit_threshold=2, circuit_timeout=60)

        await client.chat(MESSAGES)
        await client.chat(MESSAGES)
        response = await client.chat(MESSAGES)

        assert isinstance(response.error, CircuitOpenError)
        assert response.error.kind == "server_error"
        assert response.error.retryable is True
        assert response.error.retry_after > 0
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, gpt_factory, make_transport, chat_body):
        statuses = iter([503, 200, 503, 503])

        def handler(request):
            status = next(statuses)
            if status == 200:
                return httpx.Response(200, json=chat_body("ok"))
            return httpx.Response(status, json={})

        transport = make_transport(handler)
        client = gpt_factory(transport, circuit_threshold=2)

        for _ in range(3):
            await client.chat(MESSAGES)
        assert await client.circuit_breaker.open_remaining() is None

        await client.chat(MESSAGES)
        assert await client.circuit_breaker.open_remaining() is not None

    @pytest.mark.asyncio
    async def test_client_errors_do_not_trip(self, gpt_factory, make_transport):
        client = gpt_factory(make_transport(status_code=400, body={}), circuit_threshold=1)

        await client.chat(MESSAGES)
        assert await client.circuit_breaker.open_remaining() is None


class TestResponseCache:
    """chat_with_cache."""

    @pytest.mark.asyncio
    async def test_hit_costs_nothing(self, gpt_factory, make_transport, chat_body, event_log):
        transport = make_transport(body=chat_body("cached answer"))
        client = gpt_factory(transport)

        first = await client.chat_with_cache(MESSAGES, model="gpt-4o-mini", temperature=0.0)
        second = await client.chat_with_cache(MESSAGES, model="gpt-4o-mini", temperature=0.0)

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.cost == 0.0
        assert second.content == "cached answer"
        assert len(transport.requests) == 1
        assert len(event_log.recent()) == 1

    @pytest.mark.asyncio
    async def test_different_parameters_miss(self, gpt_factory, make_transport, chat_body):
        transport = make_transport(body=chat_body("answer"))
        client = gpt_factory(transport)

        await client.chat_with_cache(MESSAGES, temperature=0.0)
        await client.chat_with_cache(MESSAGES, temperature=0.0, max_tokens=100)

        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, gpt_factory, make_transport):
        transport = make_transport(status_code=500, body={})
        client = gpt_factory(transport)

        await client.chat_with_cache(MESSAGES, temperature=0.0)
        await client.chat_with_cache(MESSAGES, temperature=0.0)

        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, gpt_factory, make_transport, chat_body):
        transport = make_transport(body=chat_body("answer"))
        client = gpt_factory(transport)

        await client.chat_with_cache(MESSAGES, temperature=0.0)
        assert await client.invalidate_cache(MESSAGES, temperature=0.0) is True
        await client.chat_with_cache(MESSAGES, temperature=0.0)

        assert len(transport.requests) == 2


class TestParseJsonContent:
    def test_plain_json(self):
        assert parse_json_content('{"title": "E-bikes"}') == {"title": "E-bikes"}

    def test_fenced_json(self):
        assert parse_json_content('```json\n{"faq": []}\n```') == {"faq": []}

    def test_invalid_json(self):
        assert parse_json_content("not json") is None

    def test_empty(self):
        assert parse_json_content(None) is None


class TestDalleClient:
    """Image generation."""

    @pytest.mark.asyncio
    async def test_generates_with_table_price(self, make_transport, ledger, cache, event_log):
        transport = make_transport(body={"data": [{"url": "https://img.example/1.png", "revised_prompt": "A bike"}]})
        client = DalleClient("sk-test", ledger=ledger, cache=cache, transport=transport)

        response = await client.generate_image("A bike\nat dawn")

        assert response.image_url == "https://img.example/1.png"
        assert response.cost == 0.08
        body = transport.json_bodies()[0]
        assert body["prompt"] == "A bike at dawn"
        assert body["quality"] == "standard"
        assert event_log.recent()[0]["service"] == "dalle"

    @pytest.mark.asyncio
    async def test_disabled_without_key(self, ledger, cache):
        client = DalleClient(None, ledger=ledger, cache=cache)

        response = await client.generate_image("anything")

        assert client.is_available() is False
        assert isinstance(response.error, ConfigurationError)

    def test_sanitize_prompt(self):
        assert sanitize_prompt("  a\x00b\t\tc  ") == "a b c"
        assert len(sanitize_prompt("x" * 5000)) == 4000


class TestPerplexityClient:
    """Research search."""

    @pytest.mark.asyncio
    async def test_search_returns_citations(self, make_transport, chat_body, ledger, cache, event_log):
        body = chat_body("E-bike sales grew 12%.", model="sonar")
        body["citations"] = ["https://example.org/report"]
        client = PerplexityClient("pplx-test", ledger=ledger, cache=cache, transport=make_transport(body=body))

        response = await client.search("e-bike market 2025", system_prompt="Be factual")

        assert response.citations == ["https://example.org/report"]
        assert response.cost == pytest.approx(0.0015)
        assert event_log.recent()[0]["service"] == "perplexity"

    @pytest.mark.asyncio
    async def test_cached_search(self, make_transport, chat_body, ledger, cache):
        transport = make_transport(body=chat_body("answer", model="sonar"))
        client = PerplexityClient("pplx-test", ledger=ledger, cache=cache, transport=transport)

        await client.search("query", use_cache=True)
        second = await client.search("query", use_cache=True)

        assert second.from_cache is True
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_without_hint_has_no_wait(self, make_transport, ledger, cache):
        client = PerplexityClient("pplx-test", ledger=ledger, cache=cache, transport=make_transport(status_code=429, body={}))

        response = await client.search("query")

        assert isinstance(response.error, RateLimitError)
        assert response.error.retry_after is None
