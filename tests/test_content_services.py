"""
Tests for the content collaborators behind pipeline jobs.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.ai.errors import ContextTooLongError
from src.content import (
    GatewayContentGenerator,
    GatewayTranslator,
    HttpLinkVerifier,
    HttpPublisher,
    IndexNowIndexer,
    KeywordOverlapLinker,
    PassthroughImageOptimizer,
    PublicationRateLimiter,
    RepositorySitemap,
    estimate_quality,
)
from src.content.generation import count_words
from src.content.repository import ARTICLE, PUBLICATION, STATUS_DRAFT, STATUS_PUBLISHED
from src.integrations.base import AIResponse
from src.jobs import PermanentJobError, RetryableJobError


# =============================================================================
# Generation
# =============================================================================

class TestQualityEstimate:

    def test_count_words_ignores_markup(self):
        assert count_words("<h2>Bonjour le monde</h2><p>Salut</p>") == 4

    def test_complete_draft(self):
        draft = {
            "word_count": 1500,
            "content": "<h2>Conditions</h2><p>...</p><h2>Prix</h2>",
            "meta_title": "Visa Japon",
            "meta_description": "Tout sur le visa.",
        }
        assert estimate_quality(draft, 1500) == 90.0

    def test_short_draft_without_meta(self):
        draft = {"word_count": 750, "content": "<p>court</p>", "meta_title": "x" * 80}
        assert estimate_quality(draft, 1500) == 30.0


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.complete = AsyncMock()
    return gateway


class TestGatewayContentGenerator:

    @pytest.mark.asyncio
    async def test_generate_article(self, gateway):
        body = {
            "title": "Visa Japon",
            "excerpt": "Tout savoir.",
            "content": "<h2>Conditions</h2><p>Un passeport valide est requis.</p>",
            "meta_title": "Visa Japon",
            "meta_description": "Conditions du visa.",
        }
        gateway.complete.return_value = AIResponse(content=json.dumps(body), model="gpt-4o", cost=0.021)

        draft = await GatewayContentGenerator(gateway).generate(
            "article", {"keyword": "visa japon", "language": "fr", "country": "JP"}, timeout=300
        )

        assert draft["title"] == "Visa Japon"
        assert draft["word_count"] == 6
        assert draft["model"] == "gpt-4o"
        assert draft["cost"] == 0.021
        assert 0 < draft["quality_score"] <= 100

        args, kwargs = gateway.complete.await_args
        assert args[0] == "article"
        assert kwargs["word_count_hint"] == 1500
        assert kwargs["max_tokens"] == 2600
        assert kwargs["timeout"] == 300
        assert kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_word_count_caps_tokens(self, gateway):
        gateway.complete.return_value = AIResponse(content="{}", model="gpt-4")

        await GatewayContentGenerator(gateway).generate("comparative", {"keyword": "x", "word_count": 9000})

        assert gateway.complete.await_args.kwargs["max_tokens"] == 8000

    @pytest.mark.asyncio
    async def test_non_json_answer_kept_as_content(self, gateway):
        gateway.complete.return_value = AIResponse(content="<h2>Plain</h2> answer", model="gpt-4o")

        draft = await GatewayContentGenerator(gateway).generate("landing", {"keyword": "expat berlin", "language": "de"})

        assert draft["title"] == "expat berlin"
        assert draft["content"] == "<h2>Plain</h2> answer"

    @pytest.mark.asyncio
    async def test_provider_error_raised(self, gateway):
        gateway.complete.return_value = AIResponse.failure(ContextTooLongError("too long", provider="openai"))

        with pytest.raises(ContextTooLongError):
            await GatewayContentGenerator(gateway).generate("article", {"keyword": "x", "language": "fr"})


class TestGatewayTranslator:

    @pytest.mark.asyncio
    async def test_translates_text_fields(self, gateway):
        gateway.complete.return_value = AIResponse(
            content='```json\n{"title": "Japan visa", "content": "<p>Hello</p>"}\n```', cost=0.0007
        )
        entity = {"id": 1, "title": "Visa Japon", "content": "<p>Bonjour</p>", "language": "fr", "quality_score": 80}

        result = await GatewayTranslator(gateway).translate(entity, "en")

        assert result == {"title": "Japan visa", "content": "<p>Hello</p>", "cost": 0.0007}
        args, kwargs = gateway.complete.await_args
        assert args[0] == "translation"
        assert json.loads(args[1][1]["content"]) == {"title": "Visa Japon", "content": "<p>Bonjour</p>"}

    @pytest.mark.asyncio
    async def test_nothing_to_translate(self, gateway):
        assert await GatewayTranslator(gateway).translate({"id": 1}, "en") == {}
        gateway.complete.assert_not_awaited()


# =============================================================================
# Publishing
# =============================================================================

PLATFORMS = {"1": {"api_url": "https://blog.example/api/", "api_key": "secret"}}
ARTICLE_DATA = {"id": 7, "title": "Visa Japon", "content": "<p>...</p>", "language": "fr"}


class TestHttpPublisher:

    @pytest.mark.asyncio
    async def test_publish(self, make_transport):
        transport = make_transport(status_code=201, body={"id": 99, "url": "https://blog.example/visa-japon"})

        result = await HttpPublisher(PLATFORMS, transport=transport).publish(ARTICLE_DATA, 1)

        assert result == {"remote_id": 99, "remote_url": "https://blog.example/visa-japon"}
        request = transport.requests[0]
        assert str(request.url) == "https://blog.example/api/articles"
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.headers["X-Article-ID"] == "7"
        assert transport.json_bodies()[0]["localization"]["language"] == "fr"

    @pytest.mark.asyncio
    async def test_unknown_platform(self, make_transport):
        with pytest.raises(PermanentJobError):
            await HttpPublisher(PLATFORMS, transport=make_transport()).publish(ARTICLE_DATA, 2)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (503, RetryableJobError),
        (429, RetryableJobError),
        (422, PermanentJobError),
    ])
    async def test_error_status(self, make_transport, status, error):
        transport = make_transport(status_code=status, body={"error": "nope"})
        with pytest.raises(error):
            await HttpPublisher(PLATFORMS, transport=transport).publish(ARTICLE_DATA, 1)

    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(self, make_transport):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RetryableJobError):
            await HttpPublisher(PLATFORMS, transport=make_transport(refuse)).publish(ARTICLE_DATA, 1)


class TestPublicationRateLimiter:

    async def published(self, repository, clock, *minutes_ago, platform_id=1):
        for minutes in minutes_ago:
            await repository.create(PUBLICATION, {
                "platform_id": platform_id,
                "status": STATUS_PUBLISHED,
                "published_at": (clock() - timedelta(minutes=minutes)).isoformat(),
            })

    @pytest.mark.asyncio
    async def test_allowed(self, repository, clock):
        await self.published(repository, clock, 30)
        limiter = PublicationRateLimiter(repository, clock=clock)
        assert await limiter.can_publish_now(1) == (True, None)

    @pytest.mark.asyncio
    async def test_hourly_limit(self, repository, clock):
        await self.published(repository, clock, 15, 20, 30, 45)
        allowed, reason = await PublicationRateLimiter(repository, clock=clock).can_publish_now(1)
        assert allowed is False
        assert reason == "hourly limit of 4 reached"

    @pytest.mark.asyncio
    async def test_daily_limit(self, repository, clock):
        await self.published(repository, clock, 300, 600)
        limiter = PublicationRateLimiter(repository, max_per_day=2, clock=clock)
        assert (await limiter.can_publish_now(1))[1] == "daily limit of 2 reached"

    @pytest.mark.asyncio
    async def test_minimum_interval(self, repository, clock):
        await self.published(repository, clock, 5)
        allowed, reason = await PublicationRateLimiter(repository, clock=clock).can_publish_now(1)
        assert allowed is False
        assert "10 minutes" in reason

    @pytest.mark.asyncio
    async def test_other_platforms_ignored(self, repository, clock):
        await self.published(repository, clock, 1, 2, 3, 4, platform_id=2)
        assert (await PublicationRateLimiter(repository, clock=clock).can_publish_now(1))[0] is True


class TestIndexNow:

    @pytest.mark.asyncio
    async def test_submits_url(self, make_transport):
        transport = make_transport(status_code=202)

        assert await IndexNowIndexer("key123", transport=transport).request_indexing("https://blog.example/visa") is True
        assert transport.json_bodies()[0] == {
            "host": "blog.example", "key": "key123", "urlList": ["https://blog.example/visa"],
        }

    @pytest.mark.asyncio
    async def test_disabled_without_key(self, make_transport):
        transport = make_transport()
        assert await IndexNowIndexer(None, transport=transport).request_indexing("https://blog.example/visa") is False
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, make_transport):
        with pytest.raises(RetryableJobError):
            await IndexNowIndexer("k", transport=make_transport(status_code=503)).request_indexing("https://b.example/x")

    @pytest.mark.asyncio
    async def test_rejection(self, make_transport):
        assert await IndexNowIndexer("k", transport=make_transport(status_code=422)).request_indexing("https://b.example/x") is False


class TestSitemap:

    @pytest.mark.asyncio
    async def test_rebuild(self, repository):
        await repository.create(ARTICLE, {"platform_id": 1, "status": STATUS_PUBLISHED, "remote_url": "https://b.example/a?x=1&y=2"})
        await repository.create(ARTICLE, {"platform_id": 1, "status": STATUS_DRAFT, "remote_url": "https://b.example/draft"})
        sitemap = RepositorySitemap(repository)

        assert await sitemap.update(1) == 1
        await repository.create(ARTICLE, {"platform_id": 1, "status": STATUS_PUBLISHED, "remote_url": "https://b.example/b"})
        assert await sitemap.update(1) == 2

        stored = await repository.find("sitemap", platform_id=1)
        assert len(stored) == 1
        assert "<loc>https://b.example/a?x=1&amp;y=2</loc>" in stored[0]["xml"]
        assert "draft" not in stored[0]["xml"]


@pytest.mark.asyncio
async def test_passthrough_optimizer():
    result = await PassthroughImageOptimizer().optimize("https://img.example/a.png")
    assert result == {"optimized_url": "https://img.example/a.png", "format": "original"}


# =============================================================================
# Links
# =============================================================================

class TestKeywordOverlapLinker:

    def test_ranks_by_overlap(self):
        article = {"id": 1, "title": "Visa travail Japon", "keyword": "visa japon", "language": "fr"}
        candidates = [
            article,
            {"id": 2, "title": "Visa etudiant Japon", "language": "fr"},
            {"id": 3, "title": "Logement Japon", "language": "fr"},
            {"id": 4, "title": "Visa Japon", "language": "en"},
            {"id": 5, "title": "Cuisine italienne", "language": "fr"},
        ]

        links = KeywordOverlapLinker().suggest(article, candidates)

        assert [link["target_id"] for link in links] == [2, 3]
        assert links[0]["anchor"] == "Visa etudiant Japon"
        assert links[0]["score"] == 0.5

    def test_max_links(self):
        article = {"id": 1, "title": "Visa Japon", "language": "fr"}
        candidates = [{"id": i, "title": f"Visa Japon {i}", "language": "fr"} for i in range(2, 10)]
        assert len(KeywordOverlapLinker().suggest(article, candidates, max_links=3)) == 3

    def test_stopword_only_title(self):
        assert KeywordOverlapLinker().suggest({"id": 1, "title": "Le la les"}, [{"id": 2, "title": "Le"}]) == []


class TestHttpLinkVerifier:

    @pytest.mark.asyncio
    async def test_ok(self, make_transport):
        result = await HttpLinkVerifier(transport=make_transport(status_code=200)).verify("https://ok.example")
        assert result == {"url": "https://ok.example", "ok": True, "status_code": 200}

    @pytest.mark.asyncio
    async def test_head_refused_falls_back_to_get(self, make_transport):
        def handler(request):
            return httpx.Response(405 if request.method == "HEAD" else 200)

        transport = make_transport(handler)
        result = await HttpLinkVerifier(transport=transport).verify("https://ok.example")

        assert result["ok"] is True
        assert [r.method for r in transport.requests] == ["HEAD", "GET"]

    @pytest.mark.asyncio
    async def test_broken(self, make_transport):
        result = await HttpLinkVerifier(transport=make_transport(status_code=404)).verify("https://gone.example")
        assert result["ok"] is False
        assert result["status_code"] == 404

    @pytest.mark.asyncio
    async def test_timeout(self, make_transport):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await HttpLinkVerifier(transport=make_transport(handler)).verify("https://slow.example")
        assert result == {"url": "https://slow.example", "ok": False, "status_code": 0, "error": "connection_timeout"}
