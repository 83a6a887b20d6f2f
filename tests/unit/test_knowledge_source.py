"""Unit tests for knowledge sources."""

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from wiki_chat.core.exceptions import KnowledgeBaseError
from wiki_chat.schemas.knowledge_schema import WikiArticle, WikiCategory
from wiki_chat.services.knowledge_source import InMemoryKnowledgeBase, WikiContentClient

ENDPOINT = "https://cms.test/graphql"

ARTICLE_PAYLOAD = {
    "id": "a1",
    "title": "Mensa Guide",
    "slug": "mensa-guide",
    "category": "Campus Life",
    "content": "# Mensa Guide\n\nLunch on weekdays.",
    "createdAt": "2024-01-10T09:00:00Z",
    "updatedAt": "2024-02-01T12:30:00Z",
}


def client_for(handler) -> WikiContentClient:
    return WikiContentClient(
        ENDPOINT, token="cms-token", transport=httpx.MockTransport(handler)
    )


class TestWikiContentClient:
    """GraphQL requests against a stubbed CMS."""

    @pytest.mark.asyncio
    async def test_search_articles(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"wikiArticles": [ARTICLE_PAYLOAD]}})

        articles = await client_for(handler).search_articles("mensa")

        assert [a.slug for a in articles] == ["mensa-guide"]
        assert articles[0].created_at is not None
        body = json.loads(seen[0].content)
        assert body["variables"] == {"query": "mensa"}
        assert "SearchArticles" in body["query"]
        assert seen[0].headers["Authorization"] == "Bearer cms-token"

    @pytest.mark.asyncio
    async def test_get_article_missing(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return (200, {"data": {"wikiArticle": None}})

        assert await client_for(handler).get_article("nope") is None

    @pytest.mark.asyncio
    async def test_list_categories_counts_articles(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            items = [
                {"category": "Campus Life"},
                {"category": "Academics"},
                {"category": "Campus Life"},
                {"category": ""},
            ]
            return httpx.Response(200, json={"data": {"wikiArticles": items}})

        categories = await client_for(handler).list_categories()

        assert categories == [
            WikiCategory(category="Academics", article_count=1),
            WikiCategory(category="Campus Life", article_count=2),
        ]

    @pytest.mark.asyncio
    async def test_graphql_errors(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "bad query"}]})

        with pytest.raises(KnowledgeBaseError):
            await client_for(handler).search_articles("mensa")

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        with pytest.raises(KnowledgeBaseError):
            await client_for(handler).search_articles("mensa")

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(KnowledgeBaseError):
            await client_for(handler).list_categories()

    @pytest.mark.asyncio
    async def test_malformed_article(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"wikiArticles": [{"id": "x"}]}})

        with pytest.raises(KnowledgeBaseError):
            await client_for(handler).search_articles("mensa")


class TestWikiContentCache:
    """Lookups are cached for the configured TTL and deduplicated while in flight."""

    @staticmethod
    def counting_client(
        replies: list[tuple[int, dict]], **kwargs
    ) -> tuple[WikiContentClient, list[httpx.Request]]:
        """Client whose n-th request gets the n-th reply; the last one repeats."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            status, body = replies[min(len(seen), len(replies)) - 1]
            return httpx.Response(status, json=body)

        client = WikiContentClient(ENDPOINT, transport=httpx.MockTransport(handler), **kwargs)
        return client, seen

    @pytest.mark.asyncio
    async def test_second_article_lookup_is_cached(self) -> None:
        client, seen = self.counting_client(
            [(200, {"data": {"wikiArticle": ARTICLE_PAYLOAD}})]
        )

        first = await client.get_article("mensa-guide")
        second = await client.get_article("mensa-guide")

        assert first == second
        assert first is not None and first.slug == "mensa-guide"
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_categories_cached(self) -> None:
        client, seen = self.counting_client(
            [(200, {"data": {"wikiArticles": [{"category": "Academics"}]}})]
        )

        await client.list_categories()
        categories = await client.list_categories()

        assert categories == [WikiCategory(category="Academics", article_count=1)]
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_request(self) -> None:
        client, seen = self.counting_client(
            [(200, {"data": {"wikiArticle": ARTICLE_PAYLOAD}})]
        )

        results = await asyncio.gather(*(client.get_article("mensa-guide") for _ in range(3)))

        assert [a.slug for a in results if a] == ["mensa-guide"] * 3
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_different_slugs_not_shared(self) -> None:
        client, seen = self.counting_client(
            [(200, {"data": {"wikiArticle": ARTICLE_PAYLOAD}})]
        )

        await client.get_article("mensa-guide")
        await client.get_article("exam-registration")

        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self) -> None:
        client, seen = self.counting_client(
            [
                (503, {"message": "unavailable"}),
                (200, {"data": {"wikiArticle": ARTICLE_PAYLOAD}}),
            ]
        )

        with pytest.raises(KnowledgeBaseError):
            await client.get_article("mensa-guide")
        article = await client.get_article("mensa-guide")

        assert article is not None
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_missing_article_not_cached(self) -> None:
        client, seen = self.counting_client(
            [
                (200, {"data": {"wikiArticle": None}}),
                (200, {"data": {"wikiArticle": ARTICLE_PAYLOAD}}),
            ]
        )

        assert await client.get_article("mensa-guide") is None
        assert await client.get_article("mensa-guide") is not None
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self) -> None:
        client, seen = self.counting_client(
            [(200, {"data": {"wikiArticles": [ARTICLE_PAYLOAD]}})],
            cache_ttl=0,
        )

        await client.search_articles("mensa")
        await client.search_articles("mensa")

        assert len(seen) == 2


class TestInMemoryKnowledgeBase:
    """File-backed and fixed article lists."""

    @pytest.mark.asyncio
    async def test_from_json(self, tmp_path: Path) -> None:
        path = tmp_path / "articles.json"
        path.write_text(json.dumps([ARTICLE_PAYLOAD]), encoding="utf-8")

        source = InMemoryKnowledgeBase.from_json(path)

        article = await source.get_article("mensa-guide")
        assert article is not None
        assert article.title == "Mensa Guide"

    def test_from_json_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(KnowledgeBaseError):
            InMemoryKnowledgeBase.from_json(tmp_path / "missing.json")

    def test_from_json_invalid(self, tmp_path: Path) -> None:
        path = tmp_path / "articles.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(KnowledgeBaseError):
            InMemoryKnowledgeBase.from_json(path)

    @pytest.mark.asyncio
    async def test_search_matches_any_word(self, wiki_articles: list[WikiArticle]) -> None:
        source = InMemoryKnowledgeBase(wiki_articles)

        results = await source.search_articles("mensa lunch")

        assert [a.slug for a in results] == ["mensa-guide"]

    @pytest.mark.asyncio
    async def test_search_ignores_filler_words(self, wiki_articles: list[WikiArticle]) -> None:
        source = InMemoryKnowledgeBase(wiki_articles)
        assert await source.search_articles("What is the weather in Paris?") == []

    @pytest.mark.asyncio
    async def test_search_blank_query(self, wiki_articles: list[WikiArticle]) -> None:
        assert await InMemoryKnowledgeBase(wiki_articles).search_articles("  ") == []

    @pytest.mark.asyncio
    async def test_list_categories(self, wiki_articles: list[WikiArticle]) -> None:
        categories = await InMemoryKnowledgeBase(wiki_articles).list_categories()
        assert [(c.category, c.article_count) for c in categories] == [
            ("Academics", 1),
            ("Campus Life", 2),
            ("Student Services", 1),
        ]
