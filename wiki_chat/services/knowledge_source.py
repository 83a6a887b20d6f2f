"""Read-only access to wiki articles.

The retriever depends only on the ``KnowledgeSource`` protocol. Production
reads from the headless CMS over GraphQL; local runs and tests use an
in-memory article list.
"""

import asyncio
import json
from collections import Counter
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol, TypeVar

import httpx
import structlog
from cachetools import TTLCache
from pydantic import ValidationError as SchemaValidationError

from wiki_chat.core.exceptions import KnowledgeBaseError
from wiki_chat.schemas.knowledge_schema import WikiArticle, WikiCategory
from wiki_chat.services.query_terms import query_terms

logger = structlog.get_logger()

T = TypeVar("T")

ARTICLE_FIELDS = "id title slug category content createdAt updatedAt"

GET_ARTICLE_BY_SLUG_QUERY = f"""
query GetArticleBySlug($slug: String!) {{
  wikiArticle(where: {{ slug: $slug }}, stage: PUBLISHED) {{ {ARTICLE_FIELDS} }}
}}
"""

SEARCH_ARTICLES_QUERY = f"""
query SearchArticles($query: String!) {{
  wikiArticles(where: {{ _search: $query }}, stage: PUBLISHED) {{ {ARTICLE_FIELDS} }}
}}
"""

ALL_CATEGORIES_QUERY = """
query GetAllArticles {
  wikiArticles(stage: PUBLISHED) { category }
}
"""


class KnowledgeSource(Protocol):
    """Read-only article source consumed by the retriever."""

    async def search_articles(self, query: str) -> list[WikiArticle]: ...

    async def get_article(self, slug: str) -> WikiArticle | None: ...

    async def list_categories(self) -> list[WikiCategory]: ...


def _count_categories(categories: list[str]) -> list[WikiCategory]:
    counts = Counter(category for category in categories if category)
    return [
        WikiCategory(category=name, article_count=count)
        for name, count in sorted(counts.items())
    ]


def _parse_articles(items: list[dict[str, Any]]) -> list[WikiArticle]:
    try:
        return [WikiArticle.model_validate(item) for item in items]
    except SchemaValidationError as exc:
        logger.error(
            "Malformed wiki article payload",
            operation="knowledge.parse",
            errors=exc.error_count(),
        )
        raise KnowledgeBaseError("Knowledge base returned malformed articles") from exc


class InMemoryKnowledgeBase:
    """Knowledge source backed by a fixed list of articles."""

    def __init__(self, articles: list[WikiArticle] | None = None) -> None:
        self._articles = list(articles or [])

    @classmethod
    def from_json(cls, path: Path) -> "InMemoryKnowledgeBase":
        """Load articles from a JSON array of article objects."""
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise KnowledgeBaseError(f"Cannot load wiki articles from {path}") from exc
        articles = _parse_articles(raw)
        logger.info("Loaded wiki articles", path=str(path), count=len(articles))
        return cls(articles)

    async def search_articles(self, query: str) -> list[WikiArticle]:
        """Return articles mentioning any query term in title, category or content."""
        words = query_terms(query)
        if not words:
            return []
        return [
            article
            for article in self._articles
            if any(
                word in article.title.lower()
                or word in article.category.lower()
                or word in article.content.lower()
                for word in words
            )
        ]

    async def get_article(self, slug: str) -> WikiArticle | None:
        return next((a for a in self._articles if a.slug == slug), None)

    async def list_categories(self) -> list[WikiCategory]:
        return _count_categories([article.category for article in self._articles])


class WikiContentClient:
    """GraphQL client for the headless CMS hosting the wiki.

    Args:
        endpoint: GraphQL endpoint URL.
        token: Bearer token, empty for public content APIs.
        timeout: Per-request timeout in seconds.
        cache_ttl: Seconds a lookup result stays cached, 0 disables the cache.
        cache_size: Maximum number of cached lookups.
        transport: Optional httpx transport, used to stub the CMS in tests.

    Concurrent identical lookups share one request. Failed requests and
    missing articles are never cached.
    """

    def __init__(
        self,
        endpoint: str,
        token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        cache_ttl: float = 300.0,
        cache_size: int = 256,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout
        self._transport = transport
        self._headers = {"Content-Type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._cache: TTLCache[str, Any] | None = (
            TTLCache(maxsize=cache_size, ttl=cache_ttl) if cache_ttl > 0 else None
        )
        self._in_flight: dict[str, asyncio.Task[Any]] = {}

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client for one request."""
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(
        self, query: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """POST a GraphQL query and return its ``data`` object."""
        try:
            async with self._client() as client:
                response = await client.post(
                    self._endpoint,
                    json={"query": query, "variables": variables or {}},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Wiki content request failed",
                operation="knowledge.request",
                status=exc.response.status_code,
            )
            raise KnowledgeBaseError() from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(
                "Wiki content request failed",
                operation="knowledge.request",
                error_type=type(exc).__name__,
            )
            raise KnowledgeBaseError() from exc

        if payload.get("errors"):
            logger.error(
                "Wiki content query returned errors",
                operation="knowledge.request",
                errors=[error.get("message") for error in payload["errors"]],
            )
            raise KnowledgeBaseError("Knowledge base query failed")
        return payload.get("data") or {}

    async def _cached(self, key: str, load: Callable[[], Awaitable[T]]) -> T:
        """Serve ``key`` from the cache or from one shared in-flight request."""
        if self._cache is None:
            return await load()
        if key in self._cache:
            logger.debug("Wiki content cache hit", operation="knowledge.cache", key=key)
            return self._cache[key]

        task = self._in_flight.get(key)
        if task is None:

            async def load_and_store() -> T:
                result = await load()
                if result is not None and self._cache is not None:
                    self._cache[key] = result
                return result

            task = asyncio.ensure_future(load_and_store())
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))
        return await asyncio.shield(task)

    async def search_articles(self, query: str) -> list[WikiArticle]:
        async def load() -> list[WikiArticle]:
            data = await self._request(SEARCH_ARTICLES_QUERY, {"query": query})
            return _parse_articles(data.get("wikiArticles") or [])

        return list(await self._cached(f"search:{query.strip().lower()}", load))

    async def get_article(self, slug: str) -> WikiArticle | None:
        async def load() -> WikiArticle | None:
            data = await self._request(GET_ARTICLE_BY_SLUG_QUERY, {"slug": slug})
            item = data.get("wikiArticle")
            return _parse_articles([item])[0] if item else None

        return await self._cached(f"article:{slug}", load)

    async def list_categories(self) -> list[WikiCategory]:
        async def load() -> list[WikiCategory]:
            data = await self._request(ALL_CATEGORIES_QUERY)
            return _count_categories(
                [item.get("category", "") for item in data.get("wikiArticles") or []]
            )

        return list(await self._cached("all-categories", load))
