"""Knowledge retrieval: search, score, select and excerpt wiki articles."""

import re

import structlog

from wiki_chat.schemas.knowledge_schema import (
    ArticleSource,
    RetrievedArticle,
    WikiArticle,
    WikiCategory,
)
from wiki_chat.services.knowledge_source import KnowledgeSource
from wiki_chat.services.query_classifier import is_recommendation_query
from wiki_chat.services.query_terms import query_terms

logger = structlog.get_logger()

MAX_SCORE = 100
TITLE_TERM_POINTS = 10
EXACT_TITLE_POINTS = 20
CONTENT_POINTS_PER_HIT = 2
CONTENT_POINTS_CAP = 10
CATEGORY_TERM_POINTS = 5
MIN_ARTICLE_SCORE = 1

DIVERSITY_THRESHOLD = 20
GUARANTEED_TOP = 2
MIN_RECOMMENDATIONS = 2

RECOMMENDATION_PARAGRAPHS = 3
RECOMMENDATION_EXCERPT_CHARS = 1500
SECTION_EXCERPT_CHARS = 2000
FALLBACK_EXCERPT_CHARS = 1000
MAX_SECTIONS = 3

_SECTION_SPLIT = re.compile(r"(?=^#{1,6}\s)", re.MULTILINE)


def calculate_relevance_score(article: WikiArticle, query: str) -> int:
    """Score an article against a query on a 0-100 scale."""
    terms = query_terms(query)
    title = article.title.lower()
    content = article.content.lower()
    category = article.category.lower()

    score = 0
    for term in terms:
        if term in title:
            score += TITLE_TERM_POINTS
    if title == query.lower().strip():
        score += EXACT_TITLE_POINTS
    for term in terms:
        score += min(content.count(term) * CONTENT_POINTS_PER_HIT, CONTENT_POINTS_CAP)
    for term in terms:
        if term in category:
            score += CATEGORY_TERM_POINTS
    return min(score, MAX_SCORE)


def extract_relevant_content(
    content: str, query: str, is_recommendation: bool = False
) -> str:
    """Cut the part of an article worth sending to the model.

    Recommendation queries get the article's opening paragraphs as an
    overview. Other queries get the markdown sections with the most query
    term hits, or the start of the article when no section matches.
    """
    if is_recommendation:
        overview = "\n\n".join(content.split("\n\n")[:RECOMMENDATION_PARAGRAPHS])
        if len(overview) > RECOMMENDATION_EXCERPT_CHARS:
            return overview[:RECOMMENDATION_EXCERPT_CHARS] + "..."
        return overview

    terms = query_terms(query)
    scored = []
    for section in _SECTION_SPLIT.split(content):
        lowered = section.lower()
        scored.append((sum(lowered.count(term) for term in terms), section))
    scored.sort(key=lambda item: item[0], reverse=True)

    relevant = [section for hits, section in scored if hits > 0][:MAX_SECTIONS]
    if not relevant:
        return content[:FALLBACK_EXCERPT_CHARS]

    excerpt = "\n\n".join(relevant)
    if len(excerpt) > SECTION_EXCERPT_CHARS:
        excerpt = excerpt[:SECTION_EXCERPT_CHARS] + "..."
    return excerpt


def select_diverse_articles(
    scored: list[tuple[WikiArticle, int]],
    max_results: int,
    is_recommendation: bool = False,
) -> list[tuple[WikiArticle, int]]:
    """Pick the best articles while covering several categories.

    ``scored`` must be sorted by descending score. The two best articles are
    always kept; remaining slots go first to unseen categories scoring at
    least ``DIVERSITY_THRESHOLD``, then to the next best articles.
    """
    limit = max(max_results, MIN_RECOMMENDATIONS) if is_recommendation else max_results
    if len(scored) <= limit:
        return list(scored)

    selected = list(scored[: min(GUARANTEED_TOP, limit)])
    seen_categories = {article.category for article, _ in selected}
    remaining = scored[len(selected) :]

    for item in remaining:
        if len(selected) >= limit:
            break
        article, score = item
        if article.category not in seen_categories and score >= DIVERSITY_THRESHOLD:
            selected.append(item)
            seen_categories.add(article.category)

    for item in remaining:
        if len(selected) >= limit:
            break
        if item not in selected:
            selected.append(item)

    return selected


class KnowledgeRetriever:
    """Ranks knowledge-base articles for a user query.

    Output is deterministic for identical source content and query: ties keep
    the order the source returned them in.
    """

    def __init__(self, source: KnowledgeSource, max_results: int = 5) -> None:
        self._source = source
        self._max_results = max_results

    async def retrieve(self, query: str) -> list[RetrievedArticle]:
        """Return the most relevant articles for ``query``, best first."""
        if not query.strip():
            return []

        candidates = await self._source.search_articles(query)
        if not candidates:
            logger.info("No wiki articles matched", operation="retrieve")
            return []

        scored: list[tuple[WikiArticle, int]] = []
        seen_slugs: set[str] = set()
        for candidate in candidates:
            if candidate.slug in seen_slugs:
                continue
            seen_slugs.add(candidate.slug)
            article = candidate
            if not article.content:
                article = await self._source.get_article(candidate.slug) or candidate
            score = calculate_relevance_score(article, query)
            if score >= MIN_ARTICLE_SCORE:
                scored.append((article, score))
        if not scored:
            logger.info(
                "No relevant wiki articles",
                operation="retrieve",
                candidates=len(seen_slugs),
            )
            return []
        scored.sort(key=lambda item: item[1], reverse=True)

        recommendation = is_recommendation_query(query)
        selected = select_diverse_articles(scored, self._max_results, recommendation)
        selected.sort(key=lambda item: item[1], reverse=True)

        retrieved = [
            RetrievedArticle(
                article=article,
                relevant_content=extract_relevant_content(
                    article.content, query, recommendation
                ),
                relevance_score=score,
                source=ArticleSource.from_article(article),
            )
            for article, score in selected
        ]

        categories = sorted({item.article.category for item in retrieved})
        logger.info(
            "Retrieved wiki articles",
            operation="retrieve",
            count=len(retrieved),
            categories=categories,
            recommendation=recommendation,
        )
        return retrieved

    async def list_categories(self) -> list[WikiCategory]:
        """Categories available in the knowledge base."""
        return await self._source.list_categories()
