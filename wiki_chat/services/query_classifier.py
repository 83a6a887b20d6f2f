"""Query intent classification."""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from wiki_chat.schemas.knowledge_schema import RetrievedArticle

RECOMMENDATION_KEYWORDS: tuple[str, ...] = (
    "recommend",
    "suggestion",
    "suggest",
    "what should i read",
    "what can i read",
    "articles about",
    "show me articles",
    "list articles",
    "what articles",
    "find articles",
)


@dataclass(frozen=True)
class ClassificationFlags:
    """Independent intent signals for one query. Any combination may hold."""

    is_recommendation: bool = False
    is_ambiguous: bool = False
    is_out_of_scope: bool = False


@dataclass(frozen=True)
class AmbiguityOption:
    """One possible reading of an ambiguous query."""

    category: str
    example_title: str


def is_recommendation_query(query: str) -> bool:
    """Detect list or suggestion intent."""
    lowered = query.lower()
    return any(keyword in lowered for keyword in RECOMMENDATION_KEYWORDS)


def ambiguity_options(retrieved: list[RetrievedArticle]) -> list[AmbiguityOption]:
    """One example title per category, in retrieval order."""
    options: dict[str, str] = {}
    for item in retrieved:
        options.setdefault(item.article.category, item.article.title)
    return [
        AmbiguityOption(category=category, example_title=title)
        for category, title in options.items()
    ]


class QueryClassifier:
    """Derives ``ClassificationFlags`` from a query and its retrieval result.

    Args:
        anchor_terms: Words that tie a query to the university domain.
        min_relevance: Score an article needs to count as a real match.
        ambiguity_window: Articles within this many points of the top score
            compete with it.
    """

    def __init__(
        self,
        anchor_terms: Iterable[str],
        min_relevance: int = 10,
        ambiguity_window: int = 10,
    ) -> None:
        terms = sorted({term.strip().lower() for term in anchor_terms if term.strip()})
        self._anchor_pattern = (
            re.compile(
                r"\b(?:" + "|".join(re.escape(term) for term in terms) + r")\b",
                re.IGNORECASE,
            )
            if terms
            else None
        )
        self._min_relevance = min_relevance
        self._ambiguity_window = ambiguity_window

    def classify(
        self, query: str, retrieved: list[RetrievedArticle]
    ) -> ClassificationFlags:
        return ClassificationFlags(
            is_recommendation=is_recommendation_query(query),
            is_ambiguous=self.is_ambiguous(retrieved),
            is_out_of_scope=self.is_out_of_scope(query, retrieved),
        )

    def is_ambiguous(self, retrieved: list[RetrievedArticle]) -> bool:
        """True when near-top articles span two or more categories."""
        if len(retrieved) < 2:
            return False
        top_score = max(item.relevance_score for item in retrieved)
        contenders = {
            item.article.category
            for item in retrieved
            if top_score - item.relevance_score <= self._ambiguity_window
        }
        return len(contenders) >= 2

    def is_out_of_scope(self, query: str, retrieved: list[RetrievedArticle]) -> bool:
        """True when nothing relevant was found and no domain term appears."""
        if any(item.relevance_score >= self._min_relevance for item in retrieved):
            return False
        return not self.mentions_domain(query)

    def mentions_domain(self, query: str) -> bool:
        if self._anchor_pattern is None:
            return False
        return self._anchor_pattern.search(query) is not None
