"""Query tokenisation shared by article search and relevance scoring."""

import re

MIN_TERM_LENGTH = 3

STOPWORDS: frozenset[str] = frozenset(
    {
        "the", "and", "but", "for", "with", "from", "was", "are", "were", "been",
        "have", "has", "had", "does", "did", "will", "would", "could", "should",
        "may", "might", "must", "shall", "can", "need", "this", "that", "these",
        "those", "its", "you", "your", "they", "she", "what", "which", "who",
        "whom", "when", "where", "why", "how", "all", "each", "every", "both",
        "few", "more", "most", "other", "some", "such", "nor", "not", "only",
        "own", "same", "about", "there", "into", "any",
    }
)

_WORD = re.compile(r"[^\W_]+")


def query_terms(query: str) -> list[str]:
    """Distinct lower-cased words of at least three letters, stopwords removed.

    Punctuation is dropped, so ``"open?"`` yields ``"open"``. Order of first
    occurrence is kept.
    """
    terms: list[str] = []
    for word in _WORD.findall(query.lower()):
        if len(word) >= MIN_TERM_LENGTH and word not in STOPWORDS and word not in terms:
            terms.append(word)
    return terms
