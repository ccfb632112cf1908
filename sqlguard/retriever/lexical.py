"""
Lexical relevance measures used by hybrid and lexical-only search.
All scores are in 0.0 .. 1.0.
"""

import re
from typing import FrozenSet, Set

_TOKEN_RE = re.compile(r"[a-z0-9_$]+|--|/\*|\*/|'|;")

# Words too common in SQL and prose to carry relevance
STOP_WORDS = frozenset({
    "a", "an", "the", "of", "to", "in", "is", "and", "for", "on", "with",
    "by", "be", "as", "at", "it", "this", "that", "from", "select", "where",
})


def tokenize(text: str) -> FrozenSet[str]:
    """Distinct lowercase terms, stop words removed."""
    return frozenset(t for t in _TOKEN_RE.findall(text.lower()) if t not in STOP_WORDS)


def term_overlap(query: str, document: str) -> float:
    """Share of the query's terms that also occur in the document."""
    q_terms = tokenize(query)
    if not q_terms:
        return 0.0
    d_terms = tokenize(document)
    return len(q_terms & d_terms) / len(q_terms)


def _trigrams(text: str) -> Set[str]:
    normalized = " ".join(text.lower().split())
    if len(normalized) < 3:
        return {normalized} if normalized else set()
    return {normalized[i:i + 3] for i in range(len(normalized) - 2)}


def trigram_similarity(a: str, b: str) -> float:
    """Jaccard similarity of character trigrams (fuzzy match)."""
    ta, tb = _trigrams(a), _trigrams(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def lexical_score(query: str, document: str) -> float:
    """Best of term overlap and trigram similarity."""
    return max(term_overlap(query, document), trigram_similarity(query, document))
