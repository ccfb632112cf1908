"""
Tier 2 backends

Both backends expose the same coroutines and return values instead of
raising for provider failures:
- analyze(query, dialect) -> Tier2Outcome
- guidance(mode, question) -> GuidanceResult

InProcessTier2 runs the knowledge retriever and generative analyzer in this
process; PeerAnalysisClient (peer.py) delegates to a remote analysis peer.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..common.schemas import GuidanceMode, GuidanceResult, Tier2Verdict
from ..retriever.searcher import EMBEDDING_ENDPOINT, STORE_ENDPOINT, KnowledgeRetriever
from ..retriever.synthesizer import MODEL_ENDPOINT, GenerativeAnalyzer

logger = logging.getLogger("sqlguard.orchestrator.tier2")


@dataclass
class Tier2Outcome:
    """Success carries a verdict; failure carries a reason"""
    ok: bool
    verdict: Optional[Tier2Verdict] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "Tier2Outcome":
        return cls(ok=False, error=error)


class InProcessTier2:
    """Retrieval-augmented analysis using local collaborators."""

    def __init__(self, retriever: KnowledgeRetriever, analyzer: GenerativeAnalyzer):
        self._retriever = retriever
        self._analyzer = analyzer

    @property
    def endpoints(self) -> List[str]:
        endpoints = [EMBEDDING_ENDPOINT, MODEL_ENDPOINT]
        if self._retriever.store_enabled:
            endpoints.insert(1, STORE_ENDPOINT)
        return endpoints

    async def analyze(self, query: str, dialect: Optional[str] = None) -> Tier2Outcome:
        results = await self._retriever.search(query)
        logger.debug("Retrieved %d knowledge results for %r", len(results), query[:50])

        rules = self._retriever.knowledge_base.rules_for_database(dialect) if dialect else []
        outcome = await self._analyzer.analyze(query, results, dialect, rules)
        if not outcome.ok:
            return Tier2Outcome.failure(outcome.error or "generative analysis failed")
        return Tier2Outcome(ok=True, verdict=outcome.verdict)

    async def guidance(self, mode: GuidanceMode, question: str) -> GuidanceResult:
        results = await self._retriever.search(question)
        outcome = await self._analyzer.guidance(mode.value, question, results)
        return GuidanceResult(
            mode=mode,
            question=question,
            ok=outcome.ok,
            answer=outcome.answer_text if outcome.ok else "",
            sources=[r.to_attribution() for r in outcome.sources],
            error=outcome.error,
        )
