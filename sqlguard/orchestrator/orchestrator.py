"""
Analysis Orchestrator

Top-level state machine of the two-tier pipeline:

RECEIVED -> TIER1_DONE -> ROUTE_DECISION -> TIER1_ONLY
                                         -> TIER2_IN_PROGRESS -> TIER2_DONE
                                                              -> TIER2_FAILED -> TIER1_FALLBACK

Tier 1 always runs and is the baseline answer. Tier 2 runs under a latency
budget and can only refine that answer; any Tier 2 failure yields the Tier 1
result labelled tier1_fallback.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..common.config import BatchConfig, DetectionConfig, RoutingConfig
from ..common.errors import InputError, ProviderUnavailable, StoreUnavailableError
from ..common.schemas import (
    AnalysisResult,
    Confidence,
    DocumentAnalysis,
    GuidanceMode,
    GuidanceResult,
    IngestResult,
    SearchResult,
    Tier,
    Tier2Verdict,
)
from ..common.service_client import ServiceClient, ServiceHealth
from ..detection.engine import PatternDetectionEngine, ScanResult, generate_secure_query
from ..retriever.searcher import KnowledgeRetriever, SearchOptions
from .router import RouteDecision, RoutingDecision, RoutingPolicy, route
from .tier2 import Tier2Outcome

logger = logging.getLogger("sqlguard.orchestrator")


class AnalysisState(str, Enum):
    RECEIVED = "received"
    TIER1_DONE = "tier1_done"
    ROUTE_DECISION = "route_decision"
    TIER1_ONLY = "tier1_only"
    TIER2_IN_PROGRESS = "tier2_in_progress"
    TIER2_DONE = "tier2_done"
    TIER2_FAILED = "tier2_failed"
    TIER1_FALLBACK = "tier1_fallback"


def _dedupe(items: Sequence[str]) -> List[str]:
    seen = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return seen


class AnalysisOrchestrator:
    """
    Routes, times out, falls back and fuses Tier 1 / Tier 2 results.

    Collaborators are injected; build_orchestrator() wires them from a
    SQLGuardConfig.
    """

    def __init__(
        self,
        engine: PatternDetectionEngine,
        tier2=None,
        retriever: Optional[KnowledgeRetriever] = None,
        service_client: Optional[ServiceClient] = None,
        detection: Optional[DetectionConfig] = None,
        routing: Optional[RoutingConfig] = None,
        batch: Optional[BatchConfig] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            engine: Tier 1 pattern detection engine
            tier2: Tier 2 backend (InProcessTier2 or PeerAnalysisClient);
                None means every query is Tier 1 only
            retriever: KnowledgeRetriever for search/ingest passthroughs
            service_client: Shared ServiceClient, for health reporting
            detection: Detection configuration (query length limit)
            routing: Escalation thresholds and the Tier 2 budget
            batch: Batch concurrency, deadline and size limits
        """
        self._engine = engine
        self._tier2 = tier2
        self._retriever = retriever
        self._service = service_client
        self._detection = detection or DetectionConfig()
        self._routing = routing or RoutingConfig()
        self._batch = batch or BatchConfig()
        self._policy = RoutingPolicy.from_config(self._routing)

    @property
    def policy(self) -> RoutingPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Single query
    # ------------------------------------------------------------------

    def _validate(self, query) -> None:
        if not isinstance(query, str):
            raise InputError(f"Query must be a string, got {type(query).__name__}")
        if not query.strip():
            raise InputError("Query must not be empty")
        limit = self._detection.max_query_length
        if len(query) > limit:
            raise InputError(f"Query length {len(query)} exceeds maximum of {limit} characters")

    def _tier1(self, query: str, dialect: Optional[str]) -> Tuple[AnalysisResult, RoutingDecision]:
        result = self._engine.analyze(query, dialect)
        logger.debug("%s: score=%d for %r", AnalysisState.TIER1_DONE.value, result.score, query[:50])

        decision = route(result, query, self._policy)
        if decision.escalate and self._tier2 is None:
            logger.debug("Escalation requested but no Tier 2 backend is configured")
            decision = RoutingDecision(RouteDecision.STOP)
        logger.debug(
            "%s: %s %s", AnalysisState.ROUTE_DECISION.value, decision.decision.value, decision.reasons
        )
        return result, decision

    async def analyze(self, query: str, dialect: Optional[str] = None) -> AnalysisResult:
        """
        Analyze a single query.

        Args:
            query: Query text
            dialect: Optional dialect hint

        Returns:
            AnalysisResult labelled tier1_only, tier1_tier2 or tier1_fallback

        Raises:
            InputError: non-string, empty or oversized query
        """
        self._validate(query)
        tier1, decision = self._tier1(query, dialect)

        if not decision.escalate:
            return tier1

        outcome = await self._run_tier2(query, tier1.dialect or dialect)
        return self._resolve(query, tier1, decision, outcome)

    async def _run_tier2(self, query: str, dialect: Optional[str]) -> Tier2Outcome:
        """Run the Tier 2 backend under the overall latency budget."""
        logger.debug("%s for %r", AnalysisState.TIER2_IN_PROGRESS.value, query[:50])
        budget = self._routing.tier2_budget
        try:
            return await asyncio.wait_for(self._tier2.analyze(query, dialect), timeout=budget)
        except asyncio.TimeoutError:
            return Tier2Outcome.failure(f"Tier 2 exceeded its {budget:.1f}s budget")
        except Exception as e:
            # Tier 2 must never take the pipeline down
            logger.error("Tier 2 backend error: %s", e, exc_info=True)
            return Tier2Outcome.failure(f"{type(e).__name__}: {e}")

    def _resolve(
        self,
        query: str,
        tier1: AnalysisResult,
        decision: RoutingDecision,
        outcome: Tier2Outcome,
    ) -> AnalysisResult:
        if outcome.ok and outcome.verdict is not None:
            logger.debug("%s for %r", AnalysisState.TIER2_DONE.value, query[:50])
            return self.merge(query, tier1, outcome.verdict, decision.reasons)

        logger.warning(
            "%s, falling back to Tier 1 for %r: %s",
            AnalysisState.TIER2_FAILED.value, query[:50], outcome.error,
        )
        return self.fallback(tier1, decision.reasons)

    def merge(
        self,
        query: str,
        tier1: AnalysisResult,
        verdict: Tier2Verdict,
        reasons: Optional[List[str]] = None,
    ) -> AnalysisResult:
        """Fuse a Tier 1 result with a Tier 2 verdict."""
        score = max(tier1.score, verdict.severity_score)
        vulnerable = tier1.vulnerable or verdict.vulnerable
        confidence = Confidence.HIGH if tier1.vulnerable == verdict.vulnerable else Confidence.MEDIUM

        secure_alternative = tier1.secure_alternative
        if secure_alternative is None and vulnerable and score > self._detection.remediation_threshold:
            secure_alternative = generate_secure_query(query, tier1.dialect).secure

        return tier1.model_copy(update={
            "score": score,
            "vulnerable": vulnerable,
            "confidence": confidence,
            "recommendations": _dedupe(tier1.recommendations + verdict.recommendations),
            "sources": list(verdict.sources),
            "tier": Tier.TIER1_TIER2,
            "secure_alternative": secure_alternative,
            "explanation": verdict.explanation or tier1.explanation,
            "escalation_reasons": list(reasons or []),
        })

    @staticmethod
    def fallback(tier1: AnalysisResult, reasons: Optional[List[str]] = None) -> AnalysisResult:
        """Tier 1 result relabelled as a degraded answer."""
        return tier1.model_copy(update={
            "tier": Tier.TIER1_FALLBACK,
            "confidence": tier1.confidence.cap(Confidence.MEDIUM),
            "escalation_reasons": list(reasons or []),
        })

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def batch_analyze(
        self,
        queries: Sequence[str],
        dialect: Optional[str] = None,
    ) -> List[AnalysisResult]:
        """
        Analyze many queries independently.

        Tier 1 runs for every query first; escalated queries then run Tier 2
        concurrently, bounded by batch.max_concurrency. Tier 2 calls still
        pending at the batch deadline are abandoned and resolve to their
        Tier 1 result labelled tier1_fallback. Output order matches input
        order.

        Raises:
            InputError: not a list, too many queries, or any invalid query
        """
        if isinstance(queries, str) or not isinstance(queries, (list, tuple)):
            raise InputError("Batch must be a list of queries")
        if len(queries) > self._batch.max_batch_size:
            raise InputError(
                f"Batch of {len(queries)} exceeds maximum of {self._batch.max_batch_size} queries"
            )
        for index, query in enumerate(queries):
            try:
                self._validate(query)
            except InputError as e:
                raise InputError(f"Query {index}: {e}") from e

        tier1_results = []
        decisions = []
        for query in queries:
            result, decision = self._tier1(query, dialect)
            tier1_results.append(result)
            decisions.append(decision)

        results: List[AnalysisResult] = list(tier1_results)
        escalated = [i for i, d in enumerate(decisions) if d.escalate]
        if not escalated:
            return results

        semaphore = asyncio.Semaphore(max(1, self._batch.max_concurrency))

        async def _bounded(index: int) -> Tier2Outcome:
            async with semaphore:
                return await self._run_tier2(queries[index], tier1_results[index].dialect or dialect)

        tasks = {asyncio.ensure_future(_bounded(i)): i for i in escalated}
        done, pending = await asyncio.wait(tasks.keys(), timeout=self._batch.deadline)

        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                "Batch deadline of %.1fs reached, abandoning %d Tier 2 calls",
                self._batch.deadline, len(pending),
            )
            await asyncio.gather(*pending, return_exceptions=True)

        for task, index in tasks.items():
            if task in done and not task.cancelled() and task.exception() is None:
                outcome = task.result()
            else:
                outcome = Tier2Outcome.failure("Abandoned at batch deadline")
            results[index] = self._resolve(queries[index], tier1_results[index], decisions[index], outcome)

        return results

    # ------------------------------------------------------------------
    # Passthroughs
    # ------------------------------------------------------------------

    async def ingest_document(self, name: str, content: str, doc_type: str = "document") -> IngestResult:
        if self._retriever is None:
            raise StoreUnavailableError("No knowledge retriever configured")
        return await self._retriever.ingest(name, content, doc_type)

    async def analyze_document(
        self,
        name: str,
        content: str,
        doc_type: str = "uploaded_file",
        dialect: Optional[str] = None,
    ) -> DocumentAnalysis:
        """
        Ingest a document into the knowledge store, then analyze its content
        as a query.

        An ingestion failure does not stop the analysis; it is reported in
        DocumentAnalysis.ingest_error.

        Raises:
            InputError: empty name, or content that is not a valid query
        """
        if not isinstance(name, str) or not name.strip():
            raise InputError("Document name must be a non-empty string")
        self._validate(content)

        ingest, ingest_error = None, None
        try:
            ingest = await self.ingest_document(name, content, doc_type)
        except (StoreUnavailableError, ProviderUnavailable) as e:
            logger.warning("Analyzing %s without ingesting it: %s", name, e)
            ingest_error = str(e)

        analysis = await self.analyze(content, dialect)
        return DocumentAnalysis(name=name, analysis=analysis, ingest=ingest, ingest_error=ingest_error)

    async def security_advice(self, question: str) -> GuidanceResult:
        """Prioritized remediation advice for a free-text security question."""
        return await self._guidance(GuidanceMode.SECURITY_ADVICE, question)

    async def explain_vulnerability(self, topic: str) -> GuidanceResult:
        """Developer-facing explanation of a vulnerability class or concept."""
        return await self._guidance(GuidanceMode.EXPLAIN_VULNERABILITY, topic)

    async def _guidance(self, mode: GuidanceMode, question: str) -> GuidanceResult:
        self._validate(question)
        if self._tier2 is None:
            return GuidanceResult(mode=mode, question=question, ok=False, error="No Tier 2 backend configured")

        budget = self._routing.tier2_budget
        try:
            return await asyncio.wait_for(self._tier2.guidance(mode, question), timeout=budget)
        except asyncio.TimeoutError:
            error = f"{mode.value} exceeded its {budget:.1f}s budget"
        except Exception as e:
            logger.error("Tier 2 backend error: %s", e, exc_info=True)
            error = f"{type(e).__name__}: {e}"
        logger.warning("%s failed for %r: %s", mode.value, question[:50], error)
        return GuidanceResult(mode=mode, question=question, ok=False, error=error)

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        if self._retriever is None:
            return []
        return await self._retriever.search(query, options)

    def scan(self, payload: str, scan_type: str = "comprehensive") -> ScanResult:
        return self._engine.scan(payload, scan_type)

    def health_check(self) -> Dict[str, ServiceHealth]:
        """Health of every endpoint Tier 2 depends on."""
        if self._service is None:
            return {}
        endpoints = list(getattr(self._tier2, "endpoints", []))
        return self._service.health_check(endpoints)

    async def status(self) -> Dict[str, Any]:
        """Snapshot of the pipeline for operators."""
        return {
            "tier1_patterns": self._engine.pattern_count,
            "tier2_backend": type(self._tier2).__name__ if self._tier2 is not None else None,
            "knowledge": await self._retriever.status() if self._retriever is not None else {},
            "endpoints": {name: health.to_dict() for name, health in self.health_check().items()},
        }

    async def close(self) -> None:
        if self._service is not None:
            await self._service.close()
