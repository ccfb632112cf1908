"""
Wires an AnalysisOrchestrator and its collaborators from configuration.
"""

import logging
from typing import Optional

import httpx

from ..common.config import LLMConfig, SQLGuardConfig, load_config
from ..common.embedding_service import EmbeddingService
from ..common.llm_client import LLMClient
from ..common.service_client import ServiceClient
from ..detection.engine import PatternDetectionEngine
from ..retriever.context import ContextAssembler
from ..retriever.document_store import DocumentStore, InMemoryDocumentStore
from ..retriever.searcher import KnowledgeRetriever
from ..retriever.synthesizer import GenerativeAnalyzer
from .orchestrator import AnalysisOrchestrator
from .peer import PeerAnalysisClient
from .tier2 import InProcessTier2

logger = logging.getLogger("sqlguard.orchestrator.factory")


def _model_for(llm: LLMConfig) -> str:
    if llm.model:
        return llm.model
    return {
        "anthropic": llm.anthropic_model,
        "openai": llm.openai_model,
        "google": llm.google_model,
        "gemini": llm.google_model,
    }.get(llm.provider.lower(), "")


def build_llm_client(llm: LLMConfig) -> LLMClient:
    provider = "google" if llm.provider.lower() == "gemini" else llm.provider
    return LLMClient(
        provider=provider,
        model=_model_for(llm),
        anthropic_api_key=llm.anthropic_api_key or None,
        openai_api_key=llm.openai_api_key or None,
        google_api_key=llm.google_api_key or None,
    )


def build_orchestrator(
    config: Optional[SQLGuardConfig] = None,
    *,
    embedding_service=None,
    llm_client=None,
    store: Optional[DocumentStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AnalysisOrchestrator:
    """
    Build the full pipeline.

    Args:
        config: Configuration (load_config() when omitted)
        embedding_service: Override for the embedding provider
        llm_client: Override for the generative model client
        store: Override for the document store
        http_client: httpx client used for peer calls

    Returns:
        AnalysisOrchestrator with Tier 2 delegated to the configured peer,
        or run in-process when no peer endpoint is set
    """
    config = config or load_config()
    service = ServiceClient.from_config(
        config.service, http_client=http_client, budget=config.routing.tier2_budget
    )

    engine = PatternDetectionEngine(
        remediation_threshold=config.detection.remediation_threshold,
        suspicious_band=(config.routing.suspicious_min_score, config.routing.suspicious_max_score),
    )

    if embedding_service is None:
        embedding_service = EmbeddingService(
            mode=config.embedding.mode,
            model=config.embedding.model,
            api_key=config.embedding.openai_api_key or None,
        )

    if store is None and config.retriever.store_enabled:
        store = InMemoryDocumentStore()

    retriever = KnowledgeRetriever(
        embedding_service,
        store=store,
        service_client=service,
        config=config.retriever,
    )

    if config.peer.endpoint:
        logger.info("Tier 2 delegated to peer %s", config.peer.endpoint)
        tier2 = PeerAnalysisClient(
            config.peer.endpoint,
            service,
            api_key=config.peer.api_key or None,
            max_sources=config.retriever.topk,
        )
    else:
        analyzer = GenerativeAnalyzer(
            llm_client if llm_client is not None else build_llm_client(config.llm),
            service_client=service,
            assembler=ContextAssembler(config.retriever.max_context_chars),
            temperature=config.llm.temperature,
            max_output_tokens=config.llm.max_output_tokens,
        )
        tier2 = InProcessTier2(retriever, analyzer)

    return AnalysisOrchestrator(
        engine,
        tier2=tier2,
        retriever=retriever,
        service_client=service,
        detection=config.detection,
        routing=config.routing,
        batch=config.batch,
    )
