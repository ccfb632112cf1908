"""
Knowledge Retriever

Hybrid semantic + lexical search over the document store and the static
security knowledge base. Degrades to lexical-only search over the static
corpus whenever the embedding provider cannot be reached.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..common.config import RetrieverConfig
from ..common.embedding_service import batch_cosine_similarity
from ..common.errors import InputError, ProviderUnavailable, StoreUnavailableError
from ..common.schemas import IngestResult, KnowledgeDocument, SearchResult, compute_checksum
from ..common.service_client import ServiceClient
from .chunking import split_text
from .document_store import DocumentStore
from .knowledge_base import SecurityKnowledgeBase
from .lexical import lexical_score

logger = logging.getLogger("sqlguard.retriever.searcher")

MODE_SEMANTIC = "semantic"
MODE_HYBRID = "hybrid"
MODE_LEXICAL = "lexical"
SEARCH_MODES = (MODE_SEMANTIC, MODE_HYBRID, MODE_LEXICAL)

SOURCE_ALL = "all"
SOURCE_STORE = "store"
SOURCE_IN_MEMORY = "in_memory"
SOURCE_FILTERS = (SOURCE_ALL, SOURCE_STORE, SOURCE_IN_MEMORY)

# Store candidates fetched per search, before re-ranking
MIN_CANDIDATE_POOL = 20

EMBEDDING_ENDPOINT = "embedding"
STORE_ENDPOINT = "store"


@dataclass
class SearchOptions:
    """Per-search knobs; defaults mirror RetrieverConfig"""
    k: int = 5
    score_threshold: float = 0.1
    source_filter: str = SOURCE_ALL
    mode: str = MODE_HYBRID
    blend_weight: float = 0.3  # lexical share of the hybrid score
    doc_type: Optional[str] = None

    def __post_init__(self):
        if self.mode not in SEARCH_MODES:
            raise InputError(f"Unknown search mode: {self.mode}")
        if self.source_filter not in SOURCE_FILTERS:
            raise InputError(f"Unknown source filter: {self.source_filter}")
        if not 0.0 <= self.blend_weight <= 1.0:
            raise InputError("blend_weight must be between 0 and 1")

    @classmethod
    def from_config(cls, config: RetrieverConfig, **overrides) -> "SearchOptions":
        values = {
            "k": config.topk,
            "score_threshold": config.score_threshold,
            "blend_weight": config.blend_weight,
        }
        values.update(overrides)
        return cls(**values)


class KnowledgeRetriever:
    """
    Searches and ingests security knowledge.

    One instance per process, holding direct references to its embedding
    service, document store and knowledge base. Every embedding and store
    read goes through the shared ServiceClient.
    """

    def __init__(
        self,
        embedding_service,
        store: Optional[DocumentStore] = None,
        knowledge_base: Optional[SecurityKnowledgeBase] = None,
        service_client: Optional[ServiceClient] = None,
        config: Optional[RetrieverConfig] = None,
    ):
        """
        Initialize retriever.

        Args:
            embedding_service: EmbeddingService (or compatible) for vectors
            store: Document store; ignored when config.store_enabled is False
            knowledge_base: Static corpus (built-in corpus by default)
            service_client: Resilient call wrapper for provider calls
            config: Retriever configuration
        """
        self._config = config or RetrieverConfig()
        self._embedding = embedding_service
        self._store = store if self._config.store_enabled else None
        self._kb = knowledge_base if knowledge_base is not None else SecurityKnowledgeBase()
        self._service = service_client or ServiceClient()

        self._corpus_vectors: Optional[np.ndarray] = None
        self._corpus_lock = asyncio.Lock()
        # Per-checksum: identical content serializes, distinct documents embed concurrently
        self._ingest_locks = weakref.WeakValueDictionary()

    @property
    def store_enabled(self) -> bool:
        return self._store is not None

    @property
    def knowledge_base(self) -> SecurityKnowledgeBase:
        return self._kb

    def default_options(self, **overrides) -> SearchOptions:
        return SearchOptions.from_config(self._config, **overrides)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """
        Search for knowledge relevant to a query.

        Args:
            query: Free text or SQL
            options: SearchOptions (config defaults when omitted)

        Returns:
            At most k results, each scoring at least the threshold, best
            first; ties keep store order, then corpus order
        """
        options = options or self.default_options()
        if options.k <= 0 or not query or not query.strip():
            return []

        if options.mode == MODE_LEXICAL:
            return self._lexical_search(query, options)

        query_vector = await self._embed_query(query)
        if query_vector is None:
            logger.warning("Embedding unavailable, using lexical search for %r", query[:50])
            return self._lexical_search(query, options)

        candidates: List[Tuple[KnowledgeDocument, float, str]] = []

        if options.source_filter in (SOURCE_ALL, SOURCE_STORE) and self._store is not None:
            candidates.extend(await self._store_candidates(query_vector, options))

        if options.source_filter in (SOURCE_ALL, SOURCE_IN_MEMORY):
            candidates.extend(await self._corpus_candidates(query_vector, options))

        results = []
        for doc, semantic, source in candidates:
            lexical = lexical_score(query, doc.content)
            if options.mode == MODE_SEMANTIC:
                score = semantic
            else:
                score = semantic * (1.0 - options.blend_weight) + lexical * options.blend_weight
            results.append(SearchResult(
                document=doc,
                score=max(0.0, min(1.0, score)),
                source=source,
                semantic_score=semantic,
                lexical_score=lexical,
            ))

        return self._rank(results, options)

    @staticmethod
    def _rank(results: List[SearchResult], options: SearchOptions) -> List[SearchResult]:
        kept = [r for r in results if r.score >= options.score_threshold]
        # sort() is stable, so equal scores keep candidate order
        kept.sort(key=lambda r: r.score, reverse=True)
        return kept[:options.k]

    async def _embed_query(self, query: str) -> Optional[List[float]]:
        if not self._embedding.is_available:
            return None
        response = await self._service.call(
            EMBEDDING_ENDPOINT, lambda: self._embedding.embed_single(query)
        )
        if not response.ok:
            logger.warning(
                "Query embedding failed (%s): %s", response.error_type, response.error
            )
            return None
        return response.data

    async def _store_candidates(
        self,
        query_vector: List[float],
        options: SearchOptions,
    ) -> List[Tuple[KnowledgeDocument, float, str]]:
        pool = max(options.k * 4, MIN_CANDIDATE_POOL)
        response = await self._service.call(
            STORE_ENDPOINT,
            lambda: self._store.similarity_search(query_vector, pool, options.doc_type),
        )
        if not response.ok:
            logger.warning(
                "Skipping document store source (%s): %s", response.error_type, response.error
            )
            return []
        return [(doc, score, SOURCE_STORE) for doc, score in response.data]

    async def _corpus_candidates(
        self,
        query_vector: List[float],
        options: SearchOptions,
    ) -> List[Tuple[KnowledgeDocument, float, str]]:
        documents = self._kb.documents
        if not documents:
            return []

        vectors = await self._ensure_corpus_vectors()
        if vectors is None:
            return []

        if vectors.shape[1] != len(query_vector):
            logger.warning(
                "Skipping knowledge base source: dimension %d does not match query dimension %d",
                vectors.shape[1], len(query_vector),
            )
            return []

        scores = batch_cosine_similarity(query_vector, vectors)
        candidates = []
        for doc, score in zip(documents, scores):
            if options.doc_type and doc.doc_type != options.doc_type:
                continue
            candidates.append((doc, float(score), SOURCE_IN_MEMORY))
        return candidates

    async def _ensure_corpus_vectors(self) -> Optional[np.ndarray]:
        """Embed the static corpus once, on first semantic search."""
        if self._corpus_vectors is not None:
            return self._corpus_vectors

        async with self._corpus_lock:
            if self._corpus_vectors is not None:
                return self._corpus_vectors

            texts = [doc.content for doc in self._kb.documents]
            response = await self._service.call(
                EMBEDDING_ENDPOINT, lambda: self._embedding.embed(texts)
            )
            if not response.ok:
                logger.warning(
                    "Skipping knowledge base source, corpus embedding failed (%s): %s",
                    response.error_type, response.error,
                )
                return None

            self._corpus_vectors = np.asarray(response.data, dtype=float)
            logger.info("Embedded %d knowledge base documents", len(texts))
            return self._corpus_vectors

    def _lexical_search(self, query: str, options: SearchOptions) -> List[SearchResult]:
        if options.source_filter == SOURCE_STORE:
            return []

        results = []
        for doc in self._kb.documents:
            if options.doc_type and doc.doc_type != options.doc_type:
                continue
            score = lexical_score(query, doc.content)
            results.append(SearchResult(
                document=doc,
                score=score,
                source=SOURCE_IN_MEMORY,
                lexical_score=score,
            ))
        return self._rank(results, options)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, name: str, content: str, doc_type: str = "document") -> IngestResult:
        """
        Chunk, embed and store a piece of content.

        Content whose checksum is already stored is not ingested again; the
        existing chunk count is returned with deduped=True.

        Raises:
            StoreUnavailableError: running in knowledge-base-only mode
            InputError: empty name or content
            ProviderUnavailable: chunks could not be embedded
        """
        if self._store is None:
            raise StoreUnavailableError("Document store is disabled; ingestion unavailable")
        if not isinstance(name, str) or not name.strip():
            raise InputError("Document name must be a non-empty string")
        if not isinstance(content, str) or not content.strip():
            raise InputError("Document content must be a non-empty string")

        checksum = compute_checksum(content)

        lock = self._ingest_locks.setdefault(checksum, asyncio.Lock())
        async with lock:
            existing = await self._store.find_by_checksum(checksum)
            if existing is not None:
                logger.info("Content of %s already stored as %s", name, existing.name)
                return IngestResult(name=name, checksum=checksum, chunks=existing.chunks, deduped=True)

            chunks = split_text(content, self._config.chunk_size, self._config.chunk_overlap)
            response = await self._service.call(
                EMBEDDING_ENDPOINT, lambda: self._embedding.embed(chunks)
            )
            if not response.ok:
                raise ProviderUnavailable(f"Could not embed {name}: {response.error}")

            documents = [
                KnowledgeDocument(
                    doc_id=f"{name}#{i}",
                    content=chunk,
                    checksum=compute_checksum(chunk),
                    metadata={
                        "type": doc_type,
                        "source": name,
                        "chunk_index": i,
                        "chunk_count": len(chunks),
                    },
                    embedding=tuple(float(v) for v in vector),
                    source_name=name,
                    chunk_index=i,
                )
                for i, (chunk, vector) in enumerate(zip(chunks, response.data))
            ]
            stored = await self._store.add_source(name, checksum, documents, doc_type)

        logger.info("Ingested %s: %d chunks", name, stored)
        return IngestResult(name=name, checksum=checksum, chunks=stored, deduped=False)

    async def delete_source(self, name: str) -> int:
        """Remove a source and all of its chunks from the store."""
        if self._store is None:
            raise StoreUnavailableError("Document store is disabled")
        return await self._store.delete_source(name)

    async def status(self) -> Dict[str, Any]:
        """Document counts per source and provider availability."""
        store_count, sources = 0, {}
        if self._store is not None:
            store_count = await self._store.count()
            sources = {s.name: s.chunks for s in await self._store.sources()}
        return {
            "store_enabled": self.store_enabled,
            "store_documents": store_count,
            "store_sources": sources,
            "knowledge_base_documents": len(self._kb),
            "corpus_embedded": self._corpus_vectors is not None,
            "embedding_available": self._embedding.is_available,
            "embedding_model": self._embedding.model_name,
        }
