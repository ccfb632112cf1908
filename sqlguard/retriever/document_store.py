"""
Document Store

Vector-augmented record store behind the knowledge retriever. The
DocumentStore interface is what the retriever depends on; the in-memory
implementation keeps chunk embeddings in a numpy matrix and is what a
single process uses when no external store is wired in.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..common.embedding_service import batch_cosine_similarity
from ..common.errors import InternalInconsistency
from ..common.schemas import KnowledgeDocument

logger = logging.getLogger("sqlguard.retriever.document_store")


@dataclass
class StoredSource:
    """One ingested piece of content and its chunk count"""
    name: str
    checksum: str
    chunks: int
    doc_type: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DocumentStore(ABC):
    """Interface for stores the retriever can search and ingest into."""

    @abstractmethod
    async def add_source(
        self,
        name: str,
        checksum: str,
        documents: Sequence[KnowledgeDocument],
        doc_type: str = "",
    ) -> int:
        """Store all chunks of a source; returns the number stored."""

    @abstractmethod
    async def find_by_checksum(self, checksum: str) -> Optional[StoredSource]:
        """Source previously ingested with this content checksum, if any."""

    @abstractmethod
    async def similarity_search(
        self,
        vector: Sequence[float],
        k: int,
        doc_type: Optional[str] = None,
    ) -> List[Tuple[KnowledgeDocument, float]]:
        """Top-k chunks by cosine similarity, best first."""

    @abstractmethod
    async def delete_source(self, name: str) -> int:
        """Delete a source and every chunk derived from it; returns chunks removed."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored chunks."""

    @abstractmethod
    async def sources(self) -> List[StoredSource]:
        """Every stored source, in ingestion order."""


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local document store.

    Every stored chunk must carry an embedding; the first chunk fixes the
    store's dimension and later chunks or queries of another size are
    rejected with InternalInconsistency.
    """

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension
        self._documents: List[KnowledgeDocument] = []
        self._matrix: Optional[np.ndarray] = None
        self._sources: Dict[str, StoredSource] = {}
        self._lock = asyncio.Lock()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _validate(self, documents: Sequence[KnowledgeDocument]) -> None:
        for doc in documents:
            if doc.embedding is None:
                raise InternalInconsistency(f"Document {doc.doc_id} has no embedding")
            size = len(doc.embedding)
            if self._dimension is None:
                self._dimension = size
            elif size != self._dimension:
                raise InternalInconsistency(
                    f"Document {doc.doc_id} has dimension {size}, store expects {self._dimension}"
                )

    def _rebuild_matrix(self) -> None:
        if self._documents:
            self._matrix = np.array([doc.embedding for doc in self._documents], dtype=float)
        else:
            self._matrix = None

    async def add_source(
        self,
        name: str,
        checksum: str,
        documents: Sequence[KnowledgeDocument],
        doc_type: str = "",
    ) -> int:
        async with self._lock:
            self._validate(documents)

            if name in self._sources:
                # Same name, new content: replace the previous version
                self._remove_source_locked(name)

            self._documents.extend(documents)
            self._sources[name] = StoredSource(
                name=name, checksum=checksum, chunks=len(documents), doc_type=doc_type
            )
            self._rebuild_matrix()

        logger.info("Stored source %s (%d chunks)", name, len(documents))
        return len(documents)

    async def find_by_checksum(self, checksum: str) -> Optional[StoredSource]:
        for source in self._sources.values():
            if source.checksum == checksum:
                return source
        return None

    async def similarity_search(
        self,
        vector: Sequence[float],
        k: int,
        doc_type: Optional[str] = None,
    ) -> List[Tuple[KnowledgeDocument, float]]:
        documents = self._documents
        matrix = self._matrix
        if matrix is None or k <= 0:
            return []

        if len(vector) != self._dimension:
            raise InternalInconsistency(
                f"Query dimension {len(vector)} does not match store dimension {self._dimension}"
            )

        scores = batch_cosine_similarity(vector, matrix)
        # Stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")

        results = []
        for idx in order:
            doc = documents[int(idx)]
            if doc_type and doc.doc_type != doc_type:
                continue
            results.append((doc, float(scores[idx])))
            if len(results) >= k:
                break
        return results

    def _remove_source_locked(self, name: str) -> int:
        before = len(self._documents)
        self._documents = [d for d in self._documents if d.source_name != name]
        self._sources.pop(name, None)
        self._rebuild_matrix()
        return before - len(self._documents)

    async def delete_source(self, name: str) -> int:
        async with self._lock:
            removed = self._remove_source_locked(name)
        if removed:
            logger.info("Deleted source %s (%d chunks)", name, removed)
        return removed

    async def count(self) -> int:
        return len(self._documents)

    async def sources(self) -> List[StoredSource]:
        return list(self._sources.values())
