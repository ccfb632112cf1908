"""
Knowledge Schemas

Documents held by the retriever (static corpus or document store) and the
ranked results it returns.
"""

import hashlib
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Literal, Optional, Sequence, Tuple

from .analysis import AnalysisResult, SourceAttribution


def compute_checksum(content: str) -> str:
    """Content checksum used as the deduplication key."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class KnowledgeDocument:
    """
    A unit of retrievable knowledge.

    Documents are immutable: an embedding is attached once with
    with_embedding() and never changes afterwards.
    """
    doc_id: str
    content: str
    checksum: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[Tuple[float, ...]] = None
    source_name: str = ""
    chunk_index: int = 0

    @property
    def doc_type(self) -> str:
        return self.metadata.get("type", "")

    @property
    def severity(self) -> str:
        return self.metadata.get("severity", "")

    @property
    def category(self) -> str:
        return self.metadata.get("category", "")

    @property
    def dimension(self) -> Optional[int]:
        return len(self.embedding) if self.embedding is not None else None

    def with_embedding(self, vector: Sequence[float]) -> "KnowledgeDocument":
        """Return a copy carrying the given embedding."""
        if self.embedding is not None:
            raise ValueError(f"Document {self.doc_id} already has an embedding")
        return replace(self, embedding=tuple(float(v) for v in vector))


@dataclass
class SearchResult:
    """A single ranked hit"""
    document: KnowledgeDocument
    score: float  # normalized 0..1
    source: Literal["store", "in_memory"]
    semantic_score: Optional[float] = None
    lexical_score: Optional[float] = None

    @property
    def content(self) -> str:
        return self.document.content

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.document.metadata

    def to_attribution(self) -> SourceAttribution:
        return SourceAttribution(
            document_id=self.document.doc_id,
            source=self.source,
            score=max(0.0, min(1.0, self.score)),
            source_name=self.document.source_name,
            doc_type=self.document.doc_type,
        )


@dataclass
class IngestResult:
    """Outcome of ingesting one named piece of content"""
    name: str
    checksum: str
    chunks: int
    deduped: bool


@dataclass
class DocumentAnalysis:
    """An uploaded document: how it was ingested and how its content scored"""
    name: str
    analysis: AnalysisResult
    ingest: Optional[IngestResult] = None
    ingest_error: Optional[str] = None
