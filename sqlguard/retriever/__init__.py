"""
Retriever - Tier 2 knowledge retrieval and generative analysis

Key Components:
- KnowledgeRetriever: hybrid semantic/lexical search and ingestion
- DocumentStore / InMemoryDocumentStore: vector-augmented chunk store
- SecurityKnowledgeBase: static SQL injection knowledge corpus
- ContextAssembler: bounded prompt context from ranked results
- GenerativeAnalyzer: fixed-prompt model call returning a structured verdict

Pipeline:
1. Embed the query (lexical fallback if the provider is down)
2. Score store and corpus candidates, blend with lexical relevance
3. Assemble the top results into a character-bounded context
4. Ask the model for a JSON verdict
"""

from .document_store import DocumentStore, InMemoryDocumentStore, StoredSource
from .knowledge_base import SecurityKnowledgeBase, build_static_corpus
from .searcher import KnowledgeRetriever, SearchOptions
from .context import ContextAssembler, AssembledContext
from .synthesizer import GenerativeAnalyzer, GenerationOutcome

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "StoredSource",
    "SecurityKnowledgeBase",
    "build_static_corpus",
    "KnowledgeRetriever",
    "SearchOptions",
    "ContextAssembler",
    "AssembledContext",
    "GenerativeAnalyzer",
    "GenerationOutcome",
]
