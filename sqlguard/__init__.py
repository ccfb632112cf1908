"""
SQLGuard

Two-tier exploit detection for SQL queries and code snippets.

Philosophy:
- Tier 1 (signature scoring) always runs and is always available
- Tier 2 (retrieval + generative analysis) is optional and never destabilizes Tier 1
- Every result says which tier produced it and how confident it is

Usage:
    from sqlguard.common import load_config
    from sqlguard.detection import PatternDetectionEngine
    from sqlguard.retriever import KnowledgeRetriever, GenerativeAnalyzer
    from sqlguard.orchestrator import AnalysisOrchestrator, build_orchestrator
"""

__version__ = "0.1.0"
