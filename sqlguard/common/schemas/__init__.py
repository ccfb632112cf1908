"""
SQLGuard Schemas

- analysis: results, risk factors, peer request/verdict shapes (pydantic)
- knowledge: knowledge documents and search hits (dataclasses)
"""

from .analysis import (
    VULNERABILITY_THRESHOLD,
    TIER2_SEVERITY_SCORES,
    Severity,
    Tier,
    Confidence,
    RiskFactor,
    SourceAttribution,
    AnalysisResult,
    AnalysisRequest,
    Tier2Verdict,
    GuidanceMode,
    GuidanceResult,
)
from .knowledge import (
    KnowledgeDocument,
    SearchResult,
    IngestResult,
    DocumentAnalysis,
    compute_checksum,
)

__all__ = [
    "VULNERABILITY_THRESHOLD",
    "TIER2_SEVERITY_SCORES",
    "Severity",
    "Tier",
    "Confidence",
    "RiskFactor",
    "SourceAttribution",
    "AnalysisResult",
    "AnalysisRequest",
    "Tier2Verdict",
    "KnowledgeDocument",
    "SearchResult",
    "IngestResult",
    "DocumentAnalysis",
    "GuidanceMode",
    "GuidanceResult",
    "compute_checksum",
]
