"""
Detection - Tier 1 signature scoring

Key Components:
- patterns: immutable, ordered signature sets (analysis, dialect, scan)
- PatternDetectionEngine: scores queries, runs multi-vector scans
- generate_secure_query: parameterized rewrite of a vulnerable query
"""

from .patterns import DetectionPattern, ANALYSIS_PATTERNS, normalize_dialect
from .engine import (
    PatternDetectionEngine,
    ScanResult,
    Vulnerability,
    SecureQuery,
    generate_secure_query,
)

__all__ = [
    "DetectionPattern",
    "ANALYSIS_PATTERNS",
    "normalize_dialect",
    "PatternDetectionEngine",
    "ScanResult",
    "Vulnerability",
    "SecureQuery",
    "generate_secure_query",
]
