"""
Pattern Detection Engine

Tier 1 of the analysis pipeline: deterministic, signature-based scoring with
no I/O. Safe to call concurrently; the signature sets are read-only.
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..common.errors import InputError
from ..common.schemas import (
    VULNERABILITY_THRESHOLD,
    AnalysisResult,
    Confidence,
    RiskFactor,
    Severity,
    Tier,
)
from . import patterns as P

logger = logging.getLogger("sqlguard.detection.engine")

MAX_SCORE = 100
DEFAULT_SUSPICIOUS_BAND = (21, 49)
HIGH_CONFIDENCE_SCORE = 50

# Per-severity weights for multi-vector scans
SCAN_SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 40,
    Severity.HIGH: 25,
    Severity.MEDIUM: 15,
    Severity.LOW: 5,
}

SCAN_TYPE_ALIASES = {
    "sql_injection": "injection",
    "input_validation": "path-input",
    "path_input": "path-input",
}
SCAN_TYPES = ("injection", "xss", "path-input", "comprehensive")

VULN_SQL = "SQL Injection"
VULN_XSS = "Cross-Site Scripting (XSS)"
VULN_INPUT = "Input Validation"

_SCAN_RECOMMENDATIONS = {
    VULN_SQL: [
        "Implement parameterized queries",
        "Use input validation and sanitization",
        "Apply database user privilege restrictions",
    ],
    VULN_XSS: [
        "Implement output encoding/escaping",
        "Use Content Security Policy (CSP)",
        "Validate and sanitize all user inputs",
    ],
    VULN_INPUT: [
        "Implement strict input validation",
        "Use whitelist-based validation",
        "Implement file upload restrictions",
    ],
}

_PRIVILEGED_CATEGORIES = {P.CAT_DESTRUCTIVE, P.CAT_STACKED, P.CAT_EXEC, P.CAT_FILE}


def _has_category(factors: List[RiskFactor], *categories: str) -> bool:
    return any(f.category in categories for f in factors)


def _has_severity(factors: List[RiskFactor], *severities: Severity) -> bool:
    return any(f.severity in severities for f in factors)


# (recommendation, predicate over matched risk factors), in output order
_RECOMMENDATION_RULES = [
    ("Use parameterized queries or prepared statements",
     lambda fs: bool(fs)),
    ("Implement input validation and sanitization",
     lambda fs: bool(fs)),
    ("Apply the principle of least privilege for database users",
     lambda fs: _has_category(fs, *_PRIVILEGED_CATEGORIES)),
    ("Deploy a Web Application Firewall (WAF) in front of the application",
     lambda fs: _has_severity(fs, Severity.CRITICAL, Severity.HIGH)),
    ("Enable database audit logging",
     lambda fs: _has_severity(fs, Severity.CRITICAL, Severity.HIGH)),
    ("Return generic error messages without exposing database details",
     lambda fs: _has_category(fs, P.CAT_ERROR)),
    ("Enforce query timeouts and alert on anomalous response times",
     lambda fs: _has_category(fs, P.CAT_TIME)),
    ("Encode output and apply a Content Security Policy",
     lambda fs: _has_category(fs, P.CAT_XSS)),
    ("Never pass user input to file paths or shell commands",
     lambda fs: _has_category(fs, P.CAT_PATH, P.CAT_SHELL)),
    ("Reject operator keys such as $where in user-supplied documents",
     lambda fs: _has_category(fs, P.CAT_NOSQL)),
]


# ============================================================================
# Secure query generation
# ============================================================================

_TRAILING_STATEMENT = re.compile(
    r";\s*(?:DROP|DELETE|INSERT|UPDATE|CREATE|ALTER|TRUNCATE|EXEC(?:UTE)?)\b.*$",
    re.IGNORECASE | re.DOTALL,
)
_TRAILING_COMMENT = re.compile(r"--(?:\s.*)?$")
_STRING_LITERAL = re.compile(r"'((?:[^']|'')*)'")
_NUMERIC_LITERAL = re.compile(r"(?<=[=<>])(\s*)(-?\d+(?:\.\d+)?)\b")


@dataclass
class SecureQuery:
    """Parameterized rewrite of a query"""
    original: str
    secure: str
    parameters: List[str] = field(default_factory=list)
    explanation: str = (
        "String and numeric literals were replaced with positional placeholders "
        "and statements chained after a separator were removed. Bind the "
        "parameters through a prepared statement."
    )


def _placeholder_factory(dialect: Optional[str]):
    if dialect == "postgresql":
        return lambda n: f"${n}"
    if dialect == "mssql":
        return lambda n: f"@p{n}"
    return lambda n: "?"


def generate_secure_query(query: str, dialect: Optional[str] = None) -> SecureQuery:
    """
    Rewrite a query with positional placeholders.

    Anything after a separator followed by a destructive keyword is dropped,
    as is a trailing line comment; string literals and numeric comparison
    operands become placeholders, in order of appearance.
    """
    dialect = P.normalize_dialect(dialect)
    placeholder = _placeholder_factory(dialect)
    parameters: List[str] = []

    secure = _TRAILING_STATEMENT.sub("", query)
    secure = "\n".join(_TRAILING_COMMENT.sub("", line) for line in secure.split("\n"))

    def _bind(value: str) -> str:
        parameters.append(value)
        return placeholder(len(parameters))

    secure = _STRING_LITERAL.sub(lambda m: _bind(m.group(1).replace("''", "'")), secure)
    secure = _NUMERIC_LITERAL.sub(lambda m: m.group(1) + _bind(m.group(2)), secure)

    secure = secure.rstrip().rstrip(";").rstrip()
    return SecureQuery(original=query, secure=secure, parameters=parameters)


# ============================================================================
# Multi-vector scan results
# ============================================================================

@dataclass
class Vulnerability:
    """A typed finding from a multi-vector scan"""
    type: str
    severity: Severity
    description: str
    payload: str
    location: Optional[str] = None  # "start:end" character offsets
    pattern_id: str = ""


@dataclass
class ScanResult:
    """Outcome of a multi-vector scan"""
    scan_type: str
    vulnerabilities: List[Vulnerability] = field(default_factory=list)
    risk_score: int = 0
    recommendations: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_clean(self) -> bool:
        return not self.vulnerabilities

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for vuln in data["vulnerabilities"]:
            vuln["severity"] = vuln["severity"].value
        return data


# ============================================================================
# Engine
# ============================================================================

class PatternDetectionEngine:
    """
    Stateless signature scorer.

    Algorithm:
    1. Test the query against every analysis signature, in order
    2. Each matching signature adds its weight; dialect primitives add extra
    3. Cap at 100; vulnerable iff score > 20
    4. Derive recommendations from the matched categories
    5. Above the remediation threshold, synthesize a parameterized rewrite
    """

    def __init__(
        self,
        remediation_threshold: int = 40,
        suspicious_band: Tuple[int, int] = DEFAULT_SUSPICIOUS_BAND,
        patterns: Tuple[P.DetectionPattern, ...] = P.ANALYSIS_PATTERNS,
    ):
        self._remediation_threshold = remediation_threshold
        self._suspicious_band = suspicious_band
        self._patterns = patterns

    @property
    def pattern_count(self) -> int:
        return len(self._patterns)

    def confidence_for(self, score: int) -> Confidence:
        """Tier-1 confidence: decisive scores are HIGH, the suspicious band LOW."""
        low, high = self._suspicious_band
        if score == 0 or score >= HIGH_CONFIDENCE_SCORE:
            return Confidence.HIGH
        if low <= score <= high:
            return Confidence.LOW
        return Confidence.MEDIUM

    def analyze(self, query: str, dialect: Optional[str] = None) -> AnalysisResult:
        """
        Score a query against the signature set.

        Args:
            query: Raw query text (already validated by the caller)
            dialect: Optional dialect hint (mysql, postgresql, mssql, sqlite);
                unknown dialects fall back to the generic checks

        Returns:
            AnalysisResult labelled tier1_only
        """
        risk_factors: List[RiskFactor] = []
        detected: List[str] = []
        score = 0

        canonical = P.normalize_dialect(dialect)
        if dialect and canonical is None:
            logger.debug("Unknown dialect %r, using generic checks", dialect)

        signature_sets = [self._patterns]
        if canonical:
            signature_sets.append(P.DIALECT_PATTERNS[canonical])

        for signatures in signature_sets:
            for pattern in signatures:
                match = pattern.search(query)
                if not match:
                    continue
                detected.append(pattern.id)
                risk_factors.append(RiskFactor(
                    severity=pattern.severity,
                    description=pattern.description,
                    matched=match.group(0),
                    category=pattern.category,
                    pattern_id=pattern.id,
                ))
                score += pattern.weight

        score = min(score, MAX_SCORE)
        recommendations = self._recommendations(risk_factors, canonical)

        secure_alternative = None
        if score > self._remediation_threshold:
            secure_alternative = generate_secure_query(query, canonical).secure

        if detected:
            logger.debug("Tier 1 matched %s (score=%d) for %r", detected, score, query[:50])

        return AnalysisResult(
            vulnerable=score > VULNERABILITY_THRESHOLD,
            score=score,
            risk_factors=risk_factors,
            detected_patterns=detected,
            recommendations=recommendations,
            secure_alternative=secure_alternative,
            tier=Tier.TIER1_ONLY,
            confidence=self.confidence_for(score),
            dialect=canonical,
            explanation=self._explain(risk_factors, score),
        )

    def _recommendations(self, factors: List[RiskFactor], dialect: Optional[str]) -> List[str]:
        recommendations = [text for text, applies in _RECOMMENDATION_RULES if applies(factors)]
        if dialect and any(f.pattern_id.startswith(dialect) for f in factors):
            recommendations.append(f"Follow {dialect}-specific security hardening guidance")
        return recommendations

    @staticmethod
    def _explain(factors: List[RiskFactor], score: int) -> str:
        if not factors:
            return "No injection signatures matched."
        categories = []
        for factor in factors:
            if factor.category not in categories:
                categories.append(factor.category)
        return (
            f"Matched {len(factors)} signature(s) in categories "
            f"{', '.join(categories)}; risk score {score}/100."
        )

    def scan(self, payload: str, scan_type: str = "comprehensive") -> ScanResult:
        """
        Multi-vector scan of an arbitrary payload.

        Args:
            payload: Input to scan
            scan_type: injection, xss, path-input or comprehensive
                (sql_injection and input_validation are accepted aliases)

        Raises:
            InputError: unknown scan type or non-string payload
        """
        if not isinstance(payload, str):
            raise InputError("Scan payload must be a string")

        kind = SCAN_TYPE_ALIASES.get(scan_type, scan_type)
        if kind not in SCAN_TYPES:
            raise InputError(f"Unknown scan type: {scan_type}")

        vulnerabilities: List[Vulnerability] = []
        if kind in ("injection", "comprehensive"):
            sql_patterns = [p for p in self._patterns if p.vector == P.VECTOR_SQL]
            vulnerabilities.extend(self._scan_with(payload, sql_patterns, VULN_SQL))
        if kind in ("xss", "comprehensive"):
            vulnerabilities.extend(self._scan_with(payload, P.XSS_SCAN_PATTERNS, VULN_XSS))
        if kind in ("path-input", "comprehensive"):
            vulnerabilities.extend(self._scan_with(payload, P.INPUT_SCAN_PATTERNS, VULN_INPUT))

        risk = sum(SCAN_SEVERITY_WEIGHTS[v.severity] for v in vulnerabilities)

        recommendations: List[str] = []
        for vuln in vulnerabilities:
            for text in _SCAN_RECOMMENDATIONS[vuln.type]:
                if text not in recommendations:
                    recommendations.append(text)

        logger.debug("Scan %s found %d vulnerabilities", kind, len(vulnerabilities))
        return ScanResult(
            scan_type=kind,
            vulnerabilities=vulnerabilities,
            risk_score=min(risk, MAX_SCORE),
            recommendations=recommendations,
        )

    @staticmethod
    def _scan_with(payload: str, patterns, vuln_type: str) -> List[Vulnerability]:
        found = []
        for pattern in patterns:
            match = pattern.search(payload)
            if match:
                found.append(Vulnerability(
                    type=vuln_type,
                    severity=pattern.severity,
                    description=f"{pattern.description}: {match.group(0)}",
                    payload=match.group(0),
                    location=f"{match.start()}:{match.end()}",
                    pattern_id=pattern.id,
                ))
        return found
