"""
Analysis Schemas

Wire-level shapes exchanged by the orchestrator, its callers and remote
analysis peers. Validated with pydantic so a peer response that does not fit
the contract is rejected before it can reach the merge step.
"""

from datetime import datetime, timezone
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, field_validator
from enum import Enum


# Scores strictly above this mark a query as vulnerable
VULNERABILITY_THRESHOLD = 20


# ============================================================================
# Enums
# ============================================================================

class Severity(str, Enum):
    """Risk factor severity tier"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Tier(str, Enum):
    """Which analysis tiers produced a result"""
    TIER1_ONLY = "tier1_only"
    TIER1_TIER2 = "tier1_tier2"
    TIER1_FALLBACK = "tier1_fallback"


class GuidanceMode(str, Enum):
    """Free-text Tier 2 answers that are not a verdict on a query"""
    SECURITY_ADVICE = "security_advice"
    EXPLAIN_VULNERABILITY = "explain_vulnerability"


class Confidence(str, Enum):
    """Agreement measure between tiers"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return {"LOW": 0, "MEDIUM": 1, "HIGH": 2}[self.value]

    def cap(self, ceiling: "Confidence") -> "Confidence":
        """Return the lower of self and ceiling."""
        return self if self.rank <= ceiling.rank else ceiling


# Tier-2 severity label -> score on the 0..100 scale
TIER2_SEVERITY_SCORES = {
    "critical": 95,
    "high": 80,
    "medium": 55,
    "low": 30,
    "none": 0,
}


# ============================================================================
# Sub-models
# ============================================================================

class RiskFactor(BaseModel):
    """A single matched risk, with the substring that triggered it"""
    severity: Severity
    description: str
    matched: str = Field(..., description="Substring of the query that matched")
    category: str = ""
    pattern_id: str = ""


class SourceAttribution(BaseModel):
    """Knowledge used by Tier 2 to reach its conclusion"""
    document_id: str
    source: Literal["store", "in_memory"]
    score: float = Field(ge=0.0, le=1.0)
    source_name: str = ""
    doc_type: str = ""


# ============================================================================
# Main models
# ============================================================================

class AnalysisResult(BaseModel):
    """Outcome of analyzing one query"""
    vulnerable: bool
    score: int = Field(ge=0, le=100)
    risk_factors: List[RiskFactor] = Field(default_factory=list)
    detected_patterns: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    secure_alternative: Optional[str] = None
    tier: Tier = Tier.TIER1_ONLY
    confidence: Confidence = Confidence.MEDIUM
    sources: List[SourceAttribution] = Field(default_factory=list)
    dialect: Optional[str] = None
    explanation: Optional[str] = None
    escalation_reasons: List[str] = Field(default_factory=list)

    @property
    def categories(self) -> List[str]:
        """Distinct risk categories, in first-match order"""
        seen: List[str] = []
        for factor in self.risk_factors:
            if factor.category and factor.category not in seen:
                seen.append(factor.category)
        return seen


class AnalysisRequest(BaseModel):
    """Request body sent to a remote analysis peer"""
    query: str
    database_type: Optional[str] = None
    context_type: str = "enhanced_analysis"
    use_ai: bool = True
    max_sources: int = Field(default=5, ge=1, le=50)


class Tier2Verdict(BaseModel):
    """Structured conclusion of the generative pass"""
    vulnerable: bool = False
    severity: str = "none"
    attack_types: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    explanation: str = ""
    sources: List[SourceAttribution] = Field(default_factory=list)

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value) -> str:
        label = str(value or "none").strip().lower()
        return label if label in TIER2_SEVERITY_SCORES else "none"

    @property
    def severity_score(self) -> int:
        """Severity mapped onto the Tier-1 score scale.

        A vulnerable verdict never maps at or below the vulnerability
        threshold; a safe verdict always maps to 0.
        """
        if not self.vulnerable:
            return 0
        score = TIER2_SEVERITY_SCORES[self.severity]
        if score <= VULNERABILITY_THRESHOLD:
            score = TIER2_SEVERITY_SCORES["medium"]
        return score


class GuidanceResult(BaseModel):
    """Security advice or a vulnerability explanation"""
    mode: GuidanceMode
    question: str
    ok: bool
    answer: str = ""
    sources: List[SourceAttribution] = Field(default_factory=list)
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
