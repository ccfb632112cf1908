"""
Escalation Router

Decides whether a Tier 1 result should be escalated to Tier 2. The decision
is a pure function of the Tier 1 result, the raw query and the policy.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple

from ..common.config import RoutingConfig
from ..common.schemas import AnalysisResult


class RouteDecision(str, Enum):
    ESCALATE = "escalate"
    STOP = "stop"


@dataclass(frozen=True)
class RoutingPolicy:
    """Escalation thresholds"""
    enabled: bool = True
    escalation_length: int = 500
    suspicious_min_score: int = 21
    suspicious_max_score: int = 49

    @classmethod
    def from_config(cls, config: RoutingConfig) -> "RoutingPolicy":
        return cls(
            enabled=config.tier2_enabled,
            escalation_length=config.escalation_length,
            suspicious_min_score=config.suspicious_min_score,
            suspicious_max_score=config.suspicious_max_score,
        )


@dataclass
class RoutingDecision:
    decision: RouteDecision
    reasons: List[str] = field(default_factory=list)

    @property
    def escalate(self) -> bool:
        return self.decision == RouteDecision.ESCALATE


# Structural hints that a payload is hiding its intent
OBFUSCATION_MARKERS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = tuple(
    (name, re.compile(regex, re.IGNORECASE | re.DOTALL))
    for name, regex in (
        ("char_building", r"\b(?:CHAR|CHR|NCHAR)\s*\("),
        ("encoding_function", r"\b(?:UNHEX|HEX|FROM_BASE64|TO_BASE64|DECODE|ENCODE)\s*\("),
        ("hex_literal", r"\b0x[0-9a-f]{4,}\b"),
        ("url_encoding", r"(?:%[0-9a-f]{2}){2,}"),
        ("inline_comment_split", r"\w/\*.*?\*/\w"),
        ("versioned_comment", r"/\*!"),
        ("escaped_bytes", r"\\x[0-9a-f]{2}"),
        ("charset_conversion", r"\bCONVERT\s*\([^)]*\bUSING\b"),
        ("string_concatenation", r"'\s*(?:\|\||\+)\s*'"),
    )
)


def find_obfuscation_markers(query: str) -> List[str]:
    """Names of the obfuscation markers present in a query."""
    return [name for name, matcher in OBFUSCATION_MARKERS if matcher.search(query)]


def route(tier1: AnalysisResult, query: str, policy: RoutingPolicy) -> RoutingDecision:
    """
    ESCALATE when Tier 2 is enabled and any of:
    - the query is longer than the escalation length
    - the query carries obfuscation markers
    - the Tier 1 score is in the suspicious-but-inconclusive band
    """
    if not policy.enabled:
        return RoutingDecision(RouteDecision.STOP)

    reasons = []
    if len(query) > policy.escalation_length:
        reasons.append(f"length>{policy.escalation_length}")

    reasons.extend(f"obfuscation:{marker}" for marker in find_obfuscation_markers(query))

    if policy.suspicious_min_score <= tier1.score <= policy.suspicious_max_score:
        reasons.append(f"suspicious_score:{tier1.score}")

    if reasons:
        return RoutingDecision(RouteDecision.ESCALATE, reasons)
    return RoutingDecision(RouteDecision.STOP)
