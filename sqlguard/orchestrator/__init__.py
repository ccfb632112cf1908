"""
Orchestrator - two-tier analysis pipeline

Key Components:
- route(): pure escalation decision from a Tier 1 result
- InProcessTier2 / PeerAnalysisClient: Tier 2 backends
- AnalysisOrchestrator: state machine, fallback, fusion and batching
- build_orchestrator(): wiring from SQLGuardConfig
"""

from .router import RouteDecision, RoutingDecision, RoutingPolicy, route, find_obfuscation_markers
from .tier2 import Tier2Outcome, InProcessTier2
from .peer import PeerAnalysisClient
from .orchestrator import AnalysisOrchestrator, AnalysisState
from .factory import build_orchestrator

__all__ = [
    "RouteDecision",
    "RoutingDecision",
    "RoutingPolicy",
    "route",
    "find_obfuscation_markers",
    "Tier2Outcome",
    "InProcessTier2",
    "PeerAnalysisClient",
    "AnalysisOrchestrator",
    "AnalysisState",
    "build_orchestrator",
]
