"""Task scoring, capability matching and recommendations."""

from .capabilities import (
    CapabilityMatcher,
    KeywordCapabilityMatcher,
    agent_satisfies,
    required_capabilities,
)
from .recommender import (
    Recommendation,
    RecommendationEngine,
    ScoreBreakdown,
    ScoringWeights,
)

__all__ = [
    "CapabilityMatcher",
    "KeywordCapabilityMatcher",
    "Recommendation",
    "RecommendationEngine",
    "ScoreBreakdown",
    "ScoringWeights",
    "agent_satisfies",
    "required_capabilities",
]
