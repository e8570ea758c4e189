"""Lead scoring."""

from .lead_scoring import (
    DIMENSION_CAPS,
    INDUSTRY_WEIGHTS,
    LeadScore,
    LeadScoreDimensions,
    LeadTier,
    ScoringMode,
    determine_tier,
    score,
)

__all__ = [
    "DIMENSION_CAPS",
    "INDUSTRY_WEIGHTS",
    "LeadScore",
    "LeadScoreDimensions",
    "LeadTier",
    "ScoringMode",
    "determine_tier",
    "score",
]
