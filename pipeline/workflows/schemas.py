"""Pydantic schemas for structured model output in the form workflows."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _ModelOutput(BaseModel):
    model_config = ConfigDict(extra="allow")


# ─── Lead scoring ────────────────────────────────────────────────────


class QualityFactor(_ModelOutput):
    factor: str
    score: Optional[float] = None
    reasoning: Optional[str] = None


class RiskFactor(_ModelOutput):
    factor: str
    impact: Optional[str] = None
    reasoning: Optional[str] = None


class LeadQualityAnalysis(_ModelOutput):
    """Output of analyze_lead_quality."""
    quality_score: float = Field(default=50, ge=0, le=100)
    lead_tier: Optional[Literal["hot", "warm", "lukewarm", "cold"]] = None
    quality_factors: List[QualityFactor] = Field(default_factory=list)
    risk_factors: List[RiskFactor] = Field(default_factory=list)
    qualification_notes: Optional[str] = None
    recommended_actions: List[str] = Field(default_factory=list)
    estimated_value: Optional[Any] = None
    confidence_level: Optional[float] = Field(default=None, ge=0, le=1)
    buying_signals: List[str] = Field(default_factory=list)
    timing_indicators: Dict[str, Any] = Field(default_factory=dict)
    next_best_action: Optional[str] = None
    sentiment_analysis: Dict[str, Any] = Field(default_factory=dict)


# ─── Response processing ─────────────────────────────────────────────


class Insight(_ModelOutput):
    type: str
    description: Optional[str] = None
    confidence: Optional[float] = None


class ResponseFlag(_ModelOutput):
    type: str
    reason: Optional[str] = None
    severity: Optional[str] = None


class ResponseAnalysis(_ModelOutput):
    """Output of analyze_response_ai."""
    sentiment: Optional[str] = None
    confidence_score: Optional[float] = Field(default=None, ge=0, le=1)
    quality_indicators: Dict[str, float] = Field(default_factory=dict)
    insights: List[Insight] = Field(default_factory=list)
    flags: List[ResponseFlag] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    summary: Optional[str] = None


class FollowupQuestion(_ModelOutput):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    question_type: str = "text_short"
    configuration: Dict[str, Any] = Field(default_factory=dict)
    required: bool = False


class FollowupSuggestion(_ModelOutput):
    """Output of generate_followup_question."""
    question: FollowupQuestion
    reasoning: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    priority: Optional[Literal["high", "medium", "low"]] = None


# ─── Budget adaptation ───────────────────────────────────────────────


class BudgetQuestion(_ModelOutput):
    """Output of generate_budget_question."""
    title: str = Field(..., min_length=1)
    question_type: str = "text_long"
    description: Optional[str] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title cannot be blank")
        return value
