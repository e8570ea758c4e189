"""Lead Scoring Calculator

Pure, deterministic scoring of a completed form response.

Two modes:
- simple: model quality score plus content-richness bonuses
- multi-dimensional: six independently capped dimension scores combined with
  industry weight multipliers

Either way the result is an integer in [0, 100] and a tier:
hot >= 80, warm 60-79, lukewarm 40-59, cold < 40.

``response_data`` layout::

    {
        "answers": {question_key: answer, ...},
        "enriched_data": {"industry": str, "company_size": int, ...},
        "completion_time": float | None,   # minutes
        "form": {"ai_enhanced": bool, "ai_configuration": {...}},
    }
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

# Per-dimension ceilings
DIMENSION_CAPS: Dict[str, int] = {
    "technical_readiness": 50,
    "business_impact": 55,
    "financial_capacity": 45,
    "urgency": 40,
    "decision_authority": 45,
    "implementation_simplicity": 50,
}

DEFAULT_WEIGHTS: Dict[str, float] = {name: 1.0 for name in DIMENSION_CAPS}

INDUSTRY_WEIGHTS: Dict[str, Dict[str, float]] = {
    "technology": {
        "technical_readiness": 1.2,
        "business_impact": 1.1,
        "financial_capacity": 1.0,
        "urgency": 1.0,
        "decision_authority": 1.0,
        "implementation_simplicity": 0.9,
    },
    "healthcare": {
        "technical_readiness": 0.8,
        "business_impact": 1.3,
        "financial_capacity": 1.1,
        "urgency": 1.2,
        "decision_authority": 0.9,
        "implementation_simplicity": 1.3,
    },
    "financial_services": {
        "technical_readiness": 1.1,
        "business_impact": 1.2,
        "financial_capacity": 1.2,
        "urgency": 1.1,
        "decision_authority": 1.1,
        "implementation_simplicity": 1.2,
    },
    "manufacturing": {
        "technical_readiness": 0.9,
        "business_impact": 1.1,
        "financial_capacity": 1.0,
        "urgency": 0.9,
        "decision_authority": 1.0,
        "implementation_simplicity": 1.1,
    },
    "retail": {
        "technical_readiness": 1.0,
        "business_impact": 1.2,
        "financial_capacity": 0.9,
        "urgency": 1.1,
        "decision_authority": 1.0,
        "implementation_simplicity": 1.0,
    },
}

BUSINESS_IMPACT_KEYWORDS = ("revenue", "cost", "efficiency", "competitive", "growth")
URGENCY_KEYWORDS = ("urgente", "crisis", "competencia", "perdiendo", "inmediato")

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_BUDGET_DIGITS = re.compile(r"[\d,]+")


class LeadTier(str, Enum):
    HOT = "hot"
    WARM = "warm"
    LUKEWARM = "lukewarm"
    COLD = "cold"


class ScoringMode(str, Enum):
    SIMPLE = "simple"
    MULTI_DIMENSIONAL = "multi_dimensional"


@dataclass(frozen=True)
class LeadScoreDimensions:
    technical_readiness: int
    business_impact: int
    financial_capacity: int
    urgency: int
    decision_authority: int
    implementation_simplicity: int

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class LeadScore:
    """Scoring outcome.

    Attributes:
        score: Final integer score in [0, 100]
        tier: Tier derived from ``score``
        mode: Which scoring mode produced it
        dimensions: Capped dimension scores (multi-dimensional mode only)
        weights: Industry weights applied (multi-dimensional mode only)
        contributions: Weighted contribution per dimension before clamping
        raw_score: Unclamped, unrounded total
    """

    score: int
    tier: LeadTier
    mode: ScoringMode
    raw_score: float
    dimensions: Optional[LeadScoreDimensions] = None
    weights: Optional[Dict[str, float]] = None
    contributions: Optional[Dict[str, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "tier": self.tier.value,
            "mode": self.mode.value,
            "raw_score": self.raw_score,
            "dimensions": self.dimensions.as_dict() if self.dimensions else None,
            "weights": dict(self.weights) if self.weights else None,
            "contributions": dict(self.contributions) if self.contributions else None,
        }


# ─── Entry points ────────────────────────────────────────────────────


def score(analysis: Optional[Mapping[str, Any]], response_data: Mapping[str, Any]) -> LeadScore:
    """Score a response. Pure: identical inputs always give identical results."""
    analysis = analysis or {}
    if use_multi_dimensional(response_data):
        return multi_dimensional_score(analysis, response_data)
    return simple_score(analysis, response_data)


def determine_tier(value: int) -> LeadTier:
    if value >= 80:
        return LeadTier.HOT
    if value >= 60:
        return LeadTier.WARM
    if value >= 40:
        return LeadTier.LUKEWARM
    return LeadTier.COLD


def use_multi_dimensional(response_data: Mapping[str, Any]) -> bool:
    form = response_data.get("form") or {}
    lead_scoring = (form.get("ai_configuration") or {}).get("lead_scoring") or {}
    return bool(form.get("ai_enhanced")) and lead_scoring.get("enabled") is True


def clamp_and_round(value: float) -> int:
    """Clamp to [0, 100] and round half up; NaN reads as 0."""
    if math.isnan(value):
        return 0
    return int(math.floor(min(max(value, 0.0), 100.0) + 0.5))


# ─── Simple mode ─────────────────────────────────────────────────────


def simple_score(analysis: Mapping[str, Any], response_data: Mapping[str, Any]) -> LeadScore:
    total = _to_number(analysis.get("quality_score"), 50)

    if response_data.get("enriched_data"):
        total += 15

    answers = response_data.get("answers") or {}
    detailed = sum(1 for answer in answers.values() if len(_text(answer)) > 50)
    total += min(detailed * 5, 20)

    completion_time = response_data.get("completion_time")
    if completion_time is not None:
        if completion_time < 10:
            total += 10
        elif completion_time > 30:
            total -= 5

    final = clamp_and_round(total)
    return LeadScore(score=final, tier=determine_tier(final), mode=ScoringMode.SIMPLE, raw_score=float(total))


# ─── Multi-dimensional mode ──────────────────────────────────────────


def multi_dimensional_score(analysis: Mapping[str, Any], response_data: Mapping[str, Any]) -> LeadScore:
    dimensions = compute_dimensions(analysis, response_data)
    enriched = response_data.get("enriched_data") or {}
    weights = industry_weights(enriched.get("industry"))
    total, contributions = weighted_sum(dimensions, weights)

    final = clamp_and_round(total)
    return LeadScore(
        score=final,
        tier=determine_tier(final),
        mode=ScoringMode.MULTI_DIMENSIONAL,
        raw_score=total,
        dimensions=dimensions,
        weights=weights,
        contributions=contributions,
    )


def compute_dimensions(analysis: Mapping[str, Any], response_data: Mapping[str, Any]) -> LeadScoreDimensions:
    answers = response_data.get("answers") or {}
    enriched = response_data.get("enriched_data") or {}
    return LeadScoreDimensions(
        technical_readiness=technical_readiness_score(answers),
        business_impact=business_impact_score(answers),
        financial_capacity=financial_capacity_score(answers, enriched),
        urgency=urgency_score(analysis, answers),
        decision_authority=decision_authority_score(answers),
        implementation_simplicity=implementation_simplicity_score(answers),
    )


def industry_weights(industry: Any) -> Dict[str, float]:
    if not industry:
        return dict(DEFAULT_WEIGHTS)
    return dict(INDUSTRY_WEIGHTS.get(str(industry).lower(), DEFAULT_WEIGHTS))


def weighted_sum(dimensions: LeadScoreDimensions, weights: Mapping[str, float]) -> Tuple[float, Dict[str, float]]:
    contributions = {
        name: value * weights.get(name, 1.0)
        for name, value in dimensions.as_dict().items()
    }
    return sum(contributions.values()), contributions


def _cap(name: str, value: float) -> int:
    return int(min(max(value, 0), DIMENSION_CAPS[name]))


def technical_readiness_score(answers: Mapping[str, Any]) -> int:
    total = _to_int(answers.get("technical_maturity_score"), 5) * 2

    ai_experience = _lower(answers.get("ai_experience"), "none")
    if ai_experience in ("experto", "advanced"):
        total += 20
    elif ai_experience in ("intermedio", "intermediate"):
        total += 15
    elif ai_experience in ("básico", "basic"):
        total += 10
    else:
        total += 5

    infrastructure = _lower(answers.get("current_infrastructure"), "basic")
    if infrastructure in ("cloud-native", "modern"):
        total += 15
    elif infrastructure in ("hybrid", "moderate"):
        total += 10
    elif infrastructure in ("legacy", "basic"):
        total += 5
    else:
        total += 8

    return _cap("technical_readiness", total)


def business_impact_score(answers: Mapping[str, Any]) -> int:
    use_cases = answers.get("ai_use_cases")
    challenge = answers.get("main_challenge")

    total = min(_length(use_cases) * 2, 20)
    total += min(_length(challenge) // 10, 15)

    alignment = _lower(answers.get("strategic_alignment"), "neutral")
    if alignment in ("high", "critical"):
        total += 20
    elif alignment in ("medium", "important"):
        total += 15
    elif alignment in ("low", "nice_to_have"):
        total += 10
    else:
        total += 12

    challenge_text = _lower(challenge, "")
    total += 3 * sum(1 for kw in BUSINESS_IMPACT_KEYWORDS if kw in challenge_text)

    return _cap("business_impact", total)


def financial_capacity_score(answers: Mapping[str, Any], enriched: Mapping[str, Any]) -> int:
    total = 0

    budget = extract_budget(answers.get("budget_amount"))
    if budget is not None:
        if budget >= 100000:
            total += 25
        elif budget >= 50000:
            total += 20
        elif budget >= 20000:
            total += 15
        elif budget >= 5000:
            total += 10
        else:
            total += 5

    company_size = _to_number(enriched.get("company_size"), 0)
    if company_size >= 1000:
        total += 20
    elif company_size >= 100:
        total += 15
    elif company_size >= 50:
        total += 10
    elif company_size >= 10:
        total += 8
    else:
        total += 5

    return _cap("financial_capacity", total)


def urgency_score(analysis: Mapping[str, Any], answers: Mapping[str, Any]) -> int:
    timeline = _lower(answers.get("timeline"), "long_term")
    if timeline in ("immediately", "1-3 meses"):
        total = 25
    elif timeline in ("3-6 meses", "short_term"):
        total = 20
    elif timeline in ("6-12 meses", "medium_term"):
        total = 15
    elif timeline in ("12+ meses", "long_term"):
        total = 10
    else:
        total = 12

    sentiment = (analysis.get("sentiment_analysis") or {}).get("sentiment_score")
    if _to_number(sentiment, 0) < -0.3:
        total += 15

    challenge_text = _lower(answers.get("main_challenge"), "")
    total += 5 * sum(1 for kw in URGENCY_KEYWORDS if kw in challenge_text)

    return _cap("urgency", total)


def decision_authority_score(answers: Mapping[str, Any]) -> int:
    role = _lower(answers.get("role"), "unknown")
    if role in ("ceo", "cto", "founder", "director", "vp"):
        total = 25
    elif role in ("manager", "head", "lead"):
        total = 20
    elif role in ("senior", "specialist"):
        total = 15
    else:
        total = 10

    authority = _lower(answers.get("decision_authority"), "unknown")
    if authority in ("tengo autoridad completa", "complete authority"):
        total += 20
    elif authority in ("tengo influencia significativa", "significant influence"):
        total += 15
    elif authority in ("tengo influencia limitada", "limited influence"):
        total += 10
    else:
        total += 5

    return _cap("decision_authority", total)


def implementation_simplicity_score(answers: Mapping[str, Any]) -> int:
    integration = _lower(answers.get("integration_needs"), "simple")
    if integration in ("simple", "standalone"):
        total = 20
    elif integration in ("moderate", "some_integration"):
        total = 15
    elif integration in ("complex", "heavy_integration"):
        total = 10
    else:
        total = 12

    compliance = _lower(answers.get("compliance_needs"), "none")
    if compliance == "none":
        total += 15
    elif compliance in ("basic", "standard"):
        total += 10
    elif compliance in ("strict", "regulated"):
        total += 5
    else:
        total += 10

    change_management = _lower(answers.get("change_management"), "minimal")
    if change_management == "minimal":
        total += 15
    elif change_management == "moderate":
        total += 10
    elif change_management == "significant":
        total += 5
    else:
        total += 10

    return _cap("implementation_simplicity", total)


def extract_budget(value: Any) -> Optional[int]:
    """First run of digits/commas in a budget answer ("$25,000 USD" -> 25000)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    match = _BUDGET_DIGITS.search(str(value))
    if not match:
        return None
    digits = match.group(0).replace(",", "")
    return int(digits) if digits else 0


# ─── Coercion helpers ────────────────────────────────────────────────


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _lower(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value).lower()


def _length(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (str, list, tuple, dict)):
        return len(value)
    return len(str(value))


def _to_int(value: Any, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else default
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


def _to_number(value: Any, default: float) -> float:
    """Numeric value of ``value``, or ``default`` when it is not a finite number."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = value
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return default
    return number if math.isfinite(number) else default
