"""Pipeline runtime settings: tunable parameters for workflow execution.

All values read from environment variables with sensible defaults.
Import from here instead of hardcoding.

Infrastructure config (provider URL, API keys, push endpoint) stays
in pipeline/config.py.
"""

from __future__ import annotations

import os
from typing import Dict


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =====================================================================
# Step timeouts
# =====================================================================

# Per-call timeout for LlmCall steps (seconds); exceeded -> llm_timeout
LLM_CALL_TIMEOUT = _float("LLM_CALL_TIMEOUT", 60.0)

# Stream publish is abandoned after this many seconds
STREAM_PUBLISH_TIMEOUT = _float("STREAM_PUBLISH_TIMEOUT", 2.0)


# =====================================================================
# HTTP clients (push channel, model provider, company data)
# =====================================================================

PUSH_HTTP_TIMEOUT = _float("PUSH_HTTP_TIMEOUT", 5.0)
PUSH_HTTP_MAX_CONNECTIONS = _int("PUSH_HTTP_MAX_CONNECTIONS", 10)
PUSH_HTTP_MAX_KEEPALIVE = _int("PUSH_HTTP_MAX_KEEPALIVE", 5)

LLM_HTTP_MAX_CONNECTIONS = _int("LLM_HTTP_MAX_CONNECTIONS", 10)

# Company data lookups for response enrichment
ENRICHMENT_HTTP_TIMEOUT = _float("ENRICHMENT_HTTP_TIMEOUT", 10.0)


# =====================================================================
# Budget
# =====================================================================

# Allowance for tenants without an explicit budget record
DEFAULT_TENANT_ALLOWANCE = _float("DEFAULT_TENANT_ALLOWANCE", 10.0)

# Per-run spend ceiling on top of the tenant allowance (0 disables)
RUN_BUDGET_LIMIT = _float("RUN_BUDGET_LIMIT", 1.0)

# Estimated costs for the built-in LlmCall steps
LEAD_SCORING_ESTIMATED_COST = _float("LEAD_SCORING_ESTIMATED_COST", 0.035)
RESPONSE_ANALYSIS_ESTIMATED_COST = _float("RESPONSE_ANALYSIS_ESTIMATED_COST", 0.02)
FOLLOWUP_ESTIMATED_COST = _float("FOLLOWUP_ESTIMATED_COST", 0.015)
BUDGET_QUESTION_ESTIMATED_COST = _float("BUDGET_QUESTION_ESTIMATED_COST", 0.01)

# Pricing per 1K tokens, used to true-up the actual cost of a model call
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o": {"input": 0.005, "output": 0.015},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-3.5-turbo": {"input": 0.001, "output": 0.002},
    "claude-3-sonnet": {"input": 0.003, "output": 0.015},
    "claude-3-haiku": {"input": 0.00025, "output": 0.00125},
}
DEFAULT_MODEL_PRICING: Dict[str, float] = {"input": 0.001, "output": 0.002}


# =====================================================================
# Form workflows
# =====================================================================

# Budget answers strictly between 0 and this amount trigger the adaptation question
LOW_BUDGET_THRESHOLD = _float("LOW_BUDGET_THRESHOLD", 1500.0)

# Minimum characters for a text answer to be sent for AI analysis
MIN_ANALYSIS_TEXT_LENGTH = _int("MIN_ANALYSIS_TEXT_LENGTH", 10)

# Default routing assignees when the form has no lead_routing configuration
HOT_LEAD_ASSIGNEE = _str("HOT_LEAD_ASSIGNEE", "sales_team")
WARM_LEAD_ASSIGNEE = _str("WARM_LEAD_ASSIGNEE", "marketing_team")
COLD_LEAD_ASSIGNEE = _str("COLD_LEAD_ASSIGNEE", "nurture_team")
ENTERPRISE_ASSIGNEE = _str("ENTERPRISE_ASSIGNEE", "enterprise_sales")


def model_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Price a model call from its token usage."""
    pricing = MODEL_PRICING.get(model, DEFAULT_MODEL_PRICING)
    cost = (input_tokens / 1000.0) * pricing["input"] + (output_tokens / 1000.0) * pricing["output"]
    return round(cost, 6)
