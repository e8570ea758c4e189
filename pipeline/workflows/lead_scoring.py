"""Lead scoring workflow.

    collect_response_data (validate)
      -> analyze_lead_quality (llm_call, run_if ready_for_scoring)
      -> calculate_lead_score (task, run_when analyze_lead_quality)
      -> route_lead (task, run_when calculate_lead_score)
      -> trigger_routing_integrations (stream, run_when route_lead)

Runs once a form response is completed. Scoring and routing records are
keyed by the response id, so re-running the workflow replaces them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from .. import settings
from ..engine.definition import LlmOptions, StreamOptions, WorkflowDefinition, llm_call, stream, task, validate
from ..engine.results import Success
from ..scoring import score
from ..steps.registry import StepRuntime
from . import support
from .prompts import LEAD_QUALITY_SYSTEM_PROMPT, build_lead_quality_prompt
from .schemas import LeadQualityAnalysis

logger = logging.getLogger(__name__)

FORM_FIELDS = ("id", "name", "category", "user_id", "share_token", "ai_enhanced", "ai_configuration", "settings")


# ─── Step 1: collect_response_data ───────────────────────────────────


async def collect_response_data(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    response_id = inputs["form_response_id"]
    logger.info(f"Collecting response data for lead scoring: response_id={response_id}")

    form_response = await support.load_record(runtime, support.FORM_RESPONSES, response_id)
    if form_response.get("status") != "completed":
        return {
            "valid": False,
            "message": f"Form response {response_id} must be completed for lead scoring",
        }

    form = await support.load_record(runtime, support.FORMS, form_response.get("form_id"))
    user = await support.find_record(runtime, support.USERS, form.get("user_id"))
    if not support.can_use_ai_features(user):
        return {"valid": False, "message": "User does not have AI features available"}

    response_data = {
        "form_response_id": str(response_id),
        "form": {key: form.get(key) for key in FORM_FIELDS},
        "user_id": form.get("user_id"),
        "answers": form_response.get("answers") or {},
        "ai_analysis": form_response.get("ai_analysis_results") or {},
        "enriched_data": form_response.get("enriched_data") or {},
        "dynamic_responses": form_response.get("dynamic_responses") or [],
        "completion_time": support.completion_minutes(form_response),
        "response_metadata": {
            "user_agent": form_response.get("user_agent"),
            "referrer": form_response.get("referrer_url"),
            "ip_address": form_response.get("ip_address"),
            "submitted_at": form_response.get("created_at"),
            "completed_at": form_response.get("completed_at"),
        },
    }
    return {"valid": True, "ready_for_scoring": True, "response_data": response_data}


# ─── Step 2: analyze_lead_quality ────────────────────────────────────


def lead_quality_prompt(view) -> str:
    return build_lead_quality_prompt(view.value("collect_response_data")["response_data"])


# ─── Step 3: calculate_lead_score ────────────────────────────────────


async def calculate_lead_score(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    analysis = inputs["analyze_lead_quality"]
    response_data = inputs["collect_response_data"]["response_data"]
    response_id = response_data["form_response_id"]

    analysis_result = runtime.view.result("analyze_lead_quality")
    ai_cost = analysis_result.cost if isinstance(analysis_result, Success) else 0.0

    result = score(analysis, response_data)
    logger.info(f"Lead score for response {response_id}: {result.score} ({result.tier.value}, {result.mode.value})")

    scored_at = support.utc_now()
    await support.save_record(runtime, support.LEAD_SCORINGS, response_id, {
        "id": response_id,
        "form_response_id": response_id,
        "score": result.score,
        "tier": result.tier.value,
        "scoring": result.to_dict(),
        "analysis_data": analysis,
        "quality_factors": analysis.get("quality_factors"),
        "risk_factors": analysis.get("risk_factors"),
        "qualification_notes": analysis.get("qualification_notes"),
        "recommended_actions": analysis.get("recommended_actions"),
        "estimated_value": analysis.get("estimated_value"),
        "confidence_level": analysis.get("confidence_level"),
        "scored_at": scored_at,
        "ai_cost": ai_cost,
    })

    form_response = await support.load_record(runtime, support.FORM_RESPONSES, response_id)
    form_response.update({
        "lead_score": result.score,
        "lead_tier": result.tier.value,
        "lead_scoring_id": response_id,
    })
    await support.save_record(runtime, support.FORM_RESPONSES, response_id, form_response)

    return {
        "lead_scoring_id": response_id,
        "score": result.score,
        "tier": result.tier.value,
        "mode": result.mode.value,
        "analysis": analysis,
        "ai_cost": ai_cost,
        "scored_at": scored_at,
    }


# ─── Step 4: route_lead ──────────────────────────────────────────────


def tier_routing_actions(tier: str, routing_config: Dict[str, Any]) -> List[Dict[str, Any]]:
    if tier == "hot":
        return [{
            "action": "immediate_followup",
            "priority": "high",
            "sla_hours": 1,
            "assign_to": routing_config.get("hot_lead_assignee") or settings.HOT_LEAD_ASSIGNEE,
            "channels": ["email", "phone", "slack"],
        }]
    if tier == "warm":
        return [{
            "action": "scheduled_followup",
            "priority": "medium",
            "sla_hours": 24,
            "assign_to": routing_config.get("warm_lead_assignee") or settings.WARM_LEAD_ASSIGNEE,
            "channels": ["email", "slack"],
        }]
    if tier == "cold":
        return [{
            "action": "nurture_campaign",
            "priority": "low",
            "sla_hours": 72,
            "assign_to": routing_config.get("cold_lead_assignee") or settings.COLD_LEAD_ASSIGNEE,
            "channels": ["email"],
        }]
    # lukewarm leads get no tier action; custom rules may still route them
    return []


def custom_routing_actions(response_data: Dict[str, Any], routing_config: Dict[str, Any]) -> List[Dict[str, Any]]:
    actions: List[Dict[str, Any]] = []
    answers = response_data.get("answers") or {}
    enriched = response_data.get("enriched_data") or {}

    industry = answers.get("industry") or enriched.get("industry")
    if industry:
        industry_config = (routing_config.get("industry_routing") or {}).get(industry)
        if industry_config:
            actions.append({
                "action": "industry_specialist",
                "priority": "high",
                "assign_to": industry_config.get("assignee"),
                "channels": industry_config.get("channels") or ["email"],
            })

    company_size = enriched.get("company_size")
    if isinstance(company_size, (int, float)) and company_size > 1000:
        actions.append({
            "action": "enterprise_specialist",
            "priority": "high",
            "assign_to": routing_config.get("enterprise_assignee") or settings.ENTERPRISE_ASSIGNEE,
            "channels": ["email", "phone", "slack"],
        })
    return actions


def integration_event(action: Dict[str, Any], scoring: Dict[str, Any]) -> Dict[str, Any]:
    """Integration trigger for a routing action, or an empty dict when none applies."""
    if action["action"] in ("immediate_followup", "scheduled_followup"):
        return {
            "event": "lead_qualified",
            "score": scoring["score"],
            "tier": scoring["tier"],
            "routing_action": action,
            "priority": action["priority"],
            "assign_to": action["assign_to"],
        }
    if action["action"] == "nurture_campaign":
        return {
            "event": "lead_nurture",
            "score": scoring["score"],
            "tier": scoring["tier"],
            "campaign_type": "nurture",
            "priority": action["priority"],
        }
    return {}


async def route_lead(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    scoring = inputs["calculate_lead_score"]
    response_data = inputs["collect_response_data"]["response_data"]
    response_id = response_data["form_response_id"]
    logger.info(f"Routing lead based on score: {scoring['score']}")

    routing_config = (response_data["form"].get("ai_configuration") or {}).get("lead_routing") or {}
    routing_actions = tier_routing_actions(scoring["tier"], routing_config)
    routing_actions.extend(custom_routing_actions(response_data, routing_config))
    events = [event for event in (integration_event(a, scoring) for a in routing_actions) if event]

    priority = routing_actions[0]["priority"] if routing_actions else "medium"
    await support.save_record(runtime, support.LEAD_ROUTINGS, response_id, {
        "id": response_id,
        "form_response_id": response_id,
        "lead_scoring_id": scoring["lead_scoring_id"],
        "routing_actions": routing_actions,
        "integration_events": events,
        "status": "pending",
        "priority": priority,
        "scheduled_at": support.utc_now(),
    })

    return {
        "lead_routing_id": response_id,
        "routing_actions": routing_actions,
        "integration_events": events,
        "priority": priority,
        "routing_config": routing_config,
    }


# ─── Step 5: trigger_routing_integrations ────────────────────────────


def routing_target(view) -> str:
    form = view.value("collect_response_data")["response_data"]["form"]
    return f"form_{form.get('share_token')}_lead_routing"


def routing_payload(view) -> Dict[str, Any]:
    routing = view.value("route_lead")
    scoring = view.value("calculate_lead_score")
    response_data = view.value("collect_response_data")["response_data"]
    return {
        "lead_routing_id": routing["lead_routing_id"],
        "routing_actions": routing["routing_actions"],
        "integration_events": routing["integration_events"],
        "score": scoring["score"],
        "tier": scoring["tier"],
        "form_id": response_data["form"].get("id"),
        "form_response_id": response_data["form_response_id"],
    }


LEAD_SCORING_WORKFLOW = WorkflowDefinition(
    name="lead_scoring",
    description="Score a completed form response and route the lead",
    inputs=("form_response_id",),
    outputs=("calculate_lead_score", "route_lead"),
    steps=(
        validate(
            "collect_response_data",
            collect_response_data,
            inputs=("form_response_id",),
            outputs=("valid",),
            description="Collect all response data for lead scoring analysis",
        ),
        llm_call(
            "analyze_lead_quality",
            LlmOptions(
                prompt=lead_quality_prompt,
                system_prompt=LEAD_QUALITY_SYSTEM_PROMPT,
                model="gpt-4o-mini",
                temperature=0.3,
                max_tokens=800,
                output_schema=LeadQualityAnalysis,
            ),
            estimated_cost=settings.LEAD_SCORING_ESTIMATED_COST,
            inputs=("collect_response_data",),
            run_if="collect_response_data.ready_for_scoring",
        ),
        task(
            "calculate_lead_score",
            calculate_lead_score,
            inputs=("analyze_lead_quality", "collect_response_data"),
            outputs=("lead_scoring_id", "score", "tier"),
            run_when="analyze_lead_quality",
        ),
        task(
            "route_lead",
            route_lead,
            inputs=("calculate_lead_score", "collect_response_data"),
            outputs=("routing_actions", "integration_events"),
            run_when="calculate_lead_score",
        ),
        stream(
            "trigger_routing_integrations",
            StreamOptions(
                target=routing_target,
                payload=routing_payload,
                action="append",
                template="forms/lead_routing_status",
            ),
            inputs=("route_lead", "calculate_lead_score", "collect_response_data"),
            run_when="route_lead",
        ),
    ),
)
