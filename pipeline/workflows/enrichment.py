"""Response enrichment workflow.

    check_premium_access (validate)
      -> fetch_company_info (task, soft: lookup failures yield no data)
      -> process_company_data (task)
      -> update_response_with_enrichment (task, run_if there is data)
      -> update_ui_with_enrichment (stream)

Looks the respondent's company up by email domain and stores the profile on
the form response, where lead scoring reads it as ``enriched_data``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from ..engine.definition import StreamOptions, WorkflowDefinition, stream, task, validate
from ..errors import ProviderError
from ..steps.registry import StepRuntime
from . import support

logger = logging.getLogger(__name__)

# Company profile fields kept on the response, by source field
COMPANY_FIELDS = (
    ("company_name", "name"),
    ("industry", "industry"),
    ("company_size", "employees"),
    ("location", "location"),
    ("website", "domain"),
    ("description", "description"),
    ("founded_year", "founded"),
    ("technologies", "tech"),
    ("social_profiles", "social_profiles"),
)


def email_domain(email: Any) -> str:
    """Domain part of an email answer, or "" when there is none."""
    if not isinstance(email, str):
        return ""
    _, at, domain = email.strip().rpartition("@")
    return domain.strip().lower() if at else ""


async def check_premium_access(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    response_id = str(inputs["form_response_id"])
    form_response = await support.load_record(runtime, support.FORM_RESPONSES, response_id)
    form = await support.load_record(runtime, support.FORMS, form_response.get("form_id"))
    user = await support.find_record(runtime, support.USERS, form.get("user_id"))
    if not support.can_use_ai_features(user):
        return {"valid": False, "message": "AI enrichment requires premium subscription"}

    answers = form_response.get("answers") or {}
    domain = email_domain(support.answer_value(answers.get("email")))
    if not domain:
        return {"valid": False, "message": "Invalid email address provided"}

    return {"valid": True, "domain": domain, "form_response_id": response_id}


async def fetch_company_info(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    domain = inputs["check_premium_access"]["domain"]
    if runtime.company_data is None:
        logger.warning(f"No company data source configured, skipping lookup for {domain}")
        return {"company_data": {}}

    logger.info(f"Fetching company data for domain: {domain}")
    try:
        company = await runtime.company_data.lookup(domain)
    except ProviderError as e:
        logger.error(f"Failed to fetch company data for {domain}: {e}")
        return {"company_data": {}}
    return {"company_data": company or {}}


def process_company_data(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    company = inputs["fetch_company_info"]["company_data"]
    processed = {
        field: company.get(source)
        for field, source in COMPANY_FIELDS
        if not support.is_blank(company.get(source))
    }
    return {"processed_data": processed}


async def update_response_with_enrichment(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    processed = inputs["process_company_data"]["processed_data"]
    response_id = inputs["check_premium_access"]["form_response_id"]

    form_response = await support.load_record(runtime, support.FORM_RESPONSES, response_id)
    metadata = dict(form_response.get("metadata") or {})
    metadata["company_enrichment"] = processed
    form_response.update({
        "enrichment_data": processed,
        "enriched_data": {**(form_response.get("enriched_data") or {}), **processed},
        "enriched_at": support.utc_now(),
        "metadata": metadata,
    })
    await support.save_record(runtime, support.FORM_RESPONSES, response_id, form_response)
    logger.info(f"Stored company enrichment on response {response_id} ({len(processed)} fields)")

    return {"success": True, "enrichment_data": processed}


def enrichment_target(view) -> str:
    return f"enrichment_{view.value('form_response_id')}"


def enrichment_payload(view) -> Dict[str, Any]:
    return {
        "company_data": view.value("process_company_data")["processed_data"],
        "form_response_id": str(view.value("form_response_id")),
    }


ENRICHMENT_WORKFLOW = WorkflowDefinition(
    name="enrichment",
    description="Enrich a form response with company information from the respondent's email domain",
    inputs=("form_response_id",),
    outputs=("process_company_data", "update_response_with_enrichment"),
    steps=(
        validate(
            "check_premium_access",
            check_premium_access,
            inputs=("form_response_id",),
            outputs=("valid",),
            description="Require AI features and a usable email domain",
        ),
        task(
            "fetch_company_info",
            fetch_company_info,
            inputs=("check_premium_access",),
            outputs=("company_data",),
        ),
        task(
            "process_company_data",
            process_company_data,
            inputs=("fetch_company_info",),
            outputs=("processed_data",),
        ),
        task(
            "update_response_with_enrichment",
            update_response_with_enrichment,
            inputs=("process_company_data", "check_premium_access"),
            outputs=("enrichment_data",),
            run_if="process_company_data.processed_data",
        ),
        stream(
            "update_ui_with_enrichment",
            StreamOptions(
                target=enrichment_target,
                payload=enrichment_payload,
                action="replace",
                template="responses/enrichment_data",
            ),
            inputs=("process_company_data", "form_response_id"),
            run_when="update_response_with_enrichment",
        ),
    ),
)
