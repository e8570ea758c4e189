"""Trigger entry points.

Each trigger builds the seed for one workflow, resolves the tenant that pays
for its model calls (the owner of the form), runs it and returns the summary
handed back to the calling application.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..engine.runner import RunResult, WorkflowRunner
from ..errors import PersistenceError, RecordNotFound
from . import support
from .budget_adaptation import BUDGET_ADAPTATION_WORKFLOW
from .enrichment import ENRICHMENT_WORKFLOW
from .lead_scoring import LEAD_SCORING_WORKFLOW
from .response_processing import RESPONSE_PROCESSING_WORKFLOW

logger = logging.getLogger(__name__)


async def tenant_for_response(runner: WorkflowRunner, form_response_id: Any) -> Optional[str]:
    """Owner of the form a response belongs to, or None when it cannot be resolved."""
    if runner.store is None:
        return None
    try:
        form_response = await runner.store.load(support.FORM_RESPONSES, str(form_response_id))
        form = await runner.store.load(support.FORMS, str(form_response.get("form_id")))
    except (RecordNotFound, PersistenceError) as e:
        logger.warning(f"Could not resolve tenant for response {form_response_id}: {e}")
        return None
    user_id = form.get("user_id")
    return str(user_id) if user_id is not None else None


def summarize(result: RunResult) -> Dict[str, Any]:
    summary = result.user_facing()
    summary["run_id"] = result.run_id
    summary["outcome"] = result.outcome.value
    return summary


async def process_completed_response(
    runner: WorkflowRunner,
    form_response_id: Any,
    progress_target: Optional[str] = None,
) -> Dict[str, Any]:
    """Score and route a completed form response."""
    tenant_id = await tenant_for_response(runner, form_response_id)
    result = await runner.run(
        LEAD_SCORING_WORKFLOW,
        {"form_response_id": str(form_response_id)},
        tenant_id=tenant_id,
        progress_target=progress_target,
    )
    return summarize(result)


async def process_question_answer(
    runner: WorkflowRunner,
    form_response_id: Any,
    question_id: Any,
    answer_data: Any,
    metadata: Optional[Dict[str, Any]] = None,
    progress_target: Optional[str] = None,
) -> Dict[str, Any]:
    """Validate, store and analyze one answered question."""
    tenant_id = await tenant_for_response(runner, form_response_id)
    result = await runner.run(
        RESPONSE_PROCESSING_WORKFLOW,
        {
            "form_response_id": str(form_response_id),
            "question_id": str(question_id),
            "answer_data": answer_data,
            "metadata": metadata or {},
        },
        tenant_id=tenant_id,
        progress_target=progress_target,
    )
    return summarize(result)


async def adapt_to_budget(
    runner: WorkflowRunner,
    form_response_id: Any,
    budget_answer: Any,
    progress_target: Optional[str] = None,
) -> Dict[str, Any]:
    """Ask a priorities follow-up when the stated budget is low."""
    tenant_id = await tenant_for_response(runner, form_response_id)
    result = await runner.run(
        BUDGET_ADAPTATION_WORKFLOW,
        {"form_response_id": str(form_response_id), "budget_answer": budget_answer},
        tenant_id=tenant_id,
        progress_target=progress_target,
    )
    return summarize(result)


async def enrich_response(
    runner: WorkflowRunner,
    form_response_id: Any,
    progress_target: Optional[str] = None,
) -> Dict[str, Any]:
    """Attach company information looked up from the respondent's email domain."""
    tenant_id = await tenant_for_response(runner, form_response_id)
    result = await runner.run(
        ENRICHMENT_WORKFLOW,
        {"form_response_id": str(form_response_id)},
        tenant_id=tenant_id,
        progress_target=progress_target,
    )
    return summarize(result)
