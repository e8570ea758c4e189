"""Form workflows and their trigger entry points."""

from .budget_adaptation import BUDGET_ADAPTATION_WORKFLOW
from .enrichment import ENRICHMENT_WORKFLOW
from .lead_scoring import LEAD_SCORING_WORKFLOW
from .response_processing import RESPONSE_PROCESSING_WORKFLOW
from .triggers import adapt_to_budget, enrich_response, process_completed_response, process_question_answer

WORKFLOWS = {
    workflow.name: workflow
    for workflow in (
        LEAD_SCORING_WORKFLOW,
        RESPONSE_PROCESSING_WORKFLOW,
        BUDGET_ADAPTATION_WORKFLOW,
        ENRICHMENT_WORKFLOW,
    )
}

__all__ = [
    "BUDGET_ADAPTATION_WORKFLOW",
    "ENRICHMENT_WORKFLOW",
    "LEAD_SCORING_WORKFLOW",
    "RESPONSE_PROCESSING_WORKFLOW",
    "WORKFLOWS",
    "adapt_to_budget",
    "enrich_response",
    "process_completed_response",
    "process_question_answer",
]
