"""Budget adaptation workflow.

When a prospect states a low budget, ask an empathetic follow-up question
about their priorities and push it to the open form.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict

from .. import settings
from ..engine.definition import LlmOptions, StreamOptions, WorkflowDefinition, llm_call, stream, task
from ..steps.registry import StepRuntime
from . import support
from .prompts import BUDGET_QUESTION_PROMPT, JSON_ONLY_SYSTEM_PROMPT
from .schemas import BudgetQuestion

logger = logging.getLogger(__name__)

_LEADING_NUMBER = re.compile(r"^\d*\.?\d+")


def parse_budget_amount(budget_answer: Any) -> float:
    """Keep digits and dots, then read the leading number (0.0 when there is none)."""
    cleaned = re.sub(r"[^0-9.]", "", str(budget_answer if budget_answer is not None else ""))
    match = _LEADING_NUMBER.match(cleaned)
    return float(match.group(0)) if match else 0.0


def analyze_budget(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    amount = parse_budget_amount(support.answer_value(inputs["budget_answer"]))
    is_low = 0 < amount < settings.LOW_BUDGET_THRESHOLD
    logger.info(f"Budget analysis - Amount: {amount}, Is low budget: {is_low}")
    return {"is_low_budget": is_low, "budget_amount": amount}


async def save_budget_question(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    question = inputs["generate_budget_question"]
    response_id = str(inputs["form_response_id"])
    record_id = f"{response_id}:budget_adaptation"

    form_response = await support.load_record(runtime, support.FORM_RESPONSES, response_id)
    dynamic_question = {
        "id": record_id,
        "form_response_id": response_id,
        "generated_from_question_id": form_response.get("last_question_id"),
        "question_type": question.get("question_type") or "text_long",
        "title": question["title"],
        "description": question.get("description"),
        "configuration": {},
        "generation_context": {
            "trigger": "budget_adaptation",
            "budget_amount": inputs["analyze_budget"]["budget_amount"],
            "llm_output": question,
        },
    }
    await support.save_record(runtime, support.DYNAMIC_QUESTIONS, record_id, dynamic_question)
    logger.info(f"Created dynamic question: {record_id}")

    return {"dynamic_question_id": record_id, "dynamic_question": dynamic_question}


def budget_question_target(view) -> str:
    return f"budget_adaptation_{view.value('form_response_id')}"


def budget_question_payload(view) -> Dict[str, Any]:
    saved = view.value("save_budget_question")
    return {
        "form_response_id": str(view.value("form_response_id")),
        "dynamic_question": saved["dynamic_question"],
    }


BUDGET_ADAPTATION_WORKFLOW = WorkflowDefinition(
    name="budget_adaptation",
    description="Ask a priorities question when the stated budget is low",
    inputs=("form_response_id", "budget_answer"),
    outputs=("analyze_budget", "save_budget_question"),
    steps=(
        task(
            "analyze_budget",
            analyze_budget,
            inputs=("budget_answer",),
            outputs=("is_low_budget", "budget_amount"),
        ),
        llm_call(
            "generate_budget_question",
            LlmOptions(
                prompt=BUDGET_QUESTION_PROMPT,
                system_prompt=JSON_ONLY_SYSTEM_PROMPT,
                model="gpt-4o-mini",
                temperature=0.5,
                max_tokens=300,
                output_schema=BudgetQuestion,
            ),
            estimated_cost=settings.BUDGET_QUESTION_ESTIMATED_COST,
            inputs=("analyze_budget",),
            run_if="analyze_budget.is_low_budget",
        ),
        task(
            "save_budget_question",
            save_budget_question,
            inputs=("generate_budget_question", "analyze_budget", "form_response_id"),
            outputs=("dynamic_question_id",),
            run_when="generate_budget_question",
        ),
        stream(
            "stream_budget_question",
            StreamOptions(
                target=budget_question_target,
                payload=budget_question_payload,
                action="append",
                template="responses/budget_adaptation_question",
            ),
            inputs=("save_budget_question", "form_response_id"),
            run_when="save_budget_question",
        ),
    ),
)
