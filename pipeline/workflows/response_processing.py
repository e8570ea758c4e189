"""Response processing workflow.

Runs for each answered question while a form is being filled in:

    validate_response_data (validate)
      -> save_question_response (task, run_when valid)
      -> analyze_response_ai (llm_call, run_if AI enabled and enough content)
      -> update_with_ai_analysis (task, run_when analyze_response_ai)
      -> generate_followup_question (llm_call, run_when update_with_ai_analysis,
                                     run_if follow-up heuristics)
      -> create_dynamic_question (task, run_when generate_followup_question)
      -> update_form_ui (stream)
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from .. import settings
from ..engine.context import ABSENT
from ..engine.definition import LlmOptions, StreamOptions, WorkflowDefinition, llm_call, stream, task, validate
from ..engine.results import Success
from ..errors import ValidationFailed
from ..steps.registry import StepRuntime
from . import support
from .prompts import (
    FOLLOWUP_SYSTEM_PROMPT,
    RESPONSE_ANALYSIS_SYSTEM_PROMPT,
    build_followup_prompt,
    build_response_analysis_prompt,
)
from .schemas import FollowupSuggestion, ResponseAnalysis

logger = logging.getLogger(__name__)

TEXT_TYPES = ("text_short", "text_long")
CHOICE_TYPES = ("multiple_choice", "single_choice", "checkbox")
RATING_TYPES = ("rating", "scale", "nps_score")

MAX_ANSWER_SIZE = 50000
MAX_ANSWER_NESTING = 10
NEGATIVE_KEYWORDS = ("problem", "issue", "difficult", "confusing", "unclear", "frustrated")
FOLLOWUP_CONFIDENCE_THRESHOLD = 0.7

_EMAIL = re.compile(r"\A[\w+\-.]+@[a-z\d\-]+(\.[a-z\d\-]+)*\.[a-z]+\Z", re.IGNORECASE)

QUESTION_FIELDS = (
    "id", "form_id", "title", "description", "question_type", "required", "key",
    "configuration", "ai_enhanced", "response_analysis", "generates_followups",
)


# ─── Answer checks ───────────────────────────────────────────────────


def validate_response_structure(answer_data: Any) -> List[str]:
    if answer_data is None:
        return ["Answer data cannot be nil"]

    errors: List[str] = []
    if not isinstance(answer_data, (dict, str, list, int, float)) or isinstance(answer_data, bool):
        errors.append("Answer data must be a valid data type (mapping, string, list or number)")

    if isinstance(answer_data, dict):
        text = str(answer_data)
        if len(text) > MAX_ANSWER_SIZE:
            errors.append("Answer data is too large")
        if text.count("{") > MAX_ANSWER_NESTING:
            errors.append("Answer data structure is too deeply nested")
    return errors


def _option_values(configuration: Dict[str, Any]) -> List[str]:
    values = []
    for option in configuration.get("options") or []:
        if isinstance(option, dict):
            option = option.get("value", option.get("label"))
        values.append(str(option))
    return values


def _rating_bounds(question: Dict[str, Any]) -> tuple:
    configuration = question.get("configuration") or {}
    if question.get("question_type") == "nps_score":
        return configuration.get("min", 0), configuration.get("max", 10)
    return configuration.get("min", 1), configuration.get("max", 5)


def validate_answer(question: Dict[str, Any], answer_data: Any) -> List[str]:
    """Check an answer against its question's type and configuration."""
    value = support.answer_value(answer_data)
    question_type = question.get("question_type")
    configuration = question.get("configuration") or {}

    if support.is_blank(value):
        return ["This question is required"] if question.get("required") else []

    errors: List[str] = []
    if question_type in TEXT_TYPES:
        max_length = configuration.get("max_length")
        if max_length and len(str(value)) > max_length:
            errors.append(f"Answer exceeds maximum length of {max_length} characters")

    elif question_type in CHOICE_TYPES:
        options = _option_values(configuration)
        selected = value if isinstance(value, list) else [value]
        if question_type == "single_choice" and len(selected) > 1:
            errors.append("Only one option can be selected")
        if options and not configuration.get("allow_other"):
            invalid = [str(v) for v in selected if str(v) not in options]
            if invalid:
                errors.append(f"Invalid option selected: {', '.join(invalid)}")

    elif question_type in RATING_TYPES:
        try:
            rating = float(value)
        except (TypeError, ValueError):
            return ["Rating must be a number"]
        low, high = _rating_bounds(question)
        if rating < low or rating > high:
            errors.append(f"Rating must be between {low} and {high}")

    elif question_type == "email":
        if not _EMAIL.match(str(value)):
            errors.append("Please enter a valid email address")

    return errors


def calculate_response_quality(question: Dict[str, Any], answer_data: Any) -> Dict[str, Any]:
    metrics = {
        "completeness_score": 0.0,
        "response_length": 0,
        "has_content": False,
        "estimated_effort": "low",
    }
    value = support.answer_value(answer_data)
    metrics["has_content"] = not support.is_blank(value)
    if not metrics["has_content"]:
        return metrics

    question_type = question.get("question_type")
    if question_type in TEXT_TYPES:
        length = len(str(value))
        metrics["response_length"] = length
        if length >= 50:
            metrics.update(completeness_score=1.0, estimated_effort="high")
        elif length >= 20:
            metrics.update(completeness_score=0.8, estimated_effort="medium")
        elif length >= 5:
            metrics.update(completeness_score=0.6, estimated_effort="low")
        else:
            metrics["completeness_score"] = 0.3
    elif question_type in CHOICE_TYPES:
        metrics.update(completeness_score=1.0, estimated_effort="medium")
    elif question_type in RATING_TYPES:
        metrics.update(completeness_score=1.0, estimated_effort="low")
    elif question_type == "email":
        if _EMAIL.match(str(value)):
            metrics.update(completeness_score=1.0, estimated_effort="medium")
        else:
            metrics["completeness_score"] = 0.3
    elif question_type == "phone":
        digits = re.sub(r"[^\d+]", "", str(value))
        if len(digits) >= 10:
            metrics.update(completeness_score=1.0, estimated_effort="medium")
        else:
            metrics["completeness_score"] = 0.5
    else:
        metrics.update(completeness_score=0.8, estimated_effort="medium")
    return metrics


def process_answer(question: Dict[str, Any], answer_data: Any) -> Any:
    if isinstance(answer_data, dict):
        processed = dict(answer_data)
        if isinstance(processed.get("value"), str):
            processed["value"] = processed["value"].strip()
        return processed
    if isinstance(answer_data, str):
        return answer_data.strip()
    return answer_data


def has_analyzable_content(question: Dict[str, Any], answer_data: Any) -> bool:
    value = support.answer_value(answer_data)
    question_type = question.get("question_type")
    if question_type in TEXT_TYPES:
        return len(str(value if value is not None else "")) >= settings.MIN_ANALYSIS_TEXT_LENGTH
    if question_type in CHOICE_TYPES or question_type in RATING_TYPES:
        return True
    return not support.is_blank(value)


def should_generate_followup(question: Dict[str, Any], answer_data: Any, ai_analysis: Dict[str, Any]) -> bool:
    if any(insight.get("type") == "followup_suggested" for insight in ai_analysis.get("insights") or []):
        return True

    confidence = ai_analysis.get("confidence_score")
    if (1.0 if confidence is None else confidence) < FOLLOWUP_CONFIDENCE_THRESHOLD:
        return True

    value = support.answer_value(answer_data)
    question_type = question.get("question_type")
    if question_type in RATING_TYPES:
        try:
            rating = float(value)
        except (TypeError, ValueError):
            return False
        max_rating = (question.get("configuration") or {}).get("max") or 5
        return rating <= max_rating * 0.6
    if question_type in ("multiple_choice", "single_choice"):
        return "other" in str(value).lower()
    if question_type in TEXT_TYPES:
        text = str(value).lower()
        return any(keyword in text for keyword in NEGATIVE_KEYWORDS)
    return False


# ─── Step bodies ─────────────────────────────────────────────────────


async def validate_response_data(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    response_id = inputs["form_response_id"]
    question_id = inputs["question_id"]
    answer_data = inputs["answer_data"]
    metadata = inputs.get("metadata")
    metadata = dict(metadata) if isinstance(metadata, dict) else {}
    logger.info(f"Validating response data for response_id: {response_id}, question_id: {question_id}")

    form_response = await support.load_record(runtime, support.FORM_RESPONSES, response_id)
    question = await support.load_record(runtime, support.FORM_QUESTIONS, question_id)

    if str(question.get("form_id")) != str(form_response.get("form_id")):
        raise ValidationFailed(
            "Question does not belong to this form",
            details={"question_id": str(question_id), "form_id": form_response.get("form_id")},
        )

    structure_errors = validate_response_structure(answer_data)
    if structure_errors:
        raise ValidationFailed(
            f"Invalid answer data structure: {'; '.join(structure_errors)}",
            details={"errors": structure_errors},
        )

    answer_errors = validate_answer(question, answer_data)
    if answer_errors:
        raise ValidationFailed(
            f"Answer validation failed: {'; '.join(answer_errors)}",
            details={"errors": answer_errors},
        )

    form = await support.load_record(runtime, support.FORMS, form_response.get("form_id"))
    user = await support.find_record(runtime, support.USERS, form.get("user_id"))
    quality_metrics = calculate_response_quality(question, answer_data)

    metadata.update({
        "validated_at": support.utc_now(),
        "quality_metrics": quality_metrics,
        "session_id": form_response.get("session_id"),
    })
    logger.info(f"Response validation successful for question {question.get('title')}")

    return {
        "valid": True,
        "form_response_id": str(response_id),
        "question_id": str(question_id),
        "question": {key: question.get(key) for key in QUESTION_FIELDS},
        "answer_data": answer_data,
        "metadata": metadata,
        "quality_score": quality_metrics["completeness_score"],
        "form_context": support.form_context(form),
        "share_token": form.get("share_token"),
        "previous_responses": form_response.get("answers") or {},
        "ai_features_available": support.can_use_ai_features(user),
    }


async def save_question_response(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    validation = inputs["validate_response_data"]
    question = validation["question"]
    response_id = validation["form_response_id"]
    record_id = f"{response_id}:{validation['question_id']}"
    logger.info(f"Saving question response for question: {question.get('title')}")

    processed = process_answer(question, validation["answer_data"])
    metadata = dict(validation["metadata"])
    response_time_ms = metadata.pop("response_time_ms", None)
    saved_at = support.utc_now()

    await support.save_record(runtime, support.QUESTION_RESPONSES, record_id, {
        "id": record_id,
        "form_response_id": response_id,
        "form_question_id": validation["question_id"],
        "answer_data": processed,
        "response_time_ms": response_time_ms,
        "skipped": False,
        "metadata": metadata,
        "saved_at": saved_at,
    })

    form_response = await support.load_record(runtime, support.FORM_RESPONSES, response_id)
    answers = dict(form_response.get("answers") or {})
    answers[question.get("key") or validation["question_id"]] = support.answer_value(processed)
    form_response.update({"answers": answers, "last_activity_at": saved_at})
    await support.save_record(runtime, support.FORM_RESPONSES, response_id, form_response)

    return {
        "question_response_id": record_id,
        "processed_answer": processed,
        "quality_score": validation["quality_score"],
        "saved_at": saved_at,
    }


def should_analyze(view) -> bool:
    validation = view.value("validate_response_data")
    if validation is ABSENT or not validation.get("valid") or not view.succeeded("save_question_response"):
        return False

    question = validation["question"]
    if not (question.get("ai_enhanced") and question.get("response_analysis")):
        return False
    if not validation["form_context"].get("ai_enhanced"):
        return False
    if not validation.get("ai_features_available"):
        return False

    analyze = has_analyzable_content(question, validation["answer_data"])
    if analyze:
        logger.info(f"AI analysis conditions met for question: {question.get('title')}")
    return analyze


def form_model(view) -> Optional[str]:
    return view.value("validate_response_data")["form_context"].get("ai_model")


def analysis_prompt(view) -> str:
    validation = view.value("validate_response_data")
    return build_response_analysis_prompt(
        validation["question"],
        support.answer_value(validation["answer_data"]),
        validation["form_context"],
    )


async def update_with_ai_analysis(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    saved = inputs["save_question_response"]
    analysis = inputs["analyze_response_ai"]
    record_id = saved["question_response_id"]
    logger.info("Updating question response with AI analysis")

    result = runtime.view.result("analyze_response_ai")
    ai_cost = result.cost if isinstance(result, Success) else 0.0

    question_response = await support.load_record(runtime, support.QUESTION_RESPONSES, record_id)
    question_response.update({
        "ai_analysis_results": analysis,
        "ai_analysis_requested_at": support.utc_now(),
        "ai_confidence_score": analysis.get("confidence_score") or 0.0,
    })
    await support.save_record(runtime, support.QUESTION_RESPONSES, record_id, question_response)

    return {
        "question_response_id": record_id,
        "ai_analysis": analysis,
        "ai_cost": ai_cost,
        "confidence_score": analysis.get("confidence_score"),
        "sentiment": analysis.get("sentiment"),
        "flags": analysis.get("flags") or [],
        "updated_at": support.utc_now(),
    }


def should_follow_up(view) -> bool:
    validation = view.value("validate_response_data")
    update = view.value("update_with_ai_analysis")
    question = validation["question"]
    if not question.get("generates_followups"):
        return False

    generate = should_generate_followup(question, validation["answer_data"], update["ai_analysis"])
    logger.info(f"Follow-up generation conditions: {'met' if generate else 'not met'} for question: {question.get('title')}")
    return generate


def followup_prompt(view) -> str:
    validation = view.value("validate_response_data")
    return build_followup_prompt(
        validation["question"],
        support.answer_value(validation["answer_data"]),
        validation["form_context"],
        validation["previous_responses"],
        view.value("update_with_ai_analysis")["ai_analysis"],
    )


async def create_dynamic_question(inputs: Dict[str, Any], runtime: StepRuntime) -> Dict[str, Any]:
    followup = inputs["generate_followup_question"]
    validation = inputs["validate_response_data"]
    record_id = f"{validation['form_response_id']}:{validation['question_id']}:followup"
    logger.info("Creating dynamic question from AI-generated follow-up")

    result = runtime.view.result("generate_followup_question")
    ai_cost = result.cost if isinstance(result, Success) else 0.0
    question_data = followup.get("question") or {}
    created_at = support.utc_now()

    dynamic_question = {
        "id": record_id,
        "form_response_id": validation["form_response_id"],
        "generated_from_question_id": validation["question_id"],
        "question_type": question_data.get("question_type") or "text_short",
        "title": question_data.get("title"),
        "description": question_data.get("description"),
        "configuration": question_data.get("configuration") or {},
        "generation_context": {
            "trigger": "response_analysis",
            "source_question_id": validation["question_id"],
            "source_answer": validation["answer_data"],
            "reasoning": followup.get("reasoning"),
            "confidence": followup.get("confidence"),
            "priority": followup.get("priority"),
            "generated_at": created_at,
        },
        "generation_model": validation["form_context"].get("ai_model") or "gpt-4o-mini",
        "ai_confidence": followup.get("confidence") or 0.8,
    }
    await support.save_record(runtime, support.DYNAMIC_QUESTIONS, record_id, dynamic_question)

    return {
        "dynamic_question_id": record_id,
        "dynamic_question": dynamic_question,
        "followup_data": followup,
        "ai_cost": ai_cost,
        "created_at": created_at,
    }


def form_ui_target(view) -> str:
    return f"form_{view.value('validate_response_data')['share_token']}"


def form_ui_payload(view) -> Dict[str, Any]:
    validation = view.value("validate_response_data")
    saved = view.value("save_question_response")
    dynamic = view.value("create_dynamic_question")

    payload: Dict[str, Any] = {
        "form_response_id": validation["form_response_id"],
        "question_id": validation["question_id"],
        "question_response": saved if saved is not ABSENT else None,
        "quality_score": validation["quality_score"],
        "show_dynamic_question": dynamic is not ABSENT,
    }
    if dynamic is not ABSENT:
        payload["dynamic_question"] = dynamic["dynamic_question"]
    return payload


RESPONSE_PROCESSING_WORKFLOW = WorkflowDefinition(
    name="response_processing",
    description="Validate, store and analyze a single question answer",
    inputs=("form_response_id", "question_id", "answer_data", "metadata"),
    outputs=("save_question_response", "update_with_ai_analysis", "create_dynamic_question"),
    steps=(
        validate(
            "validate_response_data",
            validate_response_data,
            inputs=("form_response_id", "question_id", "answer_data"),
            optional_inputs=("metadata",),
            outputs=("valid",),
            description="Validate incoming response data and prepare for processing",
        ),
        task(
            "save_question_response",
            save_question_response,
            inputs=("validate_response_data",),
            outputs=("question_response_id",),
            run_when="validate_response_data",
            run_when_predicate=lambda payload: payload["valid"],
            description="Save validated response to database",
        ),
        llm_call(
            "analyze_response_ai",
            LlmOptions(
                prompt=analysis_prompt,
                system_prompt=RESPONSE_ANALYSIS_SYSTEM_PROMPT,
                model=form_model,
                temperature=0.3,
                max_tokens=500,
                output_schema=ResponseAnalysis,
            ),
            estimated_cost=settings.RESPONSE_ANALYSIS_ESTIMATED_COST,
            inputs=("save_question_response", "validate_response_data"),
            run_if=should_analyze,
        ),
        task(
            "update_with_ai_analysis",
            update_with_ai_analysis,
            inputs=("save_question_response", "analyze_response_ai"),
            outputs=("ai_analysis",),
            run_when="analyze_response_ai",
            description="Update response record with AI analysis results",
        ),
        llm_call(
            "generate_followup_question",
            LlmOptions(
                prompt=followup_prompt,
                system_prompt=FOLLOWUP_SYSTEM_PROMPT,
                model=form_model,
                temperature=0.7,
                max_tokens=300,
                output_schema=FollowupSuggestion,
            ),
            estimated_cost=settings.FOLLOWUP_ESTIMATED_COST,
            inputs=("update_with_ai_analysis", "validate_response_data"),
            run_when="update_with_ai_analysis",
            run_if=should_follow_up,
        ),
        task(
            "create_dynamic_question",
            create_dynamic_question,
            inputs=("generate_followup_question", "validate_response_data"),
            outputs=("dynamic_question_id", "dynamic_question"),
            run_when="generate_followup_question",
            description="Create and persist dynamic question record",
        ),
        stream(
            "update_form_ui",
            StreamOptions(
                target=form_ui_target,
                payload=form_ui_payload,
                action="append",
                template="responses/question_response",
            ),
            inputs=("validate_response_data",),
            optional_inputs=("save_question_response", "create_dynamic_question"),
            description="Update form UI in real-time with new content",
        ),
    ),
)
