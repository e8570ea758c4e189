"""Prompt templates for the form workflows.

Each LlmCall step gets a system prompt constant and either a user prompt
builder (prompts assembled from several records) or a ``{{step.field}}``
template resolved against the run context.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

JSON_ONLY_SYSTEM_PROMPT = (
    "You are an AI that only returns valid JSON. Do not add any conversational text or "
    "markdown formatting. Your entire response must be a single, valid JSON object."
)

# ─── Lead scoring ────────────────────────────────────────────────────

LEAD_QUALITY_SYSTEM_PROMPT = (
    "You are an expert lead qualification specialist with deep knowledge of B2B and B2C "
    "sales processes. Analyze form responses to determine lead quality, intent, and "
    "readiness to purchase."
)

LEAD_QUALITY_USER_PROMPT = """\
Analyze this form response as a lead qualification specialist. Score the lead quality from 0-100 and provide detailed insights.

**Form Information:**
- Name: "{form_name}"
- Category: {form_category}
- Purpose: {purpose}

**Response Data:**
{answers}

**Enriched Data:**
{enriched_data}

**AI Analysis:**
{ai_analysis}

**Analysis Requirements:**
Return a JSON object with:
{{
  "quality_score": 0-100,
  "lead_tier": "hot|warm|lukewarm|cold",
  "quality_factors": [
    {{"factor": "specific quality indicator", "score": 0-25, "reasoning": "why this contributes to quality"}}
  ],
  "risk_factors": [
    {{"factor": "potential concern", "impact": "low|medium|high", "reasoning": "why this might be a risk"}}
  ],
  "qualification_notes": "detailed assessment of lead quality",
  "recommended_actions": ["specific action 1", "specific action 2"],
  "estimated_value": "estimated deal value or importance",
  "confidence_level": 0-1.0,
  "buying_signals": ["specific indicators of purchase intent"],
  "timing_indicators": {{
    "urgency": "immediate|short_term|long_term",
    "budget_availability": "confirmed|likely|unknown",
    "decision_maker": "yes|no|influencer"
  }},
  "next_best_action": "specific recommendation for follow-up"
}}

**Scoring Guidelines:**
- 80-100: Hot lead - immediate follow-up required
- 60-79: Warm lead - follow-up within 24 hours
- 40-59: Lukewarm lead - nurture campaign
- 0-39: Cold lead - long-term nurture

Consider company size and industry (if enriched), response quality and detail level, \
specific pain points mentioned, timeline and budget indicators, decision-making authority \
signals and engagement level throughout the form."""

# ─── Response processing ─────────────────────────────────────────────

RESPONSE_ANALYSIS_SYSTEM_PROMPT = (
    "You are an AI assistant analyzing form responses for quality, sentiment, and insights."
)

RESPONSE_ANALYSIS_USER_PROMPT = """\
Analyze the following form response and provide insights in JSON format.

**Form Context:**
- Form Name: {form_name}
- Form Category: {form_category}
- Total Questions: {questions_count}

**Question Details:**
- Question: "{question_title}"
- Type: {question_type}
- Required: {required}
- Description: {question_description}

**User Response:**
"{answer}"

**Analysis Required:**
Return a JSON object with the following structure:

{{
  "sentiment": "positive|neutral|negative|very_positive|very_negative",
  "confidence_score": 0.0-1.0,
  "quality_indicators": {{"completeness": 0.0-1.0, "relevance": 0.0-1.0, "clarity": 0.0-1.0}},
  "insights": [
    {{"type": "sentiment|quality|content|behavioral|followup_suggested", "description": "Brief insight description", "confidence": 0.0-1.0}}
  ],
  "flags": [
    {{"type": "spam|inappropriate|incomplete|suspicious", "reason": "Explanation of the flag", "severity": "low|medium|high"}}
  ],
  "keywords": ["extracted", "key", "terms"],
  "summary": "Brief summary of the response analysis"
}}

**Guidelines:**
- Be objective and professional in your analysis
- Consider the question type when evaluating response quality
- Flag any potentially problematic content
- Extract meaningful keywords and themes"""

FOLLOWUP_SYSTEM_PROMPT = (
    "You are an expert at generating contextual follow-up questions based on user responses."
)

FOLLOWUP_USER_PROMPT = """\
Generate a contextual follow-up question based on the user's response.

**Form Context:**
- Form Name: {form_name}
- Form Category: {form_category}
- Purpose: {purpose}

**Original Question:**
- Question: "{question_title}"
- Type: {question_type}
- Description: {question_description}

**User's Response:**
"{answer}"

**AI Analysis:**
- Sentiment: {sentiment}
- Confidence: {confidence}
- Key Insights: {insights}

**Previous Responses Context:**
{previous_responses}

**Instructions:**
Generate a natural, conversational follow-up question that builds on the response, \
is relevant to the form's purpose, and is concise and easy to answer.

**Response Format (JSON):**
{{
  "question": {{
    "title": "The follow-up question text",
    "description": "Optional helpful description or context",
    "question_type": "text_short|text_long|multiple_choice|rating|yes_no",
    "configuration": {{}},
    "required": false
  }},
  "reasoning": "Brief explanation of why this follow-up adds value",
  "confidence": 0.0-1.0,
  "priority": "high|medium|low"
}}"""

# ─── Budget adaptation ───────────────────────────────────────────────

BUDGET_QUESTION_PROMPT = """\
A prospect has a budget of {{analyze_budget.budget_amount}} USD.
Generate an empathetic follow-up question in English to understand their priorities.
Return a single JSON object with the keys "title", "question_type", and "description".
The "question_type" must be "text_long"."""


def format_pairs(values: Mapping[str, Any], empty: str = "None") -> str:
    """Render a mapping as a ``- key: value`` bullet list."""
    if not values:
        return empty
    return "\n".join(f"- {key}: {value}" for key, value in values.items())


def build_lead_quality_prompt(response_data: Dict[str, Any]) -> str:
    form = response_data.get("form") or {}
    settings = form.get("settings") or {}
    return LEAD_QUALITY_USER_PROMPT.format(
        form_name=form.get("name", ""),
        form_category=form.get("category") or "general",
        purpose=settings.get("purpose") or "Lead generation",
        answers=format_pairs(response_data.get("answers") or {}),
        enriched_data=format_pairs(response_data.get("enriched_data") or {}),
        ai_analysis=format_pairs(response_data.get("ai_analysis") or {}),
    )


def build_response_analysis_prompt(question: Dict[str, Any], answer: Any, form_context: Dict[str, Any]) -> str:
    return RESPONSE_ANALYSIS_USER_PROMPT.format(
        form_name=form_context.get("form_name", ""),
        form_category=form_context.get("form_category") or "general",
        questions_count=form_context.get("questions_count", 0),
        question_title=question.get("title", ""),
        question_type=question.get("question_type", ""),
        required=bool(question.get("required")),
        question_description=question.get("description") or "None",
        answer=answer,
    )


def build_followup_prompt(
    question: Dict[str, Any],
    answer: Any,
    form_context: Dict[str, Any],
    previous_responses: Mapping[str, Any],
    ai_analysis: Mapping[str, Any],
) -> str:
    insights = [i.get("description") for i in ai_analysis.get("insights") or [] if i.get("description")]
    confidence = ai_analysis.get("confidence_score")
    return FOLLOWUP_USER_PROMPT.format(
        form_name=form_context.get("form_name", ""),
        form_category=form_context.get("form_category") or "general",
        purpose=(form_context.get("settings") or {}).get("purpose") or "General information collection",
        question_title=question.get("title", ""),
        question_type=question.get("question_type", ""),
        question_description=question.get("description") or "None",
        answer=answer,
        sentiment=ai_analysis.get("sentiment") or "neutral",
        confidence=confidence if confidence is not None else "unknown",
        insights=", ".join(insights) or "None",
        previous_responses=format_pairs(previous_responses),
    )
