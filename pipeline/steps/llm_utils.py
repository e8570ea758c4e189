"""Shared LLM step utilities: prompt templating and JSON response parsing."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from ..engine.context import ABSENT

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w-]*)((?:\.[\w-]+)*)\s*\}\}")


class UnresolvedReference(LookupError):
    """A ``{{name.field}}`` placeholder could not be resolved."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Unresolved template reference: {{{{{reference}}}}}")


def resolve_reference(reference: str, namespace: Dict[str, Any]) -> Any:
    """Resolve a dotted reference like ``analyze_budget.budget_amount``."""
    name, *path = reference.split(".")
    value = namespace.get(name, ABSENT)
    if value is ABSENT:
        raise UnresolvedReference(reference)

    for key in path:
        if isinstance(value, dict) and key in value:
            value = value[key]
        elif isinstance(value, (list, tuple)) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            raise UnresolvedReference(reference)
    return value


def render_template(template: str, namespace: Dict[str, Any]) -> str:
    """Substitute ``{{step.field}}`` placeholders from a context namespace.

    Dicts and lists are rendered as JSON. Raises ``UnresolvedReference`` when a
    placeholder names something absent rather than rendering an empty value.
    """

    def _substitute(match: re.Match) -> str:
        reference = match.group(1) + match.group(2)
        value = resolve_reference(reference, namespace)
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False, default=str)
        if value is None:
            return "null"
        return str(value)

    return _PLACEHOLDER.sub(_substitute, template)


def parse_llm_json(raw: str, caller: str = "LLM") -> Optional[Any]:
    """Parse JSON from LLM response, handling markdown fences and preamble.

    Tries in order: direct parse -> strip leading fence -> regex fence -> outermost braces.
    """
    if not raw:
        return None

    text = raw.strip()

    # Strip leading markdown code fence
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Non-leading markdown fence
    fence_match = re.search(r"```(?:json)?\s*\n(.*?)\n```", text, re.DOTALL)
    if fence_match:
        try:
            return json.loads(fence_match.group(1))
        except json.JSONDecodeError:
            pass

    # Fallback: outermost { ... }
    brace_start = text.find("{")
    brace_end = text.rfind("}")
    if brace_start >= 0 and brace_end > brace_start:
        try:
            return json.loads(text[brace_start:brace_end + 1])
        except json.JSONDecodeError:
            pass

    logger.error("%s: JSON parse error, raw[:500]: %s", caller, text[:500])
    return None
