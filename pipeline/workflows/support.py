"""Helpers shared by the form workflow step bodies.

Record access goes through the persistence port; port errors are mapped to
typed step errors so each step fails with the right kind:

- RecordNotFound   -> not_found_error
- PersistenceError -> database_error
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..errors import DatabaseError, NotFoundError, PersistenceError, RecordNotFound, StepError
from ..steps.registry import StepRuntime

logger = logging.getLogger(__name__)

# Collections used by the form workflows
FORMS = "forms"
FORM_RESPONSES = "form_responses"
FORM_QUESTIONS = "form_questions"
USERS = "users"
QUESTION_RESPONSES = "question_responses"
DYNAMIC_QUESTIONS = "dynamic_questions"
LEAD_SCORINGS = "lead_scorings"
LEAD_ROUTINGS = "lead_routings"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _store(runtime: StepRuntime):
    if runtime.store is None:
        raise StepError("No record store configured", kind="database_error")
    return runtime.store


async def load_record(runtime: StepRuntime, collection: str, record_id: Any) -> Dict[str, Any]:
    try:
        return await _store(runtime).load(collection, str(record_id))
    except RecordNotFound as e:
        logger.error(f"Record not found: {e}")
        raise NotFoundError(str(e), details={"collection": collection, "id": str(record_id)}) from e
    except PersistenceError as e:
        logger.error(f"Database operation failed: {e}")
        raise DatabaseError(str(e), details={"collection": collection, "id": str(record_id)}) from e


async def save_record(runtime: StepRuntime, collection: str, record_id: Any, record: Dict[str, Any]) -> Dict[str, Any]:
    """Create or replace a record under a deterministic id (re-runs overwrite, never duplicate)."""
    try:
        return await _store(runtime).save(collection, str(record_id), record)
    except PersistenceError as e:
        logger.error(f"Database operation failed: {e}")
        raise DatabaseError(str(e), details={"collection": collection, "id": str(record_id)}) from e


async def find_record(runtime: StepRuntime, collection: str, record_id: Any) -> Optional[Dict[str, Any]]:
    try:
        return await load_record(runtime, collection, record_id)
    except NotFoundError:
        return None


def can_use_ai_features(user: Optional[Dict[str, Any]]) -> bool:
    return bool(user and user.get("ai_features_enabled"))


def answer_value(answer_data: Any) -> Any:
    """Answers arrive either bare or wrapped as ``{"value": ...}``."""
    if isinstance(answer_data, dict):
        return answer_data.get("value")
    return answer_data


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return False


def form_context(form: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "form_id": form.get("id"),
        "form_name": form.get("name"),
        "form_category": form.get("category"),
        "ai_enhanced": bool(form.get("ai_enhanced")),
        "ai_model": form.get("ai_model"),
        "questions_count": form.get("questions_count", 0),
        "settings": form.get("settings") or {},
    }


def completion_minutes(form_response: Dict[str, Any]) -> Optional[float]:
    started, completed = form_response.get("started_at"), form_response.get("completed_at")
    if not started or not completed:
        return None
    try:
        delta = datetime.fromisoformat(completed) - datetime.fromisoformat(started)
    except (TypeError, ValueError):
        logger.warning(f"Unparseable timestamps on response {form_response.get('id')}")
        return None
    return round(delta.total_seconds() / 60.0, 2)
