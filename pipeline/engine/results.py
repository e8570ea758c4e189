"""Step result taxonomy.

Every step invocation yields exactly one of:
- Success: the step ran and produced a payload
- Failure: the step ran (or tried to) and failed with a typed error kind
- Skipped: the step was not invoked (predicate, upstream failure, or budget)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

from ..errors import ErrorKind, StepError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SkipReason(str, Enum):
    """Why a step was not invoked."""

    PREDICATE = "skip_due_to_predicate"
    UPSTREAM_FAILURE = "skip_due_to_upstream_failure"
    BUDGET = "skip_due_to_budget"


class StepResult:
    """Common base for the three result variants."""

    status: ClassVar[str] = ""

    @property
    def succeeded(self) -> bool:
        return isinstance(self, Success)

    @property
    def failed(self) -> bool:
        return isinstance(self, Failure)

    @property
    def skipped(self) -> bool:
        return isinstance(self, Skipped)

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class Success(StepResult):
    """Successful step outcome.

    Attributes:
        data: Step-defined payload
        cost: Amount committed to the budget ledger for this step (LlmCall only)
        uncharged: Part of the actual cost the remaining budget could not cover
    """

    status: ClassVar[str] = "success"

    data: Any = None
    cost: float = 0.0
    uncharged: float = 0.0
    completed_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "success": True,
            "data": self.data,
            "cost": self.cost,
            "uncharged": self.uncharged,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True)
class Failure(StepResult):
    """Failed step outcome.

    Attributes:
        kind: Error kind from the taxonomy
        message: Human-readable message
        details: Extra JSON-serializable context
        fatal: Whether this failure aborts the run
    """

    status: ClassVar[str] = "failure"

    kind: ErrorKind = ErrorKind.UNEXPECTED_ERROR
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    fatal: bool = False
    completed_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "success": False,
            "error": True,
            "error_type": self.kind.value,
            "error_message": self.message,
            "details": self.details,
            "fatal": self.fatal,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True)
class Skipped(StepResult):
    """Canonical skip marker written for steps that were not invoked."""

    status: ClassVar[str] = "skipped"

    reason: SkipReason = SkipReason.PREDICATE
    message: str = ""
    completed_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "success": False,
            "skip_reason": self.reason.value,
            "message": self.message,
            "completed_at": self.completed_at,
        }


def failure_from_error(error: Exception, step_name: Optional[str] = None) -> Failure:
    """Convert a ``StepError`` (or any exception) into a ``Failure`` result."""
    if isinstance(error, StepError):
        details = dict(error.details)
        if step_name:
            details.setdefault("step", step_name)
        return Failure(kind=error.kind, message=error.message, details=details, fatal=error.fatal)

    details = {"exception_type": type(error).__name__}
    if step_name:
        details["step"] = step_name
    return Failure(kind=ErrorKind.UNEXPECTED_ERROR, message=str(error) or type(error).__name__, details=details)
