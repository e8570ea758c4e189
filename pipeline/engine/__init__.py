"""Workflow engine: context, step results, definitions, conditions, budget and runner."""

from .budget import BudgetGuard, Denied, Granted, Reservation
from .conditions import Decision, Verdict, evaluate
from .context import ABSENT, ContextView, ExecutionContext
from .definition import (
    DefinitionIssue,
    LlmOptions,
    StepKind,
    StepSpec,
    StreamOptions,
    ValidationResult,
    WorkflowDefinition,
    llm_call,
    stream,
    task,
    validate,
    validate_workflow,
)
from .results import Failure, SkipReason, Skipped, StepResult, Success, failure_from_error
from .runner import GENERIC_RETRY_MESSAGE, RunResult, RunState, WorkflowRunner, get, run

__all__ = [
    "ABSENT",
    "BudgetGuard",
    "ContextView",
    "Decision",
    "DefinitionIssue",
    "Denied",
    "ExecutionContext",
    "Failure",
    "GENERIC_RETRY_MESSAGE",
    "Granted",
    "LlmOptions",
    "Reservation",
    "RunResult",
    "RunState",
    "SkipReason",
    "Skipped",
    "StepKind",
    "StepResult",
    "StepSpec",
    "StreamOptions",
    "Success",
    "ValidationResult",
    "Verdict",
    "WorkflowDefinition",
    "WorkflowRunner",
    "evaluate",
    "failure_from_error",
    "get",
    "llm_call",
    "run",
    "stream",
    "task",
    "validate",
    "validate_workflow",
]
