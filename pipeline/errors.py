"""Error taxonomy for the pipeline engine and its collaborator ports.

Step bodies raise ``StepError`` subclasses to report a typed failure; the step
executors convert them into ``Failure`` results at the step boundary. Every
other exception raised inside a step body becomes ``unexpected_error``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Failure kinds recorded on a ``Failure`` step result."""

    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"
    LLM_ERROR = "llm_error"
    LLM_TIMEOUT = "llm_timeout"
    LLM_OUTPUT_INVALID = "llm_output_invalid"
    DATABASE_ERROR = "database_error"
    MISSING_INPUT = "missing_input"
    FATAL_ERROR = "fatal_error"
    UNEXPECTED_ERROR = "unexpected_error"


class PipelineError(Exception):
    """Base class for all pipeline errors."""


# ─── Engine errors ───────────────────────────────────────────────────


class DuplicateWriteError(PipelineError):
    """Raised when a context entry is written twice within one run."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Context entry '{name}' has already been written")


class WorkflowDefinitionError(PipelineError):
    """Raised when a workflow definition fails static validation."""

    def __init__(self, workflow_name: str, errors: list):
        self.workflow_name = workflow_name
        self.errors = errors
        summary = "; ".join(getattr(e, "message", str(e)) for e in errors)
        super().__init__(f"Workflow '{workflow_name}' is invalid: {summary}")


# ─── Step errors ─────────────────────────────────────────────────────


class StepError(PipelineError):
    """A typed failure raised from inside a step body.

    Attributes:
        kind: Failure kind recorded on the step result
        message: Human-readable message
        details: Extra JSON-serializable context
        fatal: Whether the failure aborts the whole run
    """

    kind: ErrorKind = ErrorKind.UNEXPECTED_ERROR
    fatal: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        kind: Optional[ErrorKind] = None,
        fatal: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if kind is not None:
            self.kind = ErrorKind(kind)
        if fatal is not None:
            self.fatal = fatal


class ValidationFailed(StepError):
    kind = ErrorKind.VALIDATION_ERROR


class NotFoundError(StepError):
    kind = ErrorKind.NOT_FOUND_ERROR


class DatabaseError(StepError):
    kind = ErrorKind.DATABASE_ERROR


class MissingInputError(StepError):
    kind = ErrorKind.MISSING_INPUT


class FatalStepError(StepError):
    """Failure that aborts the entire run."""

    kind = ErrorKind.FATAL_ERROR
    fatal = True


# ─── Collaborator port errors ────────────────────────────────────────


class RecordNotFound(PipelineError):
    """Raised by the persistence port when a record does not exist."""

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} record not found: {record_id}")


class PersistenceError(PipelineError):
    """Raised by the persistence port when a load or save fails."""


class ProviderError(PipelineError):
    """Raised by an outbound API port (model provider, company data) when a call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderTimeout(ProviderError):
    """Raised when the model provider does not answer in time."""


class DeliveryError(PipelineError):
    """Raised by the push-channel port when a publish is not delivered."""
