"""Step executors.

Importing this package registers the executor for every step kind.
"""

from . import llm, stream, task  # noqa: F401  (registration side effects)
from .registry import (
    STEP_CLASSES,
    STEP_REGISTRY,
    BaseStepExecutor,
    StepKindDefinition,
    StepRuntime,
    create_step,
    get_step_kind_definition,
    is_step_kind_registered,
    list_step_kinds,
    register_step_kind,
)

__all__ = [
    "STEP_CLASSES",
    "STEP_REGISTRY",
    "BaseStepExecutor",
    "StepKindDefinition",
    "StepRuntime",
    "create_step",
    "get_step_kind_definition",
    "is_step_kind_registered",
    "list_step_kinds",
    "register_step_kind",
]
