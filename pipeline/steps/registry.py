"""Step Kind Registry

Maps each step kind to the executor class that runs it, following the same
decorator-registration pattern as the rest of the engine.

Key Components:
- StepKindDefinition: Metadata for a step kind
- StepRuntime: Per-run collaborators handed to executors and step bodies
- BaseStepExecutor: Common input binding, handler invocation and error capture
- register_step_kind: Decorator for registering executors
- create_step: Factory for executor instances

Every executor returns exactly one StepResult from ``run()``; exceptions
raised by step bodies never escape it.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from ..engine.context import ABSENT, ContextView
from ..engine.definition import StepKind, StepSpec
from ..engine.results import Failure, StepResult, Success, failure_from_error
from ..errors import MissingInputError, StepError
from ..ports import CompanyDataSource, ModelProvider, PushChannel, RecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseStepExecutor")


@dataclass
class StepKindDefinition:
    """Metadata for a step kind.

    Attributes:
        kind: Step kind handled
        display_name: Human-readable name
        description: Brief description
        cost_bearing: Whether the step is subject to the budget guard
    """

    kind: StepKind
    display_name: str
    description: str
    cost_bearing: bool = False

    def __post_init__(self):
        if not self.display_name:
            raise ValueError("display_name cannot be empty")


@dataclass
class StepRuntime:
    """Collaborators and read-only context access for one run.

    Attributes:
        run_id: Run identifier
        view: Read-only view over the run's execution context
        store: Persistence port
        model: Generative-model port
        push: Push-channel port
        tenant_id: Tenant owning the run
        company_data: Company data port (enrichment)
    """

    run_id: str
    view: ContextView
    store: Optional[RecordStore] = None
    model: Optional[ModelProvider] = None
    push: Optional[PushChannel] = None
    tenant_id: Optional[str] = None
    company_data: Optional[CompanyDataSource] = None


class BaseStepExecutor(ABC):
    """Abstract base class for step executors."""

    def __init__(self, spec: StepSpec, runtime: StepRuntime):
        self.spec = spec
        self.runtime = runtime

    @property
    def name(self) -> str:
        return self.spec.name

    @abstractmethod
    async def execute(self) -> StepResult:
        """Run the step. May raise; ``run()`` converts exceptions to Failure."""

    async def run(self) -> StepResult:
        """Execute the step and always return a StepResult."""
        try:
            result = await self.execute()
        except StepError as e:
            logger.info(f"Step {self.name} failed: {e.kind.value}: {e.message}")
            result = failure_from_error(e, self.name)
        except Exception as e:
            logger.exception(f"Step {self.name} raised an unexpected error")
            result = failure_from_error(e, self.name)

        if isinstance(result, Failure) and result.kind in self.spec.fatal_kinds and not result.fatal:
            result = Failure(kind=result.kind, message=result.message, details=result.details, fatal=True)
        return result

    def bind_inputs(self) -> Dict[str, Any]:
        """Resolve declared inputs to their values.

        Required inputs must be seeds or successful step payloads; anything
        else fails the step with ``missing_input``. Optional inputs resolve to
        ``ABSENT`` when unavailable.
        """
        view = self.runtime.view
        bound: Dict[str, Any] = {}
        missing: List[str] = []
        for name in self.spec.inputs:
            value = view.value(name)
            if value is ABSENT:
                missing.append(name)
            else:
                bound[name] = value
        if missing:
            raise MissingInputError(
                f"Step '{self.name}' is missing required inputs: {', '.join(missing)}",
                details={"missing": missing},
            )
        for name in self.spec.optional_inputs:
            bound[name] = view.value(name)
        return bound

    async def call_handler(self, handler: Callable[..., Any], inputs: Dict[str, Any]) -> Any:
        """Invoke a sync or async handler with ``(inputs, runtime)``."""
        outcome = handler(inputs, self.runtime)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    def wrap_payload(self, payload: Any) -> StepResult:
        """Turn a handler return value into a StepResult.

        Handlers may return a Success or Failure directly; any other value is
        the Success payload and must carry the declared output keys.
        """
        if isinstance(payload, (Success, Failure)):
            return payload
        if isinstance(payload, StepResult):
            raise StepError(f"Step '{self.name}' handler returned a {payload.status} result")

        if self.spec.outputs:
            if not isinstance(payload, dict):
                raise StepError(
                    f"Step '{self.name}' must return a mapping with keys {list(self.spec.outputs)}",
                    details={"returned_type": type(payload).__name__},
                )
            absent = [key for key in self.spec.outputs if key not in payload]
            if absent:
                raise StepError(
                    f"Step '{self.name}' output is missing declared keys: {', '.join(absent)}",
                    details={"missing_outputs": absent},
                )
        return Success(data=payload)


# Global registry for step kinds
STEP_REGISTRY: Dict[StepKind, StepKindDefinition] = {}
STEP_CLASSES: Dict[StepKind, Type[BaseStepExecutor]] = {}


def register_step_kind(
    kind: StepKind,
    display_name: str,
    description: str,
    cost_bearing: bool = False,
) -> Callable[[Type[T]], Type[T]]:
    """Decorator to register the executor class for a step kind.

    Example:
        @register_step_kind(StepKind.TASK, "Task", "Deterministic computation")
        class TaskStep(BaseStepExecutor):
            async def execute(self):
                ...
    """

    def decorator(cls: Type[T]) -> Type[T]:
        STEP_REGISTRY[kind] = StepKindDefinition(
            kind=kind,
            display_name=display_name,
            description=description,
            cost_bearing=cost_bearing,
        )
        STEP_CLASSES[kind] = cls
        logger.debug(f"Registered step kind: {kind.value} ({display_name})")
        return cls

    return decorator


def create_step(spec: StepSpec, runtime: StepRuntime) -> BaseStepExecutor:
    """Instantiate the executor registered for ``spec.kind``.

    Raises:
        ValueError: If no executor is registered for the kind
    """
    executor_class = STEP_CLASSES.get(spec.kind)
    if executor_class is None:
        raise ValueError(
            f"Unknown step kind: {spec.kind.value}. "
            f"Available kinds: {[k.value for k in STEP_CLASSES]}"
        )
    return executor_class(spec, runtime)


def get_step_kind_definition(kind: StepKind) -> Optional[StepKindDefinition]:
    return STEP_REGISTRY.get(StepKind(kind))


def list_step_kinds() -> List[StepKindDefinition]:
    return list(STEP_REGISTRY.values())


def is_step_kind_registered(kind: StepKind) -> bool:
    return StepKind(kind) in STEP_CLASSES
