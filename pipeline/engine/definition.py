"""Workflow Definitions

Declarative, immutable description of a workflow: an ordered sequence of
step specs plus the names of the seed inputs it expects and the step outputs
it exposes.

Key Components:
- StepKind: task | validate | llm_call | stream
- StepSpec: static definition of one step (handler, inputs, conditions, cost)
- WorkflowDefinition: ordered, immutable list of StepSpec
- validate_workflow: static checks run before any step executes

Design Principles:
- Declaration order is the execution order; ``run_when`` only looks backward
- Unmet inputs and bad references are caught before run time
- Predicates and handlers are plain callables stored on the spec
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple, Type, Union

from ..errors import ErrorKind
from .safe_eval import SafeEvalError, referenced_names, validate_condition_expression

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    TASK = "task"
    VALIDATE = "validate"
    LLM_CALL = "llm_call"
    STREAM = "stream"

    @property
    def cost_bearing(self) -> bool:
        return self is StepKind.LLM_CALL


Predicate = Union[Callable[[Any], bool], str]
PromptSource = Union[Callable[[Any], str], str]


@dataclass(frozen=True)
class LlmOptions:
    """Generative-model call options for an llm_call step.

    Attributes:
        prompt: Callable over the context view, or a ``{{step.field}}`` template
        system_prompt: Optional system message
        model: Model name (or callable over the context view)
        temperature: Sampling temperature
        max_tokens: Completion token limit
        response_format: "json" for structured output, "text" for free text
        output_schema: Optional pydantic model the structured output must satisfy
        timeout: Per-call timeout in seconds (None -> settings default)
    """

    prompt: PromptSource
    system_prompt: str = ""
    model: Union[str, Callable[[Any], str], None] = None
    temperature: float = 0.3
    max_tokens: int = 800
    response_format: str = "json"
    output_schema: Optional[Type[Any]] = None
    timeout: Optional[float] = None


@dataclass(frozen=True)
class StreamOptions:
    """Push-channel publish options for a stream step.

    Attributes:
        target: Channel name, or callable over the context view returning one
        payload: Callable over the context view returning the snapshot to publish
        action: UI update action (append | replace | update)
        template: Name of the UI partial the consumer renders
    """

    target: Union[str, Callable[[Any], str]]
    payload: Callable[[Any], Dict[str, Any]]
    action: str = "append"
    template: str = ""


@dataclass(frozen=True)
class StepSpec:
    """Static definition of a single step.

    Attributes:
        name: Unique name within the workflow; the step's result is stored under it
        kind: Step kind
        inputs: Names (seeds or earlier steps) that must hold usable data
        optional_inputs: Names bound when available, ``ABSENT`` otherwise
        outputs: Keys the success payload is declared to contain
        handler: Task/validate body: ``handler(inputs, step_context)`` (sync or async)
        run_if: Predicate over the context view (callable or safe expression)
        run_when: Earlier step that must have succeeded
        run_when_predicate: Secondary predicate over ``run_when``'s success payload
        estimated_cost: Amount reserved against the budget before an llm_call
        llm: Model call options (llm_call only)
        stream: Publish options (stream only)
        fatal_kinds: Failure kinds that abort the run when raised by this step
        description: Free-text description
    """

    name: str
    kind: StepKind
    inputs: Tuple[str, ...] = ()
    optional_inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    handler: Optional[Callable[..., Any]] = None
    run_if: Optional[Predicate] = None
    run_when: Optional[str] = None
    run_when_predicate: Optional[Callable[[Any], bool]] = None
    estimated_cost: Optional[float] = None
    llm: Optional[LlmOptions] = None
    stream: Optional[StreamOptions] = None
    fatal_kinds: FrozenSet[ErrorKind] = frozenset()
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("step name cannot be empty")
        object.__setattr__(self, "kind", StepKind(self.kind))
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "optional_inputs", tuple(self.optional_inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        object.__setattr__(self, "fatal_kinds", frozenset(ErrorKind(k) for k in self.fatal_kinds))
        if self.run_when_predicate is not None and self.run_when is None:
            raise ValueError(f"step {self.name}: run_when_predicate requires run_when")

    @property
    def is_conditional(self) -> bool:
        return self.run_if is not None or self.run_when is not None

    @property
    def references(self) -> Tuple[str, ...]:
        """Every context name this step reads by declaration."""
        refs = list(self.inputs) + list(self.optional_inputs)
        if self.run_when:
            refs.append(self.run_when)
        return tuple(dict.fromkeys(refs))


# ─── Builders ────────────────────────────────────────────────────────


def task(name: str, handler: Callable[..., Any], **kwargs: Any) -> StepSpec:
    return StepSpec(name=name, kind=StepKind.TASK, handler=handler, **kwargs)


def validate(name: str, handler: Callable[..., Any], **kwargs: Any) -> StepSpec:
    return StepSpec(name=name, kind=StepKind.VALIDATE, handler=handler, **kwargs)


def llm_call(name: str, llm: LlmOptions, estimated_cost: float, **kwargs: Any) -> StepSpec:
    return StepSpec(name=name, kind=StepKind.LLM_CALL, llm=llm, estimated_cost=estimated_cost, **kwargs)


def stream(name: str, stream: StreamOptions, **kwargs: Any) -> StepSpec:
    return StepSpec(name=name, kind=StepKind.STREAM, stream=stream, **kwargs)


# ─── Workflow definition ─────────────────────────────────────────────


@dataclass(frozen=True)
class WorkflowDefinition:
    """Declarative workflow definition.

    Attributes:
        name: Workflow name
        steps: Steps in execution order
        inputs: Seed names the workflow expects at run start
        outputs: Step names whose payloads form the workflow's result
        description: Free-text description
    """

    name: str
    steps: Tuple[StepSpec, ...]
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("workflow name cannot be empty")
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        if not self.steps:
            raise ValueError("workflow must have at least one step")

        names = [step.name for step in self.steps]
        if len(names) != len(set(names)):
            duplicates = {n for n in names if names.count(n) > 1}
            raise ValueError(f"duplicate step names found: {duplicates}")

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def get_step(self, name: str) -> Optional[StepSpec]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def position(self, name: str) -> int:
        return self.step_names.index(name)


# ─── Static validation ───────────────────────────────────────────────


class DefinitionIssue:
    """One problem found by ``validate_workflow``.

    Attributes:
        code: Issue code (e.g. FORWARD_REFERENCE)
        message: Human-readable message
        severity: "error" or "warning"
        step_names: Affected steps
        context: Additional details
    """

    def __init__(
        self,
        code: str,
        message: str,
        severity: str,
        step_names: List[str],
        context: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.severity = severity
        self.step_names = step_names
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "step_names": self.step_names,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"DefinitionIssue({self.code}: {self.message})"


class ValidationResult:
    """Outcome of ``validate_workflow``."""

    def __init__(self, valid: bool, errors: List[DefinitionIssue], warnings: List[DefinitionIssue]):
        self.valid = valid
        self.errors = errors
        self.warnings = warnings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def validate_workflow(workflow: WorkflowDefinition) -> ValidationResult:
    """Validate a workflow definition before running it.

    Checks, in declaration order:
    - step names colliding with declared seed inputs
    - ``run_when`` targets that are unknown or declared later (forward references)
    - inputs that are neither seeds nor earlier steps
    - ``run_if`` expressions that are malformed or read names not yet available
    - kind-specific requirements (handler, prompt, cost, stream target)
    - declared workflow outputs that are not steps

    Args:
        workflow: Workflow definition to validate

    Returns:
        ValidationResult containing validation status and errors/warnings
    """
    errors: List[DefinitionIssue] = []
    warnings: List[DefinitionIssue] = []

    seeds = set(workflow.inputs)
    all_steps = set(workflow.step_names)
    available = set(seeds)

    for step in workflow.steps:
        if step.name in seeds:
            errors.append(DefinitionIssue(
                code="NAME_COLLISION",
                message=f"Step '{step.name}' has the same name as a workflow input",
                severity="error",
                step_names=[step.name],
            ))

        # run_when must point backward
        if step.run_when is not None:
            if step.run_when == step.name or step.run_when in all_steps and step.run_when not in available:
                errors.append(DefinitionIssue(
                    code="FORWARD_REFERENCE",
                    message=f"Step '{step.name}' has run_when on '{step.run_when}', which is not declared earlier",
                    severity="error",
                    step_names=[step.name, step.run_when],
                ))
            elif step.run_when not in all_steps:
                errors.append(DefinitionIssue(
                    code="UNKNOWN_REFERENCE",
                    message=f"Step '{step.name}' has run_when on unknown step '{step.run_when}'",
                    severity="error",
                    step_names=[step.name],
                    context={"run_when": step.run_when},
                ))

        for name in list(step.inputs) + list(step.optional_inputs):
            if name not in available:
                code = "FORWARD_REFERENCE" if name in all_steps else "UNMET_INPUT"
                errors.append(DefinitionIssue(
                    code=code,
                    message=f"Step '{step.name}' reads '{name}', which is neither a workflow input nor an earlier step",
                    severity="error",
                    step_names=[step.name],
                    context={"input": name},
                ))

        if isinstance(step.run_if, str):
            expr_errors = validate_condition_expression(step.run_if)
            for err in expr_errors:
                errors.append(DefinitionIssue(
                    code="INVALID_CONDITION",
                    message=f"Step '{step.name}' has an invalid run_if expression: {err}",
                    severity="error",
                    step_names=[step.name],
                    context={"run_if": step.run_if},
                ))
            if not expr_errors:
                try:
                    unknown = referenced_names(step.run_if) - available
                except SafeEvalError:
                    unknown = set()
                for name in sorted(unknown):
                    errors.append(DefinitionIssue(
                        code="UNMET_INPUT",
                        message=f"Step '{step.name}' run_if reads '{name}', which is not available at that point",
                        severity="error",
                        step_names=[step.name],
                        context={"run_if": step.run_if, "input": name},
                    ))

        errors.extend(_kind_issues(step))

        if step.kind is StepKind.LLM_CALL and step.estimated_cost == 0:
            warnings.append(DefinitionIssue(
                code="ZERO_ESTIMATED_COST",
                message=f"LLM step '{step.name}' declares a zero estimated cost; the budget guard will always grant it",
                severity="warning",
                step_names=[step.name],
            ))

        available.add(step.name)

    for name in workflow.outputs:
        if name not in all_steps:
            errors.append(DefinitionIssue(
                code="UNKNOWN_OUTPUT",
                message=f"Workflow output '{name}' is not a step",
                severity="error",
                step_names=[],
                context={"output": name},
            ))

    if errors:
        logger.debug(f"Workflow {workflow.name} failed validation: {errors}")
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def _kind_issues(step: StepSpec) -> List[DefinitionIssue]:
    issues: List[DefinitionIssue] = []

    def _issue(code: str, message: str) -> None:
        issues.append(DefinitionIssue(code=code, message=message, severity="error", step_names=[step.name]))

    if step.kind in (StepKind.TASK, StepKind.VALIDATE) and step.handler is None:
        _issue("MISSING_HANDLER", f"{step.kind.value} step '{step.name}' has no handler")

    if step.kind is StepKind.LLM_CALL:
        if step.llm is None:
            _issue("MISSING_LLM_OPTIONS", f"LLM step '{step.name}' has no model call options")
        elif not step.llm.prompt:
            _issue("MISSING_PROMPT", f"LLM step '{step.name}' has no prompt")
        if step.estimated_cost is None:
            _issue("MISSING_ESTIMATED_COST", f"LLM step '{step.name}' declares no estimated cost")
        elif step.estimated_cost < 0:
            _issue("INVALID_ESTIMATED_COST", f"LLM step '{step.name}' has a negative estimated cost")
    elif step.estimated_cost is not None:
        _issue("UNEXPECTED_COST", f"Only llm_call steps may declare an estimated cost ('{step.name}')")

    if step.kind is StepKind.STREAM:
        if step.stream is None or not step.stream.target:
            _issue("MISSING_TARGET", f"Stream step '{step.name}' has no target channel")

    return issues
