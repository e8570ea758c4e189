"""Workflow Runner

Executes a WorkflowDefinition in declaration order over a fresh
ExecutionContext:

    Pending -> Running -> Completed | HaltedByValidation | AbortedByError

Per step:
1. Conditional evaluation; a skip writes a Skipped result and moves on.
2. llm_call steps reserve their estimate with the budget guard; a denial
   writes Skipped(skip_due_to_budget) and moves on.
3. The step executes; its single StepResult is written to the context.
   Reservations are committed (true-up) on Success, released otherwise.
4. The abort policy is applied here, in one place:
   - a Failure flagged fatal aborts the run;
   - a validate step returning ``valid: false``, or failing with
     ``validation_error``, halts the run;
   - a validate step failing with any other kind aborts the run;
   - every other Failure is soft and the run continues.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ErrorKind, WorkflowDefinitionError
from ..logging_config import get_engine_logger
from ..ports import BudgetLedger, CompanyDataSource, CostLedgerEntry, ModelProvider, PushChannel, RecordStore
from ..steps import llm as _llm_step, task as _task_step  # noqa: F401  (register executors)
from ..steps.registry import StepRuntime, create_step
from ..steps.stream import publish_best_effort
from .budget import BudgetGuard, Granted
from .conditions import evaluate
from .context import ExecutionContext
from .definition import StepKind, StepSpec, WorkflowDefinition, validate_workflow
from .results import Failure, SkipReason, Skipped, StepResult, Success, _now, failure_from_error

logger = logging.getLogger(__name__)

GENERIC_RETRY_MESSAGE = "Something went wrong while processing your request. Please try again."


class RunState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    HALTED_BY_VALIDATION = "halted_by_validation"
    ABORTED_BY_ERROR = "aborted_by_error"

    @property
    def terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.HALTED_BY_VALIDATION, RunState.ABORTED_BY_ERROR)


@dataclass
class RunResult:
    """Outcome of one run: the terminal state plus the full context.

    Attributes:
        workflow: Workflow name
        outcome: Terminal run state
        context: Execution context with every seed and step result
        stopped_at: Step that halted or aborted the run
        spent: Total committed to the budget ledger by this run
        cost_entries: Ledger entries committed by this run
    """

    workflow: str
    outcome: RunState
    context: ExecutionContext
    stopped_at: Optional[str] = None
    spent: float = 0.0
    cost_entries: List[CostLedgerEntry] = field(default_factory=list)
    started_at: str = field(default_factory=_now)
    completed_at: Optional[str] = None

    @property
    def run_id(self) -> str:
        return self.context.run_id

    @property
    def completed(self) -> bool:
        return self.outcome is RunState.COMPLETED

    def get(self, name: str) -> Any:
        return self.context.get(name)

    def data(self, name: str) -> Any:
        """Success payload (or seed value) for ``name``; ``ABSENT`` otherwise."""
        return self.context.value(name)

    def steps_with_status(self, status: str) -> List[str]:
        return [name for name, result in self.context.results.items() if result.status == status]

    @property
    def stop_result(self) -> Optional[StepResult]:
        if self.stopped_at is None:
            return None
        return self.context.result(self.stopped_at)

    def validation_message(self) -> str:
        result = self.stop_result
        if isinstance(result, Failure):
            return result.message
        if isinstance(result, Success) and isinstance(result.data, dict):
            message = result.data.get("message")
            if message:
                return str(message)
            errors = result.data.get("errors") or []
            if errors:
                return "; ".join(str(e) for e in errors)
        return "Validation failed"

    def user_facing(self) -> Dict[str, Any]:
        """Summary the calling application hands to the end user."""
        if self.outcome is RunState.HALTED_BY_VALIDATION:
            return {
                "success": False,
                "error": ErrorKind.VALIDATION_ERROR.value,
                "message": self.validation_message(),
                "step": self.stopped_at,
            }
        if self.outcome is RunState.ABORTED_BY_ERROR:
            return {
                "success": False,
                "error": "workflow_error",
                "message": GENERIC_RETRY_MESSAGE,
                "retryable": True,
            }

        available = self.steps_with_status(Success.status)
        return {
            "success": True,
            "data": {name: self.context.value(name) for name in available},
            "available_steps": available,
            "incomplete_steps": [name for name in self.context.results if name not in available],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow": self.workflow,
            "outcome": self.outcome.value,
            "stopped_at": self.stopped_at,
            "spent": self.spent,
            "cost_entries": [entry.to_dict() for entry in self.cost_entries],
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "context": self.context.snapshot(),
        }


def get(context: ExecutionContext, name: str) -> Any:
    """Engine-level read: the StepResult (or seed) stored under ``name``, or ``ABSENT``."""
    return context.get(name)


class WorkflowRunner:
    """Runs workflow definitions against a fixed set of collaborators.

    Args:
        store: Persistence port
        model: Generative-model port
        push: Push-channel port (Stream steps and progress events)
        ledger: Tenant budget ledger port
        run_limit: Per-run spend ceiling override
        company_data: Company data port (enrichment)
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        model: Optional[ModelProvider] = None,
        push: Optional[PushChannel] = None,
        ledger: Optional[BudgetLedger] = None,
        run_limit: Optional[float] = None,
        company_data: Optional[CompanyDataSource] = None,
    ):
        self.store = store
        self.model = model
        self.push = push
        self.ledger = ledger
        self.run_limit = run_limit
        self.company_data = company_data

    async def run(
        self,
        workflow: WorkflowDefinition,
        seed_inputs: Optional[Mapping[str, Any]] = None,
        tenant_id: Optional[str] = None,
        run_id: Optional[str] = None,
        progress_target: Optional[str] = None,
    ) -> RunResult:
        """Run ``workflow`` seeded with ``seed_inputs``.

        Raises:
            WorkflowDefinitionError: If the definition fails static validation
        """
        validation = validate_workflow(workflow)
        if not validation.valid:
            raise WorkflowDefinitionError(workflow.name, validation.errors)

        context = ExecutionContext(run_id or "")
        context.seed(seed_inputs or {})
        missing_seeds = [name for name in workflow.inputs if name not in context]
        if missing_seeds:
            logger.warning(f"Run {context.run_id}: {workflow.name} started without inputs {missing_seeds}")

        guard = BudgetGuard(self.ledger, tenant_id, context.run_id, self.run_limit)
        runtime = StepRuntime(
            run_id=context.run_id,
            view=context.view(),
            store=self.store,
            model=self.model,
            push=self.push,
            tenant_id=tenant_id,
            company_data=self.company_data,
        )
        result = RunResult(workflow=workflow.name, outcome=RunState.PENDING, context=context)
        result.outcome = RunState.RUNNING

        run_logger = get_engine_logger()
        run_logger.info(f"Run {context.run_id}: starting {workflow.name} ({len(workflow.steps)} steps)")
        await self._progress(progress_target, context.run_id, "workflow_start", {
            "workflow": workflow.name,
            "steps": workflow.step_names,
        })

        for step in workflow.steps:
            step_result = await self._process_step(step, context, runtime, guard)
            context.set(step.name, step_result)
            await self._progress(progress_target, context.run_id, _event_for(step_result), {
                "step": step.name,
                "kind": step.kind.value,
                "result": step_result.to_dict(),
            })

            terminal = self._terminal_state(step, step_result)
            if terminal is not None:
                result.outcome = terminal
                result.stopped_at = step.name
                run_logger.warning(f"Run {context.run_id}: {terminal.value} at step {step.name}")
                break
        else:
            result.outcome = RunState.COMPLETED

        result.spent = guard.spent
        result.cost_entries = list(guard.entries)
        result.completed_at = _now()

        run_logger.info(
            f"Run {context.run_id}: {workflow.name} finished {result.outcome.value} "
            f"(success={len(result.steps_with_status('success'))}, "
            f"failure={len(result.steps_with_status('failure'))}, "
            f"skipped={len(result.steps_with_status('skipped'))}, spent={result.spent})"
        )
        await self._progress(progress_target, context.run_id, "workflow_complete", {
            "workflow": workflow.name,
            "outcome": result.outcome.value,
            "stopped_at": result.stopped_at,
            "spent": result.spent,
        })
        return result

    async def _process_step(
        self,
        step: StepSpec,
        context: ExecutionContext,
        runtime: StepRuntime,
        guard: BudgetGuard,
    ) -> StepResult:
        verdict = evaluate(step, context.view())
        if not verdict.runs:
            logger.info(f"Run {context.run_id}: skipping {step.name} ({verdict.decision.value}: {verdict.message})")
            return Skipped(reason=SkipReason(verdict.decision.value), message=verdict.message)

        reservation = None
        if step.kind.cost_bearing:
            outcome = await guard.reserve(step.name, step.estimated_cost or 0.0)
            if not isinstance(outcome, Granted):
                return Skipped(
                    reason=SkipReason.BUDGET,
                    message=f"Budget denied ({outcome.reason}) for estimated cost {outcome.requested}",
                )
            reservation = outcome.reservation

        step_result = await self._invoke(step, runtime)

        if reservation is not None:
            if isinstance(step_result, Success):
                entry = await guard.commit(reservation, step_result.cost)
                if entry.amount != step_result.cost or entry.uncharged:
                    step_result = Success(data=step_result.data, cost=entry.amount,
                                          uncharged=entry.uncharged,
                                          completed_at=step_result.completed_at)
            else:
                await guard.release(reservation)

        if isinstance(step_result, Failure):
            logger.warning(
                f"Run {context.run_id}: step {step.name} failed "
                f"({step_result.kind.value}{', fatal' if step_result.fatal else ''}): {step_result.message}"
            )
        return step_result

    async def _invoke(self, step: StepSpec, runtime: StepRuntime) -> StepResult:
        try:
            executor = create_step(step, runtime)
            return await executor.run()
        except Exception as e:
            logger.exception(f"Step {step.name} could not be executed")
            return failure_from_error(e, step.name)

    @staticmethod
    def _terminal_state(step: StepSpec, result: StepResult) -> Optional[RunState]:
        if isinstance(result, Failure):
            if result.fatal:
                return RunState.ABORTED_BY_ERROR
            if step.kind is StepKind.VALIDATE:
                if result.kind is ErrorKind.VALIDATION_ERROR:
                    return RunState.HALTED_BY_VALIDATION
                return RunState.ABORTED_BY_ERROR
            return None

        if step.kind is StepKind.VALIDATE and isinstance(result, Success):
            if result.data.get("valid") is False:
                return RunState.HALTED_BY_VALIDATION
        return None

    async def _progress(self, target: Optional[str], run_id: str, event_type: str, data: Dict[str, Any]) -> None:
        if not target or self.push is None:
            return
        payload = {"event_type": event_type, "data": {"run_id": run_id, "timestamp": _now(), **data}}
        await publish_best_effort(self.push, target, payload)


def _event_for(result: StepResult) -> str:
    if isinstance(result, Success):
        return "step_completed"
    if isinstance(result, Skipped):
        return "step_skipped"
    return "step_failed"


async def run(
    workflow: WorkflowDefinition,
    seed_inputs: Optional[Mapping[str, Any]] = None,
    *,
    tenant_id: Optional[str] = None,
    run_id: Optional[str] = None,
    progress_target: Optional[str] = None,
    **collaborators: Any,
) -> RunResult:
    """Run a workflow with a one-off runner built from ``collaborators``."""
    runner = WorkflowRunner(**collaborators)
    return await runner.run(
        workflow,
        seed_inputs,
        tenant_id=tenant_id,
        run_id=run_id,
        progress_target=progress_target,
    )
