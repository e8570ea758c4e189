"""Unit tests for the Workflow Runner

Tests cover:
- Declaration-order execution and payload passing between steps
- Validation halts and fatal aborts
- Soft failures and upstream skips
- Budget denial, unresolved tenants and capped cost true-up for llm_call steps
- Best-effort stream steps
- Progress events
- Definition errors raised before any step runs
- Run logger resolved when a run starts
"""

from unittest.mock import MagicMock, patch

import pytest

from pipeline.engine import (
    GENERIC_RETRY_MESSAGE,
    LlmOptions,
    RunState,
    SkipReason,
    StreamOptions,
    WorkflowDefinition,
    WorkflowRunner,
    llm_call,
    run,
    stream,
    task,
    validate,
)
from pipeline.engine.results import Failure, Skipped, Success
from pipeline.errors import (
    DatabaseError,
    ErrorKind,
    FatalStepError,
    NotFoundError,
    ValidationFailed,
    WorkflowDefinitionError,
)
from pipeline.ports import Completion, InMemoryBudgetLedger, RecordingPushChannel, ScriptedModelProvider


def _echo(inputs, runtime):
    return {"value": inputs["message"]}


async def _shout(inputs, runtime):
    return {"value": inputs["echo"]["value"].upper()}


def _valid(inputs, runtime):
    return {"valid": True}


def _invalid(inputs, runtime):
    return {"valid": False, "message": "Answer is required"}


class Counter:
    def __init__(self):
        self.calls = 0

    def __call__(self, inputs, runtime):
        self.calls += 1
        return {"calls": self.calls}


def _raiser(error):
    def handler(inputs, runtime):
        raise error
    return handler


class TestExecutionOrder:
    """Test basic execution and payload passing."""

    @pytest.mark.asyncio
    async def test_echo_round_trip(self):
        workflow = WorkflowDefinition(
            name="echo",
            inputs=("message",),
            steps=(
                task("echo", _echo, inputs=("message",), outputs=("value",)),
                task("shout", _shout, inputs=("echo",)),
            ),
        )

        result = await WorkflowRunner().run(workflow, {"message": "hello"}, run_id="run_echo")

        assert result.outcome is RunState.COMPLETED
        assert result.completed
        assert result.run_id == "run_echo"
        assert result.data("echo") == {"value": "hello"}
        assert result.data("shout") == {"value": "HELLO"}
        assert list(result.context.results) == ["echo", "shout"]
        assert result.completed_at is not None

    @pytest.mark.asyncio
    async def test_user_facing_summary_on_success(self):
        workflow = WorkflowDefinition(
            name="echo",
            inputs=("message",),
            steps=(
                task("echo", _echo, inputs=("message",)),
                task("never", _echo, inputs=("message",), run_if=lambda view: False),
            ),
        )

        result = await WorkflowRunner().run(workflow, {"message": "hi"})
        summary = result.user_facing()

        assert summary["success"] is True
        assert summary["available_steps"] == ["echo"]
        assert summary["incomplete_steps"] == ["never"]
        assert summary["data"]["echo"] == {"value": "hi"}

    @pytest.mark.asyncio
    async def test_missing_output_key_fails_step(self):
        workflow = WorkflowDefinition(
            name="demo",
            steps=(task("a", lambda inputs, runtime: {"other": 1}, outputs=("value",)),),
        )

        result = await WorkflowRunner().run(workflow)

        failure = result.get("a")
        assert isinstance(failure, Failure)
        assert failure.details["missing_outputs"] == ["value"]
        assert result.completed

    @pytest.mark.asyncio
    async def test_missing_seed_fails_step_softly(self):
        workflow = WorkflowDefinition(
            name="demo",
            inputs=("message",),
            steps=(
                task("echo", _echo, inputs=("message",)),
                task("after", _valid),
            ),
        )

        result = await WorkflowRunner().run(workflow, {})

        assert result.get("echo").kind is ErrorKind.MISSING_INPUT
        assert result.get("after").succeeded
        assert result.completed

    @pytest.mark.asyncio
    async def test_module_level_run(self):
        workflow = WorkflowDefinition(
            name="echo", inputs=("message",), steps=(task("echo", _echo, inputs=("message",)),)
        )
        result = await run(workflow, {"message": "x"}, run_id="run_fn")
        assert result.data("echo") == {"value": "x"}
        assert result.to_dict()["context"]["run_id"] == "run_fn"


class TestValidationHalt:
    """A validate step returning valid=false halts the run."""

    @pytest.mark.asyncio
    async def test_halts_and_later_steps_never_run(self):
        counter = Counter()
        workflow = WorkflowDefinition(
            name="demo",
            steps=(validate("check", _invalid), task("count", counter)),
        )

        result = await WorkflowRunner().run(workflow)

        assert result.outcome is RunState.HALTED_BY_VALIDATION
        assert result.stopped_at == "check"
        assert counter.calls == 0
        assert "count" not in result.context
        assert result.user_facing() == {
            "success": False,
            "error": "validation_error",
            "message": "Answer is required",
            "step": "check",
        }

    @pytest.mark.asyncio
    async def test_validation_failed_error_halts(self):
        workflow = WorkflowDefinition(
            name="demo",
            steps=(validate("check", _raiser(ValidationFailed("Question does not belong to this form"))),),
        )

        result = await WorkflowRunner().run(workflow)

        assert result.outcome is RunState.HALTED_BY_VALIDATION
        assert result.validation_message() == "Question does not belong to this form"

    @pytest.mark.asyncio
    async def test_validate_not_found_aborts(self):
        workflow = WorkflowDefinition(
            name="demo",
            steps=(validate("check", _raiser(NotFoundError("form_responses record not found: x"))),),
        )

        result = await WorkflowRunner().run(workflow)

        assert result.outcome is RunState.ABORTED_BY_ERROR
        assert result.get("check").kind is ErrorKind.NOT_FOUND_ERROR

    @pytest.mark.asyncio
    async def test_validate_without_boolean_fails(self):
        workflow = WorkflowDefinition(name="demo", steps=(validate("check", lambda i, r: {"ok": 1}),))

        result = await WorkflowRunner().run(workflow)

        assert result.outcome is RunState.ABORTED_BY_ERROR
        assert result.get("check").kind is ErrorKind.UNEXPECTED_ERROR


class TestFailures:
    """Test fatal aborts, soft failures and upstream skips."""

    @pytest.mark.asyncio
    async def test_fatal_error_aborts(self):
        counter = Counter()
        workflow = WorkflowDefinition(
            name="demo",
            steps=(task("boom", _raiser(FatalStepError("store corrupted"))), task("count", counter)),
        )

        result = await WorkflowRunner().run(workflow)

        assert result.outcome is RunState.ABORTED_BY_ERROR
        assert result.stopped_at == "boom"
        assert counter.calls == 0
        assert result.user_facing() == {
            "success": False,
            "error": "workflow_error",
            "message": GENERIC_RETRY_MESSAGE,
            "retryable": True,
        }

    @pytest.mark.asyncio
    async def test_fatal_kinds_escalate(self):
        workflow = WorkflowDefinition(
            name="demo",
            steps=(
                task("save", _raiser(DatabaseError("disk full")), fatal_kinds=("database_error",)),
                task("after", _valid),
            ),
        )

        result = await WorkflowRunner().run(workflow)

        assert result.outcome is RunState.ABORTED_BY_ERROR
        assert result.get("save").fatal

    @pytest.mark.asyncio
    async def test_soft_failure_continues(self):
        counter = Counter()
        workflow = WorkflowDefinition(
            name="demo",
            steps=(
                task("flaky", _raiser(RuntimeError("oops"))),
                task("dependent", counter, run_when="flaky"),
                task("grandchild", counter, run_when="dependent"),
                task("independent", counter),
            ),
        )

        result = await WorkflowRunner().run(workflow)

        flaky = result.get("flaky")
        assert result.completed
        assert flaky.kind is ErrorKind.UNEXPECTED_ERROR
        assert flaky.details["exception_type"] == "RuntimeError"
        assert result.get("dependent").reason is SkipReason.UPSTREAM_FAILURE
        assert result.get("grandchild").reason is SkipReason.UPSTREAM_FAILURE
        assert result.get("independent").succeeded
        assert counter.calls == 1
        assert result.steps_with_status("skipped") == ["dependent", "grandchild"]

    @pytest.mark.asyncio
    async def test_definition_error_raised_before_run(self):
        counter = Counter()
        workflow = WorkflowDefinition(
            name="demo",
            steps=(task("a", counter, run_when="b"), task("b", counter)),
        )

        with pytest.raises(WorkflowDefinitionError, match="demo"):
            await WorkflowRunner().run(workflow)
        assert counter.calls == 0


class TestBudget:
    """Test the budget guard integration for llm_call steps."""

    def _workflow(self, cost):
        return WorkflowDefinition(
            name="demo",
            steps=(
                llm_call("analyze", LlmOptions(prompt="Analyze this"), estimated_cost=cost),
                task("use", lambda inputs, runtime: {"ok": True}, inputs=("analyze",), run_when="analyze"),
            ),
        )

    @pytest.mark.asyncio
    async def test_denied_step_is_skipped_and_model_not_called(self):
        ledger = InMemoryBudgetLedger({"t1": 5.0})
        model = ScriptedModelProvider('{"ok": true}')
        runner = WorkflowRunner(model=model, ledger=ledger, run_limit=0)

        result = await runner.run(self._workflow(10.0), tenant_id="t1")

        skipped = result.get("analyze")
        assert isinstance(skipped, Skipped)
        assert skipped.reason is SkipReason.BUDGET
        assert "tenant_allowance_exceeded" in skipped.message
        assert result.get("use").reason is SkipReason.UPSTREAM_FAILURE
        assert model.calls == []
        assert ledger.spent("t1") == 0.0
        assert ledger.reserved("t1") == 0.0
        assert result.completed

    @pytest.mark.asyncio
    async def test_estimate_committed_without_usage(self):
        ledger = InMemoryBudgetLedger({"t1": 5.0})
        runner = WorkflowRunner(model=ScriptedModelProvider('{"ok": true}'), ledger=ledger, run_limit=0)

        result = await runner.run(self._workflow(0.05), tenant_id="t1")

        assert result.get("analyze").cost == pytest.approx(0.05)
        assert result.spent == pytest.approx(0.05)
        assert ledger.spent("t1") == pytest.approx(0.05)
        assert ledger.reserved("t1") == 0.0
        assert [e.step_name for e in result.cost_entries] == ["analyze"]

    @pytest.mark.asyncio
    async def test_actual_cost_from_usage(self):
        ledger = InMemoryBudgetLedger({"t1": 5.0})
        completion = Completion(
            text='{"ok": true}',
            model="gpt-4o-mini",
            usage={"input_tokens": 1000, "output_tokens": 1000},
        )
        runner = WorkflowRunner(model=ScriptedModelProvider(completion), ledger=ledger, run_limit=0)

        result = await runner.run(self._workflow(0.05), tenant_id="t1")

        assert result.get("analyze").cost == pytest.approx(0.00075)
        assert ledger.spent("t1") == pytest.approx(0.00075)

    @pytest.mark.asyncio
    async def test_actual_cost_capped_at_allowance(self):
        ledger = InMemoryBudgetLedger({"t1": 0.05})
        completion = Completion(
            text='{"ok": true}',
            model="gpt-4o",
            usage={"input_tokens": 10000, "output_tokens": 10000},
        )
        runner = WorkflowRunner(model=ScriptedModelProvider(completion), ledger=ledger, run_limit=0)

        result = await runner.run(self._workflow(0.04), tenant_id="t1")

        analyze = result.get("analyze")
        assert isinstance(analyze, Success)
        assert analyze.cost == pytest.approx(0.05)
        assert analyze.uncharged == pytest.approx(0.15)
        assert ledger.spent("t1") <= 0.05 + 1e-9
        assert result.cost_entries[0].uncharged == pytest.approx(0.15)
        assert result.get("use").data == {"ok": True}

    @pytest.mark.asyncio
    async def test_unresolved_tenant_skips_for_budget(self):
        ledger = InMemoryBudgetLedger(default_allowance=0.0)
        model = ScriptedModelProvider('{"ok": true}')
        runner = WorkflowRunner(model=model, ledger=ledger, run_limit=0)

        result = await runner.run(self._workflow(0.5))

        assert result.get("analyze").reason is SkipReason.BUDGET
        assert "tenant_unresolved" in result.get("analyze").message
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_failed_call_releases_reservation(self):
        ledger = InMemoryBudgetLedger({"t1": 5.0})
        runner = WorkflowRunner(model=ScriptedModelProvider("not json"), ledger=ledger, run_limit=0)

        result = await runner.run(self._workflow(0.05), tenant_id="t1")

        assert result.get("analyze").kind is ErrorKind.LLM_OUTPUT_INVALID
        assert ledger.spent("t1") == 0.0
        assert ledger.reserved("t1") == 0.0
        assert result.spent == 0.0

    @pytest.mark.asyncio
    async def test_run_limit_denies(self):
        runner = WorkflowRunner(model=ScriptedModelProvider("{}"), ledger=InMemoryBudgetLedger(), run_limit=0.01)

        result = await runner.run(self._workflow(0.05), tenant_id="t1")

        assert result.get("analyze").reason is SkipReason.BUDGET
        assert "run_limit_exceeded" in result.get("analyze").message


class TestStreamAndProgress:
    """Test best-effort publishing and progress events."""

    @pytest.mark.asyncio
    async def test_delivery_error_does_not_fail_run(self):
        workflow = WorkflowDefinition(
            name="demo",
            steps=(
                task("a", _valid),
                stream("push", StreamOptions(target="form_x", payload=lambda view: view.value("a"))),
            ),
        )

        result = await WorkflowRunner(push=RecordingPushChannel(fail=True)).run(workflow)

        pushed = result.get("push")
        assert result.completed
        assert isinstance(pushed, Success)
        assert pushed.data["delivered"] is False
        assert "unavailable" in pushed.data["error"]

    @pytest.mark.asyncio
    async def test_stream_envelope(self):
        push = RecordingPushChannel()
        workflow = WorkflowDefinition(
            name="demo",
            steps=(
                task("a", _valid),
                stream(
                    "push",
                    StreamOptions(
                        target=lambda view: "form_abc",
                        payload=lambda view: {"valid": view.value("a")["valid"]},
                        action="replace",
                        template="responses/question_response",
                    ),
                ),
            ),
        )

        result = await WorkflowRunner(push=push).run(workflow, run_id="run_s")

        [envelope] = push.for_target("form_abc")
        assert envelope["action"] == "replace"
        assert envelope["template"] == "responses/question_response"
        assert envelope["data"] == {"valid": True}
        assert envelope["run_id"] == "run_s"
        assert result.data("push")["delivered"] is True

    @pytest.mark.asyncio
    async def test_progress_events(self):
        push = RecordingPushChannel()
        workflow = WorkflowDefinition(
            name="demo",
            steps=(
                task("a", _valid),
                task("b", _raiser(RuntimeError("x"))),
                task("c", _valid, run_when="b"),
            ),
        )

        await WorkflowRunner(push=push).run(workflow, progress_target="progress_1")

        events = [p["event_type"] for p in push.for_target("progress_1")]
        assert events == [
            "workflow_start",
            "step_completed",
            "step_failed",
            "step_skipped",
            "workflow_complete",
        ]
        assert push.for_target("progress_1")[-1]["data"]["outcome"] == "completed"

    @pytest.mark.asyncio
    async def test_no_progress_without_target(self):
        push = RecordingPushChannel()
        workflow = WorkflowDefinition(name="demo", steps=(task("a", _valid),))

        await WorkflowRunner(push=push).run(workflow)

        assert push.published == []


class TestRunLogging:
    """The run logger is configured on first run, never at import."""

    def test_no_module_level_run_logger(self):
        import pipeline.engine.runner as runner_module

        assert not hasattr(runner_module, "run_logger")

    @pytest.mark.asyncio
    async def test_run_resolves_logger(self):
        workflow = WorkflowDefinition(
            name="echo", inputs=("message",), steps=(task("echo", _echo, inputs=("message",)),)
        )
        run_logger = MagicMock()

        with patch("pipeline.engine.runner.get_engine_logger", return_value=run_logger) as get_logger:
            await WorkflowRunner().run(workflow, {"message": "hi"})

        get_logger.assert_called_once_with()
        assert run_logger.info.call_count == 2
