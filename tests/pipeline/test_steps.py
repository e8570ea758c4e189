"""Unit tests for step executors

Tests cover:
- LlmCall: prompt rendering, JSON parsing, schema validation, timeouts, provider errors
- Stream: best-effort publishing under failures and timeouts
- Task: async handlers and handlers returning results directly
- Step kind registry
- Prompt template helpers
"""

from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from pipeline.engine import (
    ExecutionContext,
    Failure,
    LlmOptions,
    StepKind,
    StreamOptions,
    Success,
    llm_call,
    stream,
    task,
)
from pipeline.errors import ErrorKind, ProviderError, ProviderTimeout
from pipeline.ports import Completion, RecordingPushChannel, ScriptedModelProvider
from pipeline.steps import StepRuntime, create_step, list_step_kinds
from pipeline.steps.llm_utils import UnresolvedReference, parse_llm_json, render_template
from pipeline.steps.stream import publish_best_effort


class Verdict(BaseModel):
    label: str
    score: float


def _runtime(context, **ports):
    return StepRuntime(run_id=context.run_id, view=context.view(), **ports)


async def _run_step(spec, context, **ports):
    return await create_step(spec, _runtime(context, **ports)).run()


@pytest.fixture
def context():
    ctx = ExecutionContext("run_steps")
    ctx.seed({"answer": "We need to cut costs"})
    ctx.set("analyze_budget", Success(data={"budget_amount": 800.0, "is_low_budget": True}))
    return ctx


class TestLlmCallStep:
    """Test the LlmCall executor."""

    @pytest.mark.asyncio
    async def test_template_prompt_and_schema(self, context):
        model = ScriptedModelProvider('```json\n{"label": "pain", "score": 0.9}\n```')
        spec = llm_call(
            "classify",
            LlmOptions(
                prompt="Budget: {{analyze_budget.budget_amount}} / {{answer}}",
                system_prompt="Return JSON",
                temperature=0.5,
                max_tokens=100,
                output_schema=Verdict,
            ),
            estimated_cost=0.01,
        )

        result = await _run_step(spec, context, model=model)

        assert isinstance(result, Success)
        assert result.data == {"label": "pain", "score": 0.9}
        assert result.cost == 0.01
        prompt, options = model.calls[0]
        assert prompt == "Budget: 800.0 / We need to cut costs"
        assert options.system_prompt == "Return JSON"
        assert options.temperature == 0.5
        assert options.max_tokens == 100
        assert options.model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_callable_prompt_and_model(self, context):
        model = ScriptedModelProvider("{}")
        spec = llm_call(
            "classify",
            LlmOptions(prompt=lambda view: f"Answer: {view.value('answer')}", model=lambda view: "gpt-4o"),
            estimated_cost=0.01,
        )

        await _run_step(spec, context, model=model)

        prompt, options = model.calls[0]
        assert prompt == "Answer: We need to cut costs"
        assert options.model == "gpt-4o"

    @pytest.mark.asyncio
    async def test_unresolved_template_reference(self, context):
        model = ScriptedModelProvider("{}")
        spec = llm_call("q", LlmOptions(prompt="{{missing_step.field}}"), estimated_cost=0.01)

        result = await _run_step(spec, context, model=model)

        assert result.kind is ErrorKind.MISSING_INPUT
        assert result.details["reference"] == "missing_step.field"
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_timeout(self, context):
        model = ScriptedModelProvider("{}", delay=0.5)
        spec = llm_call("q", LlmOptions(prompt="hi", timeout=0.05), estimated_cost=0.01)

        result = await _run_step(spec, context, model=model)

        assert isinstance(result, Failure)
        assert result.kind is ErrorKind.LLM_TIMEOUT
        assert not result.fatal

    @pytest.mark.asyncio
    async def test_usage_priced_cost(self, context):
        model = AsyncMock()
        model.complete.return_value = Completion(
            text='{"label": "pain", "score": 0.4}',
            model="gpt-4o-mini",
            usage={"input_tokens": 1000, "output_tokens": 500},
        )
        spec = llm_call("classify", LlmOptions(prompt="{{answer}}", output_schema=Verdict), estimated_cost=0.01)

        result = await _run_step(spec, context, model=model)

        assert result.cost == pytest.approx(0.00045)
        model.complete.assert_awaited_once()
        prompt, options = model.complete.await_args.args
        assert prompt == "We need to cut costs"
        assert options.response_format == "json"

    @pytest.mark.asyncio
    async def test_provider_timeout(self, context):
        model = ScriptedModelProvider(ProviderTimeout("read timeout"))
        spec = llm_call("q", LlmOptions(prompt="hi"), estimated_cost=0.01)

        result = await _run_step(spec, context, model=model)

        assert result.kind is ErrorKind.LLM_TIMEOUT

    @pytest.mark.asyncio
    async def test_provider_error(self, context):
        model = ScriptedModelProvider(ProviderError("rate limited", status_code=429))
        spec = llm_call("q", LlmOptions(prompt="hi"), estimated_cost=0.01)

        result = await _run_step(spec, context, model=model)

        assert result.kind is ErrorKind.LLM_ERROR
        assert result.details["status_code"] == 429

    @pytest.mark.asyncio
    async def test_malformed_json(self, context):
        spec = llm_call("q", LlmOptions(prompt="hi"), estimated_cost=0.01)

        result = await _run_step(spec, context, model=ScriptedModelProvider("I think the answer is yes"))

        assert result.kind is ErrorKind.LLM_OUTPUT_INVALID

    @pytest.mark.asyncio
    async def test_schema_mismatch(self, context):
        spec = llm_call("q", LlmOptions(prompt="hi", output_schema=Verdict), estimated_cost=0.01)

        result = await _run_step(spec, context, model=ScriptedModelProvider('{"label": "x"}'))

        assert result.kind is ErrorKind.LLM_OUTPUT_INVALID
        assert result.details["errors"]

    @pytest.mark.asyncio
    async def test_text_response_format(self, context):
        spec = llm_call("q", LlmOptions(prompt="hi", response_format="text"), estimated_cost=0.01)

        result = await _run_step(spec, context, model=ScriptedModelProvider("  plain answer \n"))

        assert result.data == "plain answer"

    @pytest.mark.asyncio
    async def test_no_model_provider(self, context):
        spec = llm_call("q", LlmOptions(prompt="hi"), estimated_cost=0.01)

        result = await _run_step(spec, context)

        assert result.kind is ErrorKind.LLM_ERROR


class TestStreamStep:
    """Test best-effort publishing."""

    def _spec(self):
        return stream(
            "notify",
            StreamOptions(target="form_abc", payload=lambda view: {"amount": view.value("analyze_budget")["budget_amount"]}),
        )

    @pytest.mark.asyncio
    async def test_publishes(self, context):
        push = RecordingPushChannel()

        result = await _run_step(self._spec(), context, push=push)

        assert result.data == {"target": "form_abc", "action": "append", "delivered": True, "error": None}
        assert push.for_target("form_abc")[0]["data"] == {"amount": 800.0}

    @pytest.mark.asyncio
    async def test_delivery_failure_still_succeeds(self, context):
        result = await _run_step(self._spec(), context, push=RecordingPushChannel(fail=True))

        assert isinstance(result, Success)
        assert result.data["delivered"] is False

    @pytest.mark.asyncio
    async def test_no_push_channel(self, context):
        result = await _run_step(self._spec(), context)

        assert isinstance(result, Success)
        assert result.data["error"] == "no push channel configured"

    @pytest.mark.asyncio
    async def test_publish_timeout_abandoned(self):
        push = RecordingPushChannel(delay=0.5)

        report = await publish_best_effort(push, "form_abc", {"x": 1}, timeout=0.05)

        assert report["delivered"] is False
        assert "timed out" in report["error"]
        assert push.published == []

    @pytest.mark.asyncio
    async def test_empty_target_fails(self, context):
        spec = stream("notify", StreamOptions(target=lambda view: "", payload=lambda view: {}))

        result = await _run_step(spec, context, push=RecordingPushChannel())

        assert isinstance(result, Failure)


class TestTaskStep:
    @pytest.mark.asyncio
    async def test_async_handler_receives_inputs_and_runtime(self, context):
        seen = {}

        async def handler(inputs, runtime):
            seen["inputs"] = inputs
            seen["run_id"] = runtime.run_id
            return {"done": True}

        spec = task("t", handler, inputs=("answer", "analyze_budget"), optional_inputs=("ghost",))

        result = await _run_step(spec, context)

        assert result.data == {"done": True}
        assert seen["run_id"] == "run_steps"
        assert seen["inputs"]["answer"] == "We need to cut costs"
        assert seen["inputs"]["analyze_budget"]["is_low_budget"] is True
        assert not seen["inputs"]["ghost"]

    @pytest.mark.asyncio
    async def test_handler_may_return_failure(self, context):
        failure = Failure(kind=ErrorKind.DATABASE_ERROR, message="locked")
        spec = task("t", lambda inputs, runtime: failure)

        assert await _run_step(spec, context) is failure


class TestRegistry:
    def test_all_kinds_registered(self):
        kinds = {d.kind for d in list_step_kinds()}
        assert kinds == set(StepKind)
        assert [d.kind for d in list_step_kinds() if d.cost_bearing] == [StepKind.LLM_CALL]


class TestTemplates:
    """Test prompt templating and JSON extraction helpers."""

    def test_render_nested(self):
        namespace = {"a": {"b": {"c": 3}, "items": ["x", "y"]}, "n": None}
        assert render_template("{{a.b.c}} {{ a.items.1 }} {{n}}", namespace) == "3 y null"

    def test_render_dict_as_json(self):
        assert render_template("{{a}}", {"a": {"k": "v"}}) == '{"k": "v"}'

    def test_unresolved_raises(self):
        with pytest.raises(UnresolvedReference):
            render_template("{{a.missing}}", {"a": {}})

    @pytest.mark.parametrize("raw,expected", [
        ('{"a": 1}', {"a": 1}),
        ('```json\n{"a": 1}\n```', {"a": 1}),
        ('Here you go:\n```json\n{"a": 1}\n```', {"a": 1}),
        ('Sure! {"a": 1} Hope it helps', {"a": 1}),
        ("no json here", None),
        ("", None),
    ])
    def test_parse_llm_json(self, raw, expected):
        assert parse_llm_json(raw) == expected
