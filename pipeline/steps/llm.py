"""LlmCall step executor.

Renders a prompt from the context, calls the model port under a timeout and
turns the answer into a payload. Provider problems become soft failures:

- ProviderTimeout / asyncio timeout  -> llm_timeout
- ProviderError                      -> llm_error
- unparseable or schema-invalid JSON -> llm_output_invalid

The Success result carries the actual cost of the call (token usage priced
via settings.MODEL_PRICING, or the step's estimate when usage is not
reported). Budget reservation and commit are the runner's job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from .. import config, settings
from ..engine.definition import LlmOptions, StepKind
from ..engine.results import StepResult, Success
from ..errors import ErrorKind, MissingInputError, ProviderError, ProviderTimeout, StepError
from ..ports import Completion, CompletionOptions
from .llm_utils import UnresolvedReference, parse_llm_json, render_template
from .registry import BaseStepExecutor, register_step_kind

logger = logging.getLogger(__name__)


@register_step_kind(
    StepKind.LLM_CALL,
    display_name="LLM Call",
    description="Generative-model call with a rendered prompt, subject to the budget guard",
    cost_bearing=True,
)
class LlmCallStep(BaseStepExecutor):
    @property
    def options(self) -> LlmOptions:
        return self.spec.llm

    async def execute(self) -> StepResult:
        self.bind_inputs()
        if self.runtime.model is None:
            raise StepError("No model provider configured", kind=ErrorKind.LLM_ERROR)

        prompt = self.render_prompt()
        completion_options = CompletionOptions(
            model=self.resolve_model(),
            temperature=self.options.temperature,
            max_tokens=self.options.max_tokens,
            response_format=self.options.response_format,
            system_prompt=self.options.system_prompt,
        )

        completion = await self._complete(prompt, completion_options)
        data = self.parse_output(completion.text)
        cost = self.actual_cost(completion, completion_options.model)

        logger.info(
            f"LLM step {self.name} completed (model={completion_options.model}, "
            f"usage={completion.usage or 'n/a'}, cost={cost})"
        )
        return Success(data=data, cost=cost)

    def render_prompt(self) -> str:
        source = self.options.prompt
        view = self.runtime.view
        if callable(source):
            return str(source(view))
        try:
            return render_template(source, view.namespace())
        except UnresolvedReference as e:
            raise MissingInputError(
                f"Prompt for step '{self.name}' references unavailable data: {e.reference}",
                details={"reference": e.reference},
            ) from e

    def resolve_model(self) -> str:
        model = self.options.model
        if callable(model):
            model = model(self.runtime.view)
        return model or config.LLM_DEFAULT_MODEL

    async def _complete(self, prompt: str, options: CompletionOptions) -> Completion:
        timeout = self.options.timeout or settings.LLM_CALL_TIMEOUT
        try:
            return await asyncio.wait_for(self.runtime.model.complete(prompt, options), timeout=timeout)
        except (asyncio.TimeoutError, ProviderTimeout) as e:
            raise StepError(
                f"Model call for step '{self.name}' timed out after {timeout}s",
                kind=ErrorKind.LLM_TIMEOUT,
                details={"timeout": timeout, "model": options.model},
            ) from e
        except ProviderError as e:
            raise StepError(
                f"Model provider error: {e}",
                kind=ErrorKind.LLM_ERROR,
                details={"status_code": e.status_code, "model": options.model},
            ) from e

    def parse_output(self, text: str) -> Any:
        if self.options.response_format != "json":
            if not text or not text.strip():
                raise StepError("Model returned an empty completion", kind=ErrorKind.LLM_OUTPUT_INVALID)
            return text.strip()

        parsed = parse_llm_json(text, caller=self.name)
        if parsed is None:
            raise StepError(
                "Model output is not valid JSON",
                kind=ErrorKind.LLM_OUTPUT_INVALID,
                details={"raw": (text or "")[:500]},
            )

        schema = self.options.output_schema
        if schema is None:
            return parsed
        try:
            model: BaseModel = schema.model_validate(parsed)
        except ValidationError as e:
            raise StepError(
                f"Model output does not match {schema.__name__}",
                kind=ErrorKind.LLM_OUTPUT_INVALID,
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        return model.model_dump(mode="json")

    def actual_cost(self, completion: Completion, model: str) -> float:
        usage = completion.usage or {}
        input_tokens: Optional[int] = usage.get("input_tokens")
        output_tokens: Optional[int] = usage.get("output_tokens")
        if input_tokens is None and output_tokens is None:
            return float(self.spec.estimated_cost or 0.0)
        return settings.model_cost(completion.model or model, input_tokens or 0, output_tokens or 0)
