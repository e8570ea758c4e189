"""Task and Validate step executors."""

from __future__ import annotations

import logging

from ..engine.definition import StepKind
from ..engine.results import StepResult, Success
from ..errors import StepError
from .registry import BaseStepExecutor, register_step_kind

logger = logging.getLogger(__name__)


@register_step_kind(
    StepKind.TASK,
    display_name="Task",
    description="Deterministic computation over declared inputs; may write through the persistence port",
)
class TaskStep(BaseStepExecutor):
    async def execute(self) -> StepResult:
        inputs = self.bind_inputs()
        payload = await self.call_handler(self.spec.handler, inputs)
        return self.wrap_payload(payload)


@register_step_kind(
    StepKind.VALIDATE,
    display_name="Validate",
    description="Gate whose payload carries a boolean 'valid'; valid=false halts the run",
)
class ValidateStep(BaseStepExecutor):
    """Task specialization whose Success payload must include ``valid: bool``."""

    async def execute(self) -> StepResult:
        inputs = self.bind_inputs()
        result = self.wrap_payload(await self.call_handler(self.spec.handler, inputs))
        if not isinstance(result, Success):
            return result

        payload = result.data
        if not isinstance(payload, dict) or not isinstance(payload.get("valid"), bool):
            raise StepError(
                f"Validate step '{self.name}' must return a mapping with a boolean 'valid'",
                details={"returned": repr(payload)[:200]},
            )
        if not payload["valid"]:
            logger.info(f"Validate step {self.name} rejected input: {payload.get('message', '')}")
        return result
