"""Stream step executor.

Publishes a rendered UI snapshot to the push channel. Delivery is best
effort: a DeliveryError, any other publish error, or a publish that takes
longer than STREAM_PUBLISH_TIMEOUT is logged and abandoned, and the step
still succeeds with ``delivered: False``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from .. import settings
from ..engine.definition import StepKind, StreamOptions
from ..engine.results import StepResult, Success, _now
from ..errors import StepError
from ..logging_config import get_push_logger
from .registry import BaseStepExecutor, register_step_kind


async def publish_best_effort(push, target: str, payload: Dict[str, Any],
                              timeout: Optional[float] = None) -> Dict[str, Any]:
    """Publish without letting delivery problems propagate.

    Returns a delivery report: ``{"delivered": bool, "error": str | None}``.
    """
    logger = get_push_logger()
    if push is None:
        logger.warning(f"No push channel configured, dropping publish to {target}")
        return {"delivered": False, "error": "no push channel configured"}

    timeout = settings.STREAM_PUBLISH_TIMEOUT if timeout is None else timeout
    try:
        await asyncio.wait_for(push.publish(target, payload), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Publish to {target} abandoned after {timeout}s")
        return {"delivered": False, "error": f"timed out after {timeout}s"}
    except Exception as e:
        # Log error but don't fail workflow
        logger.error(f"Failed to publish to {target}: {type(e).__name__}: {e}")
        return {"delivered": False, "error": str(e) or type(e).__name__}
    return {"delivered": True, "error": None}


@register_step_kind(
    StepKind.STREAM,
    display_name="Stream",
    description="Fire-and-forget UI snapshot published to the push channel",
)
class StreamStep(BaseStepExecutor):
    @property
    def options(self) -> StreamOptions:
        return self.spec.stream

    async def execute(self) -> StepResult:
        self.bind_inputs()
        view = self.runtime.view

        target = self.options.target(view) if callable(self.options.target) else self.options.target
        if not target:
            raise StepError(f"Stream step '{self.name}' resolved an empty target")
        data = self.options.payload(view)

        envelope = {
            "action": self.options.action,
            "template": self.options.template,
            "target": target,
            "data": data,
            "run_id": self.runtime.run_id,
            "timestamp": _now(),
        }
        report = await publish_best_effort(self.runtime.push, target, envelope)
        return Success(data={"target": target, "action": self.options.action, **report})
