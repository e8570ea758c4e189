"""Conditional Evaluator

Decides, for one step and the context as it stands, whether the step runs.

- Unconditional steps always run.
- ``run_when``: the referenced earlier step must have a Success result (and,
  when a payload predicate is declared, its payload must satisfy it);
  otherwise the step is skipped for upstream failure. Skipped steps hold a
  Skipped result, so skips propagate down ``run_when`` chains without
  re-evaluating them.
- ``run_if``: a callable or safe expression over the context; false, or an
  error while evaluating, skips the step for its predicate.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import NamedTuple

from .context import ContextView
from .definition import StepSpec
from .results import Success
from .safe_eval import SafeEvalError, safe_eval

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    RUN = "run"
    SKIP_PREDICATE = "skip_due_to_predicate"
    SKIP_UPSTREAM_FAILURE = "skip_due_to_upstream_failure"


class Verdict(NamedTuple):
    decision: Decision
    message: str = ""

    @property
    def runs(self) -> bool:
        return self.decision is Decision.RUN


RUN = Verdict(Decision.RUN)


def evaluate(step: StepSpec, view: ContextView) -> Verdict:
    """Evaluate ``run_when`` then ``run_if`` for ``step``."""
    if step.run_when is not None:
        verdict = _check_upstream(step, view)
        if not verdict.runs:
            return verdict

    if step.run_if is not None:
        return _check_predicate(step, view)

    return RUN


def _check_upstream(step: StepSpec, view: ContextView) -> Verdict:
    upstream = view.result(step.run_when)
    if not isinstance(upstream, Success):
        status = getattr(upstream, "status", "absent")
        return Verdict(
            Decision.SKIP_UPSTREAM_FAILURE,
            f"Upstream step '{step.run_when}' did not succeed ({status})",
        )

    if step.run_when_predicate is not None:
        try:
            accepted = bool(step.run_when_predicate(upstream.data))
        except Exception as e:
            logger.warning(f"run_when predicate for step {step.name} raised {type(e).__name__}: {e}")
            accepted = False
        if not accepted:
            return Verdict(
                Decision.SKIP_UPSTREAM_FAILURE,
                f"Upstream step '{step.run_when}' payload did not satisfy the run_when predicate",
            )

    return RUN


def _check_predicate(step: StepSpec, view: ContextView) -> Verdict:
    predicate = step.run_if
    try:
        if isinstance(predicate, str):
            passed = bool(safe_eval(predicate, view.namespace()))
        else:
            passed = bool(predicate(view))
    except SafeEvalError as e:
        logger.info(f"run_if for step {step.name} could not be evaluated: {e}")
        return Verdict(Decision.SKIP_PREDICATE, f"run_if could not be evaluated: {e}")
    except Exception as e:
        logger.warning(f"run_if for step {step.name} raised {type(e).__name__}: {e}")
        return Verdict(Decision.SKIP_PREDICATE, f"run_if raised {type(e).__name__}")

    if not passed:
        return Verdict(Decision.SKIP_PREDICATE, "run_if evaluated to false")
    return RUN
