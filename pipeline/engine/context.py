"""Execution Context

Single-assignment key -> value store threaded through one workflow run.

Two kinds of entries share one namespace:
- seeds: run-start inputs written by ``seed()`` before any step executes
- step results: one ``StepResult`` per step name, written by the runner

Reads of names that were never written return ``ABSENT``, never a guessed
default, so callers must handle missing data explicitly.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Iterator, List, Mapping, Union

from ..errors import DuplicateWriteError, PipelineError
from .results import StepResult, Success


class _Absent:
    """Marker for context names that have not been written."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


class ExecutionContext:
    """Append-only store for one run."""

    def __init__(self, run_id: str = ""):
        self.run_id = run_id or f"run_{uuid.uuid4().hex[:12]}"
        self._seeds: Dict[str, Any] = {}
        self._results: Dict[str, StepResult] = {}

    # ─── Writes ──────────────────────────────────────────────────────

    def seed(self, initial_inputs: Mapping[str, Any]) -> None:
        """Populate run-start values. Must happen before any step result is written."""
        if self._results:
            raise PipelineError("Context cannot be seeded after steps have written results")
        for name, value in initial_inputs.items():
            if name in self:
                raise DuplicateWriteError(name)
            self._seeds[name] = value

    def set(self, name: str, result: StepResult) -> None:
        """Record a step result. Each name may be written exactly once per run."""
        if not isinstance(result, StepResult):
            raise TypeError(f"Context entry '{name}' must be a StepResult, got {type(result).__name__}")
        if name in self:
            raise DuplicateWriteError(name)
        self._results[name] = result

    # ─── Reads ───────────────────────────────────────────────────────

    def get(self, name: str) -> Union[StepResult, Any]:
        """Return the step result or seed value stored under ``name``, or ``ABSENT``."""
        if name in self._results:
            return self._results[name]
        if name in self._seeds:
            return self._seeds[name]
        return ABSENT

    def result(self, name: str) -> Union[StepResult, _Absent]:
        """Return the step result for ``name``; seeds and unwritten names are ``ABSENT``."""
        return self._results.get(name, ABSENT)

    def value(self, name: str) -> Any:
        """Return usable data for ``name``.

        Seeds resolve to their raw value, successful steps to their payload.
        Failed, skipped and unwritten names resolve to ``ABSENT``.
        """
        if name in self._seeds:
            return self._seeds[name]
        result = self._results.get(name)
        if isinstance(result, Success):
            return result.data
        return ABSENT

    def is_seed(self, name: str) -> bool:
        return name in self._seeds

    def __contains__(self, name: object) -> bool:
        return name in self._seeds or name in self._results

    def __iter__(self) -> Iterator[str]:
        yield from self._seeds
        yield from self._results

    def __len__(self) -> int:
        return len(self._seeds) + len(self._results)

    def keys(self) -> List[str]:
        return list(self)

    @property
    def seeds(self) -> Dict[str, Any]:
        return dict(self._seeds)

    @property
    def results(self) -> Dict[str, StepResult]:
        """Step results in write (= execution) order."""
        return dict(self._results)

    def view(self) -> "ContextView":
        return ContextView(self)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly copy of the whole context."""
        return {
            "run_id": self.run_id,
            "seeds": dict(self._seeds),
            "steps": {name: result.to_dict() for name, result in self._results.items()},
        }


class ContextView:
    """Read-only access to a context, handed to predicates, prompts and step bodies."""

    __slots__ = ("_context",)

    def __init__(self, context: ExecutionContext):
        self._context = context

    @property
    def run_id(self) -> str:
        return self._context.run_id

    def get(self, name: str) -> Any:
        return self._context.get(name)

    def result(self, name: str) -> Any:
        return self._context.result(name)

    def value(self, name: str) -> Any:
        return self._context.value(name)

    def succeeded(self, name: str) -> bool:
        return isinstance(self._context.result(name), Success)

    def __contains__(self, name: object) -> bool:
        return name in self._context

    def namespace(self) -> Dict[str, Any]:
        """Names with usable data, for expression evaluation and templates.

        Only seeds and successful step payloads appear; anything else stays
        unknown so expressions referencing it fail instead of reading a default.
        """
        names: Dict[str, Any] = {}
        for name in self._context:
            value = self._context.value(name)
            if value is not ABSENT:
                names[name] = value
        return names
