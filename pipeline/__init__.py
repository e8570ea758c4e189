"""Form pipeline orchestration package.

Subpackages:
- engine: Execution context, step specs, conditional evaluation, budget guard, runner
- steps: Step kind registry and executors (task, validate, llm_call, stream)
- scoring: Deterministic lead scoring calculator
- workflows: Form workflow definitions and trigger entry points
"""
