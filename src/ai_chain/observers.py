"""Step-completion sinks.

The executor notifies an observer once per step with the full
StepResult. Observers are side-effect only; they cannot change what
the executor returns.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ai_chain.models import StepResult


@runtime_checkable
class StepObserver(Protocol):
    def on_step_complete(self, result: StepResult) -> None: ...


class StepRecorder:
    """Observer that keeps every StepResult for inspection after a run."""

    def __init__(self) -> None:
        self.results: list[StepResult] = []

    def on_step_complete(self, result: StepResult) -> None:
        self.results.append(result)

    @property
    def failed(self) -> list[StepResult]:
        return [r for r in self.results if not r.ok]

    def clear(self) -> None:
        self.results.clear()
