from __future__ import annotations

"""Idempotent lifecycle driver for coarse external resources.

CONTRACT
- Inputs: fixed ordered list of Resource(name, action, check), optional destroy hook
- Outputs (required):
  - RunSummary with one result per resource reached (+ "handoff" when given)
- Invariants:
  - Same check -> act -> validate triple as StepExecutor (shared CheckedRunner)
  - force=True calls destroy() first and bypasses preconditions
  - The handoff runs only when every resource converged
- Failure:
  - First failing resource stops the list; handoff is not attempted
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .checks.base import CheckFn, CheckRegistry
from .errors import ExecutionFailure
from .executor import Action, CheckedRunner, Outcome, RunSummary, StepResult
from .report import Reporter
from .util.events import EventLog


@dataclass(frozen=True)
class Resource:
    name: str
    action: Action
    check: CheckFn | None = None


class LifecycleDriver(CheckedRunner[Resource]):
    def __init__(
        self,
        resources: Sequence[Resource],
        root: Path,
        *,
        force: bool = False,
        destroy: Callable[[], None] | None = None,
        env: Mapping[str, str] | None = None,
        source: str = "lifecycle",
        reporter: Reporter | None = None,
        events: EventLog | None = None,
    ):
        checks = CheckRegistry({r.name: r.check for r in resources if r.check is not None})
        super().__init__(checks, root, force=force, reporter=reporter, events=events)
        self.resources = list(resources)
        self.destroy = destroy
        self.source = source
        self._env = dict(env) if env is not None else None

    def env(self) -> Mapping[str, str]:
        return self._env if self._env is not None else super().env()

    def describe(self, unit: Resource) -> tuple[str, str]:
        return unit.name, self.source

    def process(self, unit: Resource) -> StepResult:
        return self.advance(unit.name, self.source, unit.action)

    def run(self, handoff: Callable[[], int] | None = None) -> RunSummary:
        if self.force and self.destroy is not None:
            self.destroy()
        summary = self.run_all(self.resources)
        if handoff is None or not summary.ok:
            return summary
        rc = handoff()
        if rc == 0:
            summary.results.append(StepResult("handoff", self.source, Outcome.RAN))
        else:
            failure = ExecutionFailure("handoff", self.source, rc)
            summary.results.append(
                StepResult("handoff", self.source, Outcome.FAILED, stage=failure.stage, message=str(failure))
            )
        return summary

