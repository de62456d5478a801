from __future__ import annotations

"""Step executor (check -> run -> re-check state machine).

CONTRACT
- Inputs: ordered steps, EnvironmentStore, CheckRegistry, project root
- Outputs (required):
  - RunSummary(results, ran, skipped, failed)
  - artifacts/logs/<step>.stdout.log per executed step (when an ArtifactStore is given)
- Invariants:
  - Exports of a step are recorded before its skip/run decision
  - Satisfied precondition -> Skipped; body never runs
  - Ran only if exit status 0 and, when a check exists, the re-check is satisfied
  - Forced runs bypass the precondition but never the postcondition
  - Strictly sequential; the first failure stops the run
- Failure:
  - ExecutionFailure / PostconditionFailure are caught per step, recorded in
    the summary, and end the loop
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Generic, Iterable, Mapping, TypeVar

from loguru import logger

from .artifacts.store import ArtifactStore
from .checks.base import CheckRegistry, CheckResult
from .envstore import EnvironmentStore
from .errors import ExecutionFailure, PostconditionFailure, StepFailure
from .registry import Step
from .report import Reporter
from .util.events import EventLog
from .util.shell import run_script

U = TypeVar("U")


class Outcome(str, Enum):
    SKIPPED = "skipped"
    RAN = "ran"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    id: str
    source: str
    outcome: Outcome
    stage: str | None = None
    check: CheckResult | None = None
    message: str = ""
    observations: tuple[str, ...] = ()


@dataclass
class RunSummary:
    results: list[StepResult] = field(default_factory=list)

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def ran(self) -> int:
        return self._count(Outcome.RAN)

    @property
    def skipped(self) -> int:
        return self._count(Outcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAILED)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def failure(self) -> StepResult | None:
        return next((r for r in self.results if r.outcome is Outcome.FAILED), None)

    def outcome_of(self, unit_id: str) -> Outcome | None:
        return next((r.outcome for r in self.results if r.id == unit_id), None)


Action = Callable[[Mapping[str, str]], int]


class CheckedRunner(ABC, Generic[U]):
    """Shared check/act/validate loop.

    Subclasses provide `process(unit)`, which calls `advance()` with the unit's
    action. Used by StepExecutor for document steps and by LifecycleDriver for
    coarse external resources.
    """

    def __init__(
        self,
        checks: CheckRegistry,
        root: Path,
        *,
        force: bool = False,
        reporter: Reporter | None = None,
        events: EventLog | None = None,
    ):
        self.checks = checks
        self.root = root
        self.force = force
        self.reporter = reporter or Reporter()
        self.events = events

    def env(self) -> Mapping[str, str]:
        return dict(os.environ)

    def _emit(self, stage: str, **event) -> None:
        if self.events is not None:
            self.events.emit(stage, **event)

    def advance(self, unit_id: str, source: str, act: Action) -> StepResult:
        has_check = self.checks.has_check(unit_id)
        pre: CheckResult | None = None

        self.reporter.check(unit_id)
        if has_check and not self.force:
            pre = self.checks.check(unit_id, self.env(), self.root)
            self.reporter.observations(pre.rendered())
            if pre.satisfied:
                self.reporter.skip(unit_id, source)
                return StepResult(unit_id, source, Outcome.SKIPPED, check=pre)

        self.reporter.run(unit_id, source)
        observations = pre.rendered() if pre else []
        rc = act(self.env())
        if rc != 0:
            raise ExecutionFailure(unit_id, source, rc, observations)

        if not has_check:
            self.reporter.done(unit_id)
            return StepResult(unit_id, source, Outcome.RAN)

        post = self.checks.check(unit_id, self.env(), self.root)
        if not post.satisfied:
            self.reporter.observations(post.rendered())
            raise PostconditionFailure(unit_id, source, post.reason, post.rendered())
        self.reporter.done(unit_id)
        return StepResult(unit_id, source, Outcome.RAN, check=post)

    @abstractmethod
    def process(self, unit: U) -> StepResult:
        """Decide and act on one unit, usually by calling advance()."""

    @abstractmethod
    def describe(self, unit: U) -> tuple[str, str]:
        """(id, source) used for reporting."""

    def run_all(self, units: Iterable[U]) -> RunSummary:
        summary = RunSummary()
        for unit in units:
            unit_id, source = self.describe(unit)
            try:
                result = self.process(unit)
            except StepFailure as failure:
                result = StepResult(
                    unit_id,
                    source,
                    Outcome.FAILED,
                    stage=failure.stage,
                    message=str(failure),
                    observations=tuple(failure.observations),
                )
                summary.results.append(result)
                self._emit("step", id=unit_id, source=source, outcome="failed", failure_stage=failure.stage)
                self.reporter.fail(str(failure))
                self.reporter.fail("Stopping due to failure")
                logger.debug(f"run aborted at {unit_id}: {failure}")
                break
            summary.results.append(result)
            self._emit("step", id=unit_id, source=source, outcome=result.outcome.value)
        return summary


class StepExecutor(CheckedRunner[Step]):
    def __init__(
        self,
        store: EnvironmentStore,
        checks: CheckRegistry,
        root: Path,
        *,
        force: bool = False,
        skip: Iterable[str] = (),
        artifacts: ArtifactStore | None = None,
        reporter: Reporter | None = None,
        events: EventLog | None = None,
        base_env: Mapping[str, str] | None = None,
        stream: bool = True,
    ):
        super().__init__(checks, root, force=force, reporter=reporter, events=events)
        self.store = store
        self.skip = frozenset(skip)
        self.artifacts = artifacts
        self.base_env = dict(os.environ if base_env is None else base_env)
        self.stream = stream

    def env(self) -> Mapping[str, str]:
        return self.store.as_environ(self.base_env, cwd=self.root)

    def describe(self, unit: Step) -> tuple[str, str]:
        return unit.id, unit.source

    def process(self, unit: Step) -> StepResult:
        recorded = self.store.record_exports(unit.body)
        if recorded:
            logger.debug(f"{unit.id}: recorded {len(recorded)} export(s)")

        if unit.id in self.skip:
            self.reporter.skip(unit.id, unit.source, "(--skip)")
            return StepResult(unit.id, unit.source, Outcome.SKIPPED, message="skipped by request")

        def act(env: Mapping[str, str]) -> int:
            self.reporter.command(unit.body)
            stdout_path, stderr_path = (
                self.artifacts.step_logs(unit.id) if self.artifacts else (None, None)
            )
            res = run_script(
                unit.body,
                cwd=self.root,
                env=env,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
                stream=self.stream,
                trace=self.reporter.verbose,
            )
            return res.returncode

        return self.advance(unit.id, unit.source, act)

    def run(self, steps: Iterable[Step]) -> RunSummary:
        return self.run_all(steps)
