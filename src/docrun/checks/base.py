from __future__ import annotations

"""Precondition/postcondition registry.

CONTRACT
- Inputs: explicit id -> check function table, materialized environment
- Outputs (required):
  - has_check(id) -> bool
  - check(id, env) -> CheckResult(satisfied, reason, observations)
- Invariants:
  - An id without a registered function is an action step (always runs)
  - The same function serves as precondition and postcondition
  - Observations are informational only; satisfaction is the return value
- Failure:
  - An exception inside a check becomes CheckError, reported as unsatisfied
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping

from loguru import logger

from ..errors import CheckError
from ..util.shell import CmdResult, run_cmd, which


@dataclass(frozen=True)
class Observation:
    ok: bool
    text: str

    def render(self) -> str:
        return f"{'✓' if self.ok else '✗'} {self.text}"


@dataclass(frozen=True)
class CheckResult:
    satisfied: bool
    reason: str = ""
    observations: tuple[Observation, ...] = ()

    @classmethod
    def ok(cls, observations: tuple[Observation, ...] = ()) -> "CheckResult":
        return cls(True, "", observations)

    @classmethod
    def unsatisfied(cls, reason: str, observations: tuple[Observation, ...] = ()) -> "CheckResult":
        return cls(False, reason, observations)

    def rendered(self) -> list[str]:
        return [o.render() for o in self.observations]


@dataclass
class CheckContext:
    """What a check function sees: the environment and a few probes."""

    env: Mapping[str, str]
    root: Path
    observations: list[Observation] = field(default_factory=list)

    def ok(self, text: str) -> bool:
        self.observations.append(Observation(True, text))
        return True

    def fail(self, text: str) -> bool:
        self.observations.append(Observation(False, text))
        return False

    def getenv(self, name: str, default: str = "") -> str:
        return self.env.get(name, default)

    def which(self, cmd: str) -> str | None:
        return which(cmd, self.env)

    def run(self, cmd: str | list[str], timeout_s: float = 30) -> CmdResult:
        return run_cmd(cmd, cwd=self.root, env=self.env, timeout_s=timeout_s)

    def output(self, cmd: str | list[str], timeout_s: float = 30) -> str | None:
        """stdout+stderr of a command, or None if it exited non-zero."""
        res = self.run(cmd, timeout_s=timeout_s)
        if not res.ok:
            return None
        return (res.stdout_text + res.stderr_text).strip()


CheckFn = Callable[[CheckContext], bool]


class CheckRegistry:
    def __init__(self, checks: Mapping[str, CheckFn] | None = None):
        self._checks: dict[str, CheckFn] = dict(checks or {})

    def register(self, step_id: str) -> Callable[[CheckFn], CheckFn]:
        def deco(fn: CheckFn) -> CheckFn:
            self.add(step_id, fn)
            return fn
        return deco

    def add(self, step_id: str, fn: CheckFn) -> None:
        self._checks[step_id] = fn

    def has_check(self, step_id: str) -> bool:
        return step_id in self._checks

    def ids(self) -> list[str]:
        return list(self._checks)

    def copy(self) -> "CheckRegistry":
        return CheckRegistry(self._checks)

    def check(self, step_id: str, env: Mapping[str, str], root: Path | None = None) -> CheckResult:
        fn = self._checks.get(step_id)
        if fn is None:
            return CheckResult.unsatisfied("no check registered")
        ctx = CheckContext(env=env, root=root or Path.cwd())
        try:
            satisfied = bool(fn(ctx))
        except Exception as exc:
            err = CheckError(step_id, exc)
            logger.warning(str(err))
            ctx.fail(f"check errored: {exc}")
            return CheckResult.unsatisfied(str(err), tuple(ctx.observations))
        if satisfied:
            return CheckResult.ok(tuple(ctx.observations))
        failed = [o.text for o in ctx.observations if not o.ok]
        reason = failed[-1] if failed else "check reported unsatisfied"
        return CheckResult.unsatisfied(reason, tuple(ctx.observations))
