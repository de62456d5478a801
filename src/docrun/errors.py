from __future__ import annotations

"""Error taxonomy.

CONTRACT
- Outputs:
  - DocrunError base class and one subclass per failure family
- Invariants:
  - ExtractionError is raised before any step executes
  - ExecutionFailure / PostconditionFailure carry step id, source and observations
  - CheckError never escapes CheckRegistry.check (converted to unsatisfied)
"""


class DocrunError(Exception):
    """Base class for engine errors."""


class ConfigError(DocrunError, ValueError):
    pass


class ExtractionError(DocrunError):
    """Malformed or unreadable document."""


class StepNotFound(DocrunError, KeyError):
    def __init__(self, step_id: str):
        super().__init__(step_id)
        self.step_id = step_id

    def __str__(self) -> str:
        return f"Unknown step: {self.step_id}"


class EnvFileNotFound(DocrunError, FileNotFoundError):
    pass


class EnvSourceError(DocrunError):
    """bash could not source the environment store."""


class CheckError(DocrunError):
    """A check function raised instead of reporting unsatisfied."""

    def __init__(self, step_id: str, cause: BaseException):
        super().__init__(f"check for {step_id!r} errored: {cause}")
        self.step_id = step_id
        self.cause = cause


class StepFailure(DocrunError):
    stage = "execution"

    def __init__(
        self,
        step_id: str,
        source: str,
        message: str,
        observations: list[str] | None = None,
    ):
        super().__init__(f"{step_id} ({source}): {message}")
        self.step_id = step_id
        self.source = source
        self.observations = list(observations or [])


class ExecutionFailure(StepFailure):
    """Step body exited non-zero."""

    stage = "execution"

    def __init__(self, step_id: str, source: str, returncode: int, observations: list[str] | None = None):
        super().__init__(step_id, source, f"exited with status {returncode}", observations)
        self.returncode = returncode


class PostconditionFailure(StepFailure):
    """Step body succeeded but its check still reports unsatisfied."""

    stage = "postcondition"

    def __init__(self, step_id: str, source: str, reason: str, observations: list[str] | None = None):
        super().__init__(
            step_id, source, f"command succeeded but postcondition failed: {reason}", observations
        )
        self.reason = reason
