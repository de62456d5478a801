from __future__ import annotations

"""Artifact schemas.

CONTRACT
- Inputs: Pydantic models
- Outputs:
  - Validated JSON-serializable objects (RUN_STATUS.json)
- Invariants:
  - All schemas have schema_version int field
- Failure:
  - Raises ValidationError on schema mismatch
"""

from typing import Literal

from pydantic import BaseModel, Field


class StepRecord(BaseModel):
    schema_version: int = 1
    id: str
    source: str
    outcome: Literal["skipped", "ran", "failed"]
    stage: Literal["execution", "postcondition"] | None = None
    observations: list[str] = Field(default_factory=list)


class RunStatus(BaseModel):
    schema_version: int = 1
    mode: Literal["docs", "vm"] = "docs"
    status: Literal["RUNNING", "OK", "FAIL"]
    forced: bool = False
    ran: int = 0
    skipped: int = 0
    failed: int = 0
    failed_step: str | None = None
    failed_stage: Literal["execution", "postcondition"] | None = None
    message: str = ""
    steps: list[StepRecord] = Field(default_factory=list)

