from __future__ import annotations

"""Step registry.

CONTRACT
- Inputs: Step objects produced by the extractor, in scan order
- Outputs (required):
  - list() -> steps ordered by first appearance
  - lookup(id) -> Step
- Invariants:
  - Step ids are unique within the registry
  - Re-adding an id replaces body/source but keeps the first order position
- Failure:
  - lookup() raises StepNotFound
"""

from dataclasses import dataclass, replace
from typing import Iterator

from loguru import logger

from .errors import StepNotFound


@dataclass(frozen=True)
class Step:
    id: str
    source: str
    body: str
    order: int


class StepRegistry:
    def __init__(self) -> None:
        self._steps: dict[str, Step] = {}
        self._next_order = 0

    def add(self, step_id: str, source: str, body: str) -> Step:
        existing = self._steps.get(step_id)
        if existing is not None:
            logger.warning(
                f"Step '{step_id}' redefined in {source} (first seen in {existing.source}); "
                "keeping first position, using new body."
            )
            step = replace(existing, source=source, body=body)
        else:
            step = Step(id=step_id, source=source, body=body, order=self._next_order)
            self._next_order += 1
        self._steps[step_id] = step
        return step

    def list(self) -> list[Step]:
        return sorted(self._steps.values(), key=lambda s: s.order)

    def lookup(self, step_id: str) -> Step:
        try:
            return self._steps[step_id]
        except KeyError:
            raise StepNotFound(step_id) from None

    def ids(self) -> list[str]:
        return [s.id for s in self.list()]

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._steps

    def __iter__(self) -> Iterator[Step]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self._steps)
