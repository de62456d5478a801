from __future__ import annotations

"""Run event journal.

CONTRACT
- Inputs: stage name plus arbitrary kwargs
- Outputs:
  - Appends one JSON line per event to artifacts/events.jsonl
- Invariants:
  - Adds `ts_ms` timestamp and the session mode automatically
  - Opened in append mode; earlier runs are never rewritten
- Failure:
  - Raises OSError if the journal path is not writable
"""

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass
class EventLog:
    path: Path
    session: str | None = None

    def emit(self, stage: str, **event: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        record: dict[str, Any] = {"ts_ms": int(time.time() * 1000), "stage": stage}
        if self.session:
            record["session"] = self.session
        record.update(event)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]
