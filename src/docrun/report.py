from __future__ import annotations

"""Operator-facing console output.

Tags: [INFO] [CHECK] [RUN] [SKIP] [DONE] [FAIL].
"""

from dataclasses import dataclass, field
from typing import Iterable

from rich.console import Console
from rich.markup import escape

RULE = "─" * 40


@dataclass
class Reporter:
    console: Console = field(default_factory=Console)
    verbose: bool = False

    def _tag(self, style: str, tag: str, text: str) -> None:
        self.console.print(f"[{style}]{escape(f'[{tag}]')}[/{style}] {escape(text)}", highlight=False)

    def info(self, text: str) -> None:
        self._tag("blue", "INFO", text)

    def check(self, name: str) -> None:
        if self.verbose:
            self._tag("bright_black", "CHECK", name)

    def run(self, name: str, source: str | None = None) -> None:
        self._tag("yellow", "RUN", f"{name} ({source})" if source else name)

    def skip(self, name: str, source: str | None = None, why: str = "") -> None:
        label = f"{name} ({source})" if source else name
        self._tag("bright_black", "SKIP", f"{label} {why}".rstrip())

    def done(self, name: str) -> None:
        self._tag("green", "DONE", name)

    def fail(self, text: str) -> None:
        self._tag("red", "FAIL", text)

    def warn(self, text: str) -> None:
        self._tag("bright_black", "WARN", text)

    def observations(self, lines: Iterable[str]) -> None:
        for line in lines:
            style = "green" if line.startswith("✓") else "red"
            mark, _, rest = line.partition(" ")
            self.console.print(f"        [{style}]{mark}[/{style}] {escape(rest)}", highlight=False)

    def command(self, body: str) -> None:
        if not self.verbose:
            return
        self.console.print(RULE, style="bright_black", highlight=False)
        self.console.print(escape(body), style="bright_black", highlight=False)
        self.console.print(RULE, style="bright_black", highlight=False)

    def banner(self, text: str) -> None:
        self.console.print()
        self.console.print(RULE, style="bright_black", highlight=False)
        self.console.print(escape(text), style="bright_black", highlight=False)
        self.console.print(RULE, style="bright_black", highlight=False)

    def summary(self, ran: int, skipped: int, failed: int) -> None:
        self.console.print()
        self.info(f"Summary: {ran} completed, {skipped} skipped, {failed} failed")
