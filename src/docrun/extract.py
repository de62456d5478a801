from __future__ import annotations

"""Document step extraction.

CONTRACT
- Inputs: Ordered documents (name + lines), or a docs directory of *.md files
- Outputs (required):
  - StepRegistry holding one Step per `<!-- step: ID -->` + fenced block pair
- Invariants:
  - Documents are scanned in lexical path order
  - Unmarked executable blocks accumulate as preamble and are prepended to the
    next marked block of the same document; leftover preamble is dropped at
    end of document
  - A marker binds to the first executable block after it, then resets
  - Blocks fenced with a non-executable language are ignored entirely
- Failure:
  - Raises ExtractionError for unreadable files, a missing docs directory or
    an unterminated executable block
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from .errors import ExtractionError
from .registry import StepRegistry

STEP_MARKER_RE = re.compile(r"^<!-- step: ([A-Za-z0-9_-]+) -->$")
FENCE_OPEN_RE = re.compile(r"^```\s*([A-Za-z0-9_+-]*)\s*$")
FENCE_CLOSE = "```"

DEFAULT_FENCE_LANGUAGES = ("bash",)


@dataclass(frozen=True)
class Document:
    name: str
    lines: Sequence[str]


@dataclass
class _ScanState:
    current_id: str = ""
    preamble: list[str] = field(default_factory=list)
    block: list[str] = field(default_factory=list)
    collecting: bool = False
    in_foreign_fence: bool = False
    block_start: int = 0


class StepExtractor:
    def __init__(self, fence_languages: Iterable[str] = DEFAULT_FENCE_LANGUAGES):
        self.fence_languages = frozenset(fence_languages)

    def extract(self, documents: Iterable[Document]) -> StepRegistry:
        registry = StepRegistry()
        for doc in documents:
            self._scan(doc, registry)
        return registry

    def _scan(self, doc: Document, registry: StepRegistry) -> None:
        st = _ScanState()
        for lineno, raw in enumerate(doc.lines, start=1):
            line = raw.rstrip("\r\n")
            stripped = line.rstrip()

            if st.collecting:
                if stripped == FENCE_CLOSE:
                    self._close_block(doc, st, registry)
                else:
                    st.block.append(line)
                continue

            if st.in_foreign_fence:
                if stripped == FENCE_CLOSE:
                    st.in_foreign_fence = False
                continue

            marker = STEP_MARKER_RE.match(stripped)
            if marker:
                st.current_id = marker.group(1)
                continue

            fence = FENCE_OPEN_RE.match(stripped)
            if fence:
                if fence.group(1) in self.fence_languages:
                    st.collecting = True
                    st.block = []
                    st.block_start = lineno
                else:
                    st.in_foreign_fence = True

        if st.collecting:
            raise ExtractionError(
                f"{doc.name}:{st.block_start}: unterminated code block"
            )

    def _close_block(self, doc: Document, st: _ScanState, registry: StepRegistry) -> None:
        st.collecting = False
        if st.current_id:
            body = "\n".join(st.preamble + st.block)
            registry.add(st.current_id, doc.name, body)
            st.preamble = []
            st.current_id = ""
        else:
            st.preamble.extend(st.block)
        st.block = []


def read_documents(docs_dir: Path, pattern: str = "*.md") -> list[Document]:
    if not docs_dir.is_dir():
        raise ExtractionError(f"Docs directory not found: {docs_dir}")
    docs: list[Document] = []
    for path in sorted(p for p in docs_dir.glob(pattern) if p.is_file()):
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ExtractionError(f"Cannot read {path}: {exc}") from exc
        docs.append(Document(name=path.name, lines=text.splitlines()))
    return docs


def extract_steps(
    docs_dir: Path,
    fence_languages: Iterable[str] = DEFAULT_FENCE_LANGUAGES,
) -> StepRegistry:
    return StepExtractor(fence_languages).extract(read_documents(docs_dir))


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="List steps found in a docs directory")
    parser.add_argument("--docs", default="docs", help="Docs directory")
    args = parser.parse_args()

    try:
        for step in extract_steps(Path(args.docs)):
            print(f"{step.order:3d}  {step.id}  ({step.source})")
    except ExtractionError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
