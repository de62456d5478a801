from __future__ import annotations

"""Orchestrator for documentation runs.

CONTRACT
- Inputs: RunConfig (root, docs/artifacts dirs, force/skip/env-file/override)
- Outputs (required):
  - SessionResult(status, summary, steps)
  - Artifacts in <root>/artifacts/: env, events.jsonl, RUN_STATUS.json, logs/
- Invariants:
  - Steps are extracted before anything touches the environment store
  - List mode and status mode never execute a step body nor write the store
  - Forced runs truncate the store before importing overlays
  - RUN_STATUS.json is written for every executed run, passing or failing
- Failure:
  - ExtractionError / EnvFileNotFound / ConfigError / FileNotFoundError
    propagate before any step runs
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from loguru import logger

from .artifacts.schemas import RunStatus, StepRecord
from .artifacts.store import ArtifactStore
from .checks.base import CheckRegistry, CheckResult
from .checks.builtin import default_checks
from .config import LocalOverride, RunConfig, load_local_override
from .envstore import EnvironmentStore
from .errors import EnvFileNotFound
from .executor import RunSummary, StepExecutor
from .extract import extract_steps
from .registry import Step, StepRegistry
from .report import Reporter
from .util.events import EventLog

Kind = Literal["check", "action", "skip"]


@dataclass(frozen=True)
class StepListing:
    order: int
    id: str
    source: str
    kind: Kind


@dataclass(frozen=True)
class SessionResult:
    status: str
    steps: list[Step] = field(default_factory=list)
    summary: RunSummary | None = None
    status_file: Path | None = None


def load_steps(cfg: RunConfig) -> StepRegistry:
    return extract_steps(cfg.docs_dir, cfg.project.fence_languages)


def _override(cfg: RunConfig) -> LocalOverride:
    return load_local_override(cfg.local_override) if cfg.local_override else LocalOverride()


def skip_set(cfg: RunConfig, override: LocalOverride | None = None) -> frozenset[str]:
    override = override if override is not None else _override(cfg)
    return frozenset(cfg.skip) | frozenset(override.skip)


def describe_steps(
    registry: StepRegistry, checks: CheckRegistry, skip: frozenset[str] = frozenset()
) -> list[StepListing]:
    rows: list[StepListing] = []
    for step in registry.list():
        if step.id in skip:
            kind: Kind = "skip"
        elif checks.has_check(step.id):
            kind = "check"
        else:
            kind = "action"
        rows.append(StepListing(step.order, step.id, step.source, kind))
    return rows


def open_store(cfg: RunConfig, artifacts: ArtifactStore, override: LocalOverride) -> EnvironmentStore:
    """Open the durable store. Inputs are checked before a forced reset truncates it."""
    if cfg.env_file is not None and not cfg.env_file.is_file():
        raise EnvFileNotFound(f"Env file not found: {cfg.env_file}")
    store = EnvironmentStore(artifacts.env_path)
    if cfg.force:
        store.reset()
    store.load()
    if cfg.env_file is not None:
        store.import_file(cfg.env_file)
    for line in override.env:
        store.record(line)
    return store


def _status_model(cfg: RunConfig, summary: RunSummary) -> RunStatus:
    failure = summary.failure
    return RunStatus(
        mode="docs",
        status="OK" if summary.ok else "FAIL",
        forced=cfg.force,
        ran=summary.ran,
        skipped=summary.skipped,
        failed=summary.failed,
        failed_step=failure.id if failure else None,
        failed_stage=failure.stage if failure else None,
        message=failure.message if failure else "",
        steps=[
            StepRecord(
                id=r.id,
                source=r.source,
                outcome=r.outcome.value,
                stage=r.stage,
                observations=list(r.observations or (r.check.rendered() if r.check else [])),
            )
            for r in summary.results
        ],
    )


def run_docs(
    cfg: RunConfig,
    *,
    checks: CheckRegistry | None = None,
    reporter: Reporter | None = None,
    stream: bool = True,
) -> SessionResult:
    reporter = reporter or Reporter(verbose=cfg.verbose)
    checks = checks if checks is not None else default_checks()

    registry = load_steps(cfg)
    if cfg.list_only:
        return SessionResult(status="LISTED", steps=registry.list())

    override = _override(cfg)
    artifacts = ArtifactStore(cfg.artifacts_dir)
    artifacts.ensure()
    store = open_store(cfg, artifacts, override)

    events = EventLog(artifacts.events_path, session="docs")
    events.emit("start", steps=len(registry), forced=cfg.force, root=str(cfg.root))
    artifacts.write_status(RunStatus(status="RUNNING", forced=cfg.force))

    reporter.info("Running documentation steps...")
    reporter.console.print()
    executor = StepExecutor(
        store,
        checks,
        cfg.root,
        force=cfg.force,
        skip=skip_set(cfg, override),
        artifacts=artifacts,
        reporter=reporter,
        events=events,
        stream=stream,
    )
    summary = executor.run(registry.list())
    reporter.summary(summary.ran, summary.skipped, summary.failed)

    status = _status_model(cfg, summary)
    status_file = artifacts.write_status(status)
    events.emit("finish", status=status.status, ran=summary.ran, skipped=summary.skipped, failed=summary.failed)
    logger.debug(f"run finished: {status.status}")
    return SessionResult(status=status.status, steps=registry.list(), summary=summary, status_file=status_file)


def check_status(
    cfg: RunConfig, *, checks: CheckRegistry | None = None
) -> list[tuple[Step, CheckResult | None]]:
    """Evaluate every step's check against the store plus preceding exports.

    Nothing is executed and nothing is written.
    """
    checks = checks if checks is not None else default_checks()
    registry = load_steps(cfg)
    artifacts = ArtifactStore(cfg.artifacts_dir)
    scratch = EnvironmentStore(artifacts.env_path).load().fork()
    for line in _override(cfg).env:
        scratch.record(line)

    rows: list[tuple[Step, CheckResult | None]] = []
    for step in registry.list():
        scratch.record_exports(step.body)
        if checks.has_check(step.id):
            env = scratch.as_environ(cwd=cfg.root)
            rows.append((step, checks.check(step.id, env, cfg.root)))
        else:
            rows.append((step, None))
    return rows
