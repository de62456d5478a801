"""CLI entrypoint.

Primary mode:
- docrun run ...        (also the default when no command is given)

Utilities:
- docrun status
- docrun vm run / docrun vm destroy
- docrun emulator stop

CONTRACT
- Inputs: Command line arguments (parsed by Typer)
- Outputs (required):
  - Exit code 0 on success or list mode, 1 on step failure or missing input
  - Console output (stdout) describing progress/results
- Invariants:
  - Configuration is resolved once (RunConfig) and handed to the orchestrator
  - List mode never executes a step
- Failure:
  - Engine errors are printed and mapped to exit code 1
"""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .checks.builtin import default_checks
from .config import RunConfig, load_project_config, parse_skip
from .errors import DocrunError
from .orchestrator import check_status, describe_steps, load_steps, run_docs, skip_set
from .report import Reporter
from .util.paths import find_project_root

app = typer.Typer(add_completion=False, help="Run the command blocks embedded in your docs, idempotently.")
vm_app = typer.Typer(add_completion=False, help="Provision a VM and run the docs inside it.")
emulator_app = typer.Typer(add_completion=False, help="Android emulator helpers.")
app.add_typer(vm_app, name="vm")
app.add_typer(emulator_app, name="emulator")

console = Console()

MODE_LABELS = {
    "check": "skip if satisfied",
    "action": "always runs",
    "skip": "skipped (--skip)",
}

_ROOT_OPTION = typer.Option(
    None,
    "--root",
    help="Project root (default: nearest dir with docrun.yaml or docs/).",
)
_DOCS_DIR_OPTION = typer.Option(
    None,
    "--docs-dir",
    help="Docs directory (default: <root>/docs).",
)
_FORCE_OPTION = typer.Option(
    False,
    "--force",
    help="Reset the environment store and re-run every step.",
)
_LIST_OPTION = typer.Option(
    False,
    "--list",
    help="List all steps without running.",
)
_SKIP_OPTION = typer.Option(
    None,
    "--skip",
    help="Comma-separated step ids to skip without checking.",
)
_ENV_FILE_OPTION = typer.Option(
    None,
    "--env-file",
    help="Env file appended to the store before running.",
)
_LOCAL_OVERRIDE_OPTION = typer.Option(
    None,
    "--local-override",
    help="YAML overlay (env lines + skip ids) for a locally built toolchain.",
)
_VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Show code blocks being executed.",
)


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _version_callback(value: bool):
    if value:
        console.print(f"docrun version: {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version."
    ),
    root: Path | None = _ROOT_OPTION,
    docs_dir: Path | None = _DOCS_DIR_OPTION,
    force: bool = _FORCE_OPTION,
    list_only: bool = _LIST_OPTION,
    skip: str | None = _SKIP_OPTION,
    env_file: Path | None = _ENV_FILE_OPTION,
    local_override: Path | None = _LOCAL_OVERRIDE_OPTION,
    verbose: bool = _VERBOSE_OPTION,
):
    """Without a command, behaves as `docrun run` and accepts the same options."""
    if ctx.invoked_subcommand is None:
        run(
            root=root,
            docs_dir=docs_dir,
            force=force,
            list_only=list_only,
            skip=skip,
            env_file=env_file,
            local_override=local_override,
            verbose=verbose,
        )


def build_config(
    root: Path | None = None,
    docs_dir: Path | None = None,
    *,
    force: bool = False,
    list_only: bool = False,
    verbose: bool = False,
    skip: str | None = None,
    env_file: Path | None = None,
    local_override: Path | None = None,
) -> RunConfig:
    _configure_logging(verbose)
    resolved = (root or find_project_root(Path.cwd())).resolve()
    try:
        project = load_project_config(resolved)
    except DocrunError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    if docs_dir is not None:
        project = replace(project, docs_dir=docs_dir.resolve())
    return RunConfig(
        root=resolved,
        project=project,
        force=force,
        list_only=list_only,
        verbose=verbose,
        skip=parse_skip(skip),
        env_file=env_file,
        local_override=local_override,
    )


def _print_listing(cfg: RunConfig) -> None:
    registry = load_steps(cfg)
    rows = describe_steps(registry, default_checks(), skip_set(cfg))
    table = Table(title="Available steps")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Source")
    table.add_column("Mode")
    for row in rows:
        table.add_row(str(row.order + 1), row.id, row.source, MODE_LABELS[row.kind])
    console.print(table)


def _run(cfg: RunConfig) -> None:
    try:
        if cfg.list_only:
            _print_listing(cfg)
            return
        result = run_docs(cfg, reporter=Reporter(console=console, verbose=cfg.verbose))
    except (DocrunError, FileNotFoundError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    if result.status != "OK":
        raise typer.Exit(code=1)


@app.command()
def run(
    root: Path | None = _ROOT_OPTION,
    docs_dir: Path | None = _DOCS_DIR_OPTION,
    force: bool = _FORCE_OPTION,
    list_only: bool = _LIST_OPTION,
    skip: str | None = _SKIP_OPTION,
    env_file: Path | None = _ENV_FILE_OPTION,
    local_override: Path | None = _LOCAL_OVERRIDE_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Run documentation steps (incremental: satisfied steps are skipped)."""
    cfg = build_config(
        root,
        docs_dir,
        force=force,
        list_only=list_only,
        verbose=verbose,
        skip=skip,
        env_file=env_file,
        local_override=local_override,
    )
    _run(cfg)


@app.command()
def status(
    root: Path | None = _ROOT_OPTION,
    docs_dir: Path | None = _DOCS_DIR_OPTION,
    local_override: Path | None = _LOCAL_OVERRIDE_OPTION,
) -> None:
    """Evaluate every step's check without running anything."""
    cfg = build_config(root, docs_dir, local_override=local_override)
    try:
        rows = check_status(cfg)
    except (DocrunError, FileNotFoundError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)

    table = Table(title="docrun status")
    table.add_column("Step")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Details")
    for step, result in rows:
        if result is None:
            table.add_row(step.id, step.source, "ACTION", "always runs")
        else:
            table.add_row(
                step.id,
                step.source,
                "OK" if result.satisfied else "TODO",
                "\n".join(result.rendered()),
            )
    console.print(table)


@vm_app.command("run")
def vm_run(
    root: Path | None = _ROOT_OPTION,
    force: bool = typer.Option(False, "--force", help="Fresh VM and re-run all steps."),
    list_only: bool = _LIST_OPTION,
    skip: str | None = _SKIP_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Provision (or reuse) the VM, sync the project and run the docs inside it."""
    from .vm import run_in_vm

    cfg = build_config(root, force=force, list_only=list_only, verbose=verbose, skip=skip)
    if cfg.list_only:
        _run(cfg)
        return
    summary = run_in_vm(cfg, reporter=Reporter(console=console, verbose=verbose))
    if not summary.ok:
        raise typer.Exit(code=1)


@vm_app.command("destroy")
def vm_destroy(root: Path | None = _ROOT_OPTION) -> None:
    """Destroy the VM and its disk."""
    from .vm import VmProvisioner

    cfg = build_config(root)
    VmProvisioner(cfg.project.vm, cfg.root, cfg.artifacts_dir, Reporter(console=console)).destroy()


@emulator_app.command("stop")
def emulator_stop(
    force: bool = typer.Option(False, "--force", help="Kill immediately without graceful shutdown."),
) -> None:
    """Stop the Android emulator if it is running."""
    from .emulator import stop_emulator

    stop_emulator(force=force, reporter=Reporter(console=console))


if __name__ == "__main__":
    app()
