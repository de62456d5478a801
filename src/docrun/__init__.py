"""docrun package.

Simple API for scripts and CI jobs:

    import docrun

    # Run every step found in ./docs, skipping the ones already satisfied
    result = docrun.run("/path/to/project")

    # Just list them
    steps = docrun.list_steps("/path/to/project")
"""

from pathlib import Path
from typing import Iterable, Optional

__version__ = "0.1.0"

from .config import RunConfig, load_project_config
from .orchestrator import SessionResult, load_steps, run_docs


def _config(root: str | Path, **kwargs) -> RunConfig:
    root_path = Path(root).resolve()
    return RunConfig(root=root_path, project=load_project_config(root_path), **kwargs)


def run(
    root: str | Path,
    *,
    force: bool = False,
    skip: Iterable[str] = (),
    env_file: Optional[str | Path] = None,
    local_override: Optional[str | Path] = None,
) -> dict:
    """Run the documentation steps of a project. Returns structured result.

    Returns:
        dict with keys: status, ran, skipped, failed, failed_step, status_file
    """
    cfg = _config(
        root,
        force=force,
        skip=tuple(skip),
        env_file=Path(env_file) if env_file else None,
        local_override=Path(local_override) if local_override else None,
    )
    result = run_docs(cfg)
    summary = result.summary
    failure = summary.failure if summary else None
    return {
        "status": result.status,
        "ran": summary.ran if summary else 0,
        "skipped": summary.skipped if summary else 0,
        "failed": summary.failed if summary else 0,
        "failed_step": failure.id if failure else None,
        "status_file": str(result.status_file) if result.status_file else None,
    }


def list_steps(root: str | Path) -> list[dict]:
    """Ordered steps of a project as plain dicts (id, source, order)."""
    return [
        {"id": s.id, "source": s.source, "order": s.order}
        for s in load_steps(_config(root)).list()
    ]


__all__ = [
    "run",
    "list_steps",
    "RunConfig",
    "SessionResult",
    "run_docs",
    "__version__",
]
