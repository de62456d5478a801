from __future__ import annotations

"""Configuration models.

CONTRACT
- Inputs: CLI flags, optional docrun.yaml at the project root, optional
  local-override YAML file
- Outputs (required):
  - Validated RunConfig, ProjectConfig, VmConfig, LocalOverride objects
- Invariants:
  - Relative paths in docrun.yaml resolve against the project root
  - Defaults reproduce the stock layout (docs/, artifacts/, ```bash blocks)
- Failure:
  - Raises ConfigError on invalid schema
  - Raises FileNotFoundError for a missing override file
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

PROJECT_FILE = "docrun.yaml"


@dataclass(frozen=True)
class VmConfig:
    name: str = "nativeaot-test-25.10"
    image_url: str = "https://cloud-images.ubuntu.com/questing/current/questing-server-cloudimg-amd64.img"
    image_name: str = "ubuntu-25.10.img"
    os_variant: str = "ubuntu25.10"
    memory_mb: int = 16384
    cpus: int = 4
    disk_size: str = "50G"
    ssh_port: int = 2222
    ssh_user: str = "ubuntu"
    connect: str = "qemu:///session"
    ssh_attempts: int = 60
    ssh_interval_s: float = 5.0
    remote_dir: str = "~/docrun-project"
    guest_venv: str = "/opt/docrun/venv"
    guest_src: str = ".docrun/src"
    # Empty: run the docrun package synced into guest_src with guest_venv.
    remote_command: str = ""
    rsync_excludes: tuple[str, ...] = (".git", "artifacts", "bin", "obj")


@dataclass(frozen=True)
class ProjectConfig:
    docs_dir: Path
    artifacts_dir: Path
    fence_languages: tuple[str, ...] = ("bash",)
    vm: VmConfig = field(default_factory=VmConfig)


@dataclass(frozen=True)
class LocalOverride:
    env: tuple[str, ...] = ()
    skip: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunConfig:
    root: Path
    project: ProjectConfig
    force: bool = False
    list_only: bool = False
    verbose: bool = False
    skip: tuple[str, ...] = ()
    env_file: Path | None = None
    local_override: Path | None = None

    @property
    def docs_dir(self) -> Path:
        return self.project.docs_dir

    @property
    def artifacts_dir(self) -> Path:
        return self.project.artifacts_dir


PROJECT_SCHEMA = {
    "type": "object",
    "properties": {
        "docs_dir": {"type": "string"},
        "artifacts_dir": {"type": "string"},
        "fence_languages": {
            "type": "array",
            "items": {"type": "string", "pattern": "^[A-Za-z0-9_+-]+$"},
            "minItems": 1,
        },
        "vm": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "pattern": "^[A-Za-z0-9][A-Za-z0-9_.-]*$"},
                "image_url": {"type": "string"},
                "image_name": {"type": "string"},
                "os_variant": {"type": "string"},
                "memory_mb": {"type": "integer", "minimum": 512},
                "cpus": {"type": "integer", "minimum": 1},
                "disk_size": {"type": "string"},
                "ssh_port": {"type": "integer", "minimum": 1, "maximum": 65535},
                "ssh_user": {"type": "string"},
                "connect": {"type": "string"},
                "ssh_attempts": {"type": "integer", "minimum": 1},
                "ssh_interval_s": {"type": "number", "minimum": 0},
                "remote_dir": {"type": "string"},
                "guest_venv": {"type": "string"},
                "guest_src": {"type": "string"},
                "remote_command": {"type": "string"},
                "rsync_excludes": {"type": "array", "items": {"type": "string"}},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}

OVERRIDE_SCHEMA = {
    "type": "object",
    "properties": {
        "env": {
            "oneOf": [
                {"type": "array", "items": {"type": "string"}},
                {"type": "object", "additionalProperties": {"type": ["string", "number"]}},
            ]
        },
        "skip": {"type": "array", "items": {"type": "string", "pattern": "^[A-Za-z0-9_-]+$"}},
    },
    "additionalProperties": False,
}


def _validate(data: Any, schema: dict[str, Any], what: str) -> None:
    import jsonschema  # lazy import

    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        raise ConfigError(f"Invalid {what}: {e.message}") from e


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e


def load_project_config(root: Path) -> ProjectConfig:
    path = root / PROJECT_FILE
    data = _read_yaml(path) if path.exists() else {}
    _validate(data, PROJECT_SCHEMA, PROJECT_FILE)

    vm_raw = dict(data.get("vm", {}) or {})
    if "rsync_excludes" in vm_raw:
        vm_raw["rsync_excludes"] = tuple(vm_raw["rsync_excludes"])
    return ProjectConfig(
        docs_dir=root / str(data.get("docs_dir", "docs")),
        artifacts_dir=root / str(data.get("artifacts_dir", "artifacts")),
        fence_languages=tuple(data.get("fence_languages", ["bash"])),
        vm=VmConfig(**vm_raw),
    )


def load_local_override(path: Path) -> LocalOverride:
    """Overlay for a locally built toolchain.

    `env` lines are appended to the environment store; `skip` ids are
    skipped without consulting their checks.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Local override not found: {path}")
    data = _read_yaml(path)
    _validate(data, OVERRIDE_SCHEMA, f"local override {path}")

    env_raw = data.get("env", []) or []
    if isinstance(env_raw, dict):
        env = tuple(f"export {k}={v}" for k, v in env_raw.items())
    else:
        env = tuple(
            line if line.startswith("export ") else f"export {line}"
            for line in (str(item).strip() for item in env_raw)
            if line
        )
    return LocalOverride(env=env, skip=tuple(data.get("skip", []) or []))


def parse_skip(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(s.strip() for s in value.split(",") if s.strip())
