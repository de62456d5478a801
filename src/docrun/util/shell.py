from __future__ import annotations

"""Shell command execution.

CONTRACT
- Inputs: Command string or argv list, cwd, env overlay, timeout
- Outputs (required):
  - CmdResult(returncode, stdout_path, stderr_path)
- Invariants:
  - Writes stdout/stderr to specified files (temp files when not given)
  - Respects timeout_s (returncode 124 if exceeded)
  - Multi-line scripts run as one bash unit with errexit, nounset, pipefail
  - With stream=True stderr is merged into the stdout file; no stderr file
    is written
- Failure:
  - Returns CmdResult with exit code (does NOT raise on non-zero exit)
"""

import os
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from ..errors import EnvSourceError

SCRIPT_PROLOGUE = "set -euo pipefail\n"

# Sources an env file with allexport on and dumps the result NUL-separated.
SOURCE_SCRIPT = 'set +u; set -a; source "$1" >/dev/null; set +a; env -0'


def which(cmd: str, env: Mapping[str, str] | None = None) -> str | None:
    path = (env if env is not None else os.environ).get("PATH", "")
    for p in path.split(os.pathsep):
        if not p:
            continue
        candidate = Path(p) / cmd
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


@dataclass(frozen=True)
class CmdResult:
    cmd: str
    returncode: int
    stdout_path: Path
    stderr_path: Path
    elapsed_s: float
    stdout_bytes: int
    stderr_bytes: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def stdout_text(self) -> str:
        if not self.stdout_path.exists():
            return ""
        return self.stdout_path.read_text(encoding="utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        if not self.stderr_path.exists():
            return ""
        return self.stderr_path.read_text(encoding="utf-8", errors="replace")


def _temp_log(prefix: str) -> Path:
    tf = tempfile.NamedTemporaryFile(delete=False, prefix=prefix)
    tf.close()
    return Path(tf.name)


def run_cmd(
    cmd: str | list[str],
    cwd: Path,
    stdout_path: Path | None = None,
    stderr_path: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_s: float | None = None,
    stream: bool = False,
) -> CmdResult:
    """Run a command and store stdout/stderr to files.

    CONTRACT:
    - Accepts cmd as str (run with shell=True) or list[str] (run with shell=False).
    - Always writes the stdout file and, unless streaming, the stderr file
      (creates temp if not provided).
    - With stream=True, stdout and stderr are merged, echoed to the terminal
      line by line and written to stdout_path; stderr_path is removed if it
      exists and timeout_s is ignored.
    - Never raises for non-zero exit; caller inspects return code.
    """
    if stdout_path is None:
        stdout_path = _temp_log("docrun_stdout_")
    if stderr_path is None:
        stderr_path = Path(os.devnull) if stream else _temp_log("docrun_stderr_")

    stdout_path.parent.mkdir(parents=True, exist_ok=True)

    use_shell = isinstance(cmd, str)
    full_env = (dict(os.environ) | dict(env)) if env else None

    start_t = time.time()
    if stream:
        if stderr_path != Path(os.devnull):
            stderr_path.unlink(missing_ok=True)
        with stdout_path.open("w", encoding="utf-8") as out_f:
            try:
                rc = _run_streaming(cmd, cwd, full_env, use_shell, out_f)
            except OSError as e:
                rc = 127
                out_f.write(f"\nException: {e}\n")
    else:
        stderr_path.parent.mkdir(parents=True, exist_ok=True)
        with (
            stdout_path.open("w", encoding="utf-8") as out_f,
            stderr_path.open("w", encoding="utf-8") as err_f,
        ):
            try:
                p = subprocess.run(
                    cmd,
                    cwd=str(cwd),
                    shell=use_shell,
                    env=full_env,
                    stdout=out_f,
                    stderr=err_f,
                    timeout=timeout_s,
                    text=True,
                )
                rc = p.returncode
            except subprocess.TimeoutExpired:
                rc = 124
                err_f.write("\nTimeout expired.\n")
            except OSError as e:
                rc = 127
                err_f.write(f"\nException: {e}\n")

    end_t = time.time()

    out_b = stdout_path.stat().st_size if stdout_path.exists() else 0
    err_b = stderr_path.stat().st_size if stderr_path.exists() else 0

    return CmdResult(
        cmd=cmd if isinstance(cmd, str) else " ".join(cmd),
        returncode=rc,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
        elapsed_s=end_t - start_t,
        stdout_bytes=out_b,
        stderr_bytes=err_b,
    )


def _run_streaming(cmd, cwd: Path, env, use_shell: bool, out_f) -> int:
    with subprocess.Popen(
        cmd,
        cwd=str(cwd),
        shell=use_shell,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
    ) as proc:
        assert proc.stdout is not None
        for line in proc.stdout:
            sys.stdout.write(line)
            sys.stdout.flush()
            out_f.write(line)
        return proc.wait()


def run_script(
    body: str,
    cwd: Path,
    env: Mapping[str, str] | None = None,
    stdout_path: Path | None = None,
    stderr_path: Path | None = None,
    stream: bool = False,
    trace: bool = False,
) -> CmdResult:
    """Run a multi-line script as a single bash invocation."""
    prologue = SCRIPT_PROLOGUE + ("set -x\n" if trace else "")
    return run_cmd(
        ["bash", "-c", prologue + body],
        cwd=cwd,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
        env=env,
        stream=stream,
    )


def source_env(
    lines: list[str],
    env: Mapping[str, str],
    cwd: Path | None = None,
    timeout_s: float = 60,
) -> dict[str, str]:
    """Source env-file lines in bash and return the resulting environment.

    `env` is the complete starting environment (not an overlay). Output of the
    sourced commands is discarded; only the final environment is returned.
    """
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", prefix="docrun_env_", suffix=".sh", delete=False
    ) as tf:
        tf.write("\n".join(lines) + "\n")
    try:
        p = subprocess.run(
            ["bash", "-c", SOURCE_SCRIPT, "docrun-env", tf.name],
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as e:
        raise EnvSourceError(f"Sourcing env file timed out after {timeout_s}s") from e
    except OSError as e:
        raise EnvSourceError(f"Cannot run bash to source env file: {e}") from e
    finally:
        os.unlink(tf.name)

    if p.returncode != 0:
        err = p.stderr.decode("utf-8", errors="replace").strip()
        raise EnvSourceError(f"Sourcing env file failed (exit {p.returncode}): {err}")

    result: dict[str, str] = {}
    for entry in p.stdout.split(b"\0"):
        name, sep, value = entry.decode("utf-8", errors="replace").partition("=")
        if sep:
            result[name] = value
    return result


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run shell commands safely")
    parser.add_argument("--cmd", required=True, help="Command to run")
    parser.add_argument("--cwd", default=".", help="Working directory")
    parser.add_argument("--timeout", type=int, default=10, help="Timeout in seconds")
    args = parser.parse_args()

    res = run_cmd(cmd=args.cmd, cwd=Path(args.cwd), timeout_s=args.timeout)
    print(f"Exit code: {res.returncode}")
    print(f"Stdout: {res.stdout_text}")
    print(f"Stderr: {res.stderr_text}")
    sys.exit(res.returncode)
