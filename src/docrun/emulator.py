from __future__ import annotations

"""Stop the Android emulator started by the sample docs.

CONTRACT
- Inputs: force flag
- Outputs (required):
  - Console status line; returns True when the emulator is gone
- Invariants:
  - No-op when the serial is not listed by `adb devices`
  - Waits at most `attempts` x `interval_s` for the device to disappear
- Failure:
  - Never raises; a slow shutdown is reported as a warning
"""

import time
from pathlib import Path
from typing import Callable

from .checks.builtin import EMULATOR_SERIAL
from .report import Reporter
from .util.shell import run_cmd


def _listed(serial: str, cwd: Path) -> bool:
    res = run_cmd(["adb", "devices"], cwd=cwd, timeout_s=10)
    return res.ok and serial in res.stdout_text


def stop_emulator(
    *,
    force: bool = False,
    serial: str = EMULATOR_SERIAL,
    attempts: int = 30,
    interval_s: float = 1.0,
    cwd: Path | None = None,
    reporter: Reporter | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    reporter = reporter or Reporter()
    cwd = cwd or Path.cwd()

    if not _listed(serial, cwd):
        reporter.info("Emulator not running")
        return True

    if force:
        reporter.info("Force killing emulator...")
        run_cmd(["pkill", "-9", "-f", "emulator.*-avd"], cwd=cwd, timeout_s=10)
    else:
        reporter.info("Stopping emulator gracefully...")
    run_cmd(["adb", "-s", serial, "emu", "kill"], cwd=cwd, timeout_s=30)

    for _ in range(attempts):
        if not _listed(serial, cwd):
            reporter.done("Emulator stopped")
            return True
        sleep(interval_s)

    reporter.warn("Emulator may still be shutting down")
    return False
