from __future__ import annotations

"""Run the documentation inside a disposable libvirt VM.

CONTRACT
- Inputs: RunConfig (its project.vm section), project root
- Outputs (required):
  - VM `<vm.name>` defined and running under the session libvirt connection
  - artifacts/vm/{base-images,disks,cloud-init}/...
  - Exit status of the nested `docrun run` executed over SSH
- Invariants:
  - Resources converge in order: prereqs, image, cloud-init, vm-create,
    vm-start, vm-accessible; each is skipped when its check already holds
  - force=True destroys the VM (and its disk) before provisioning
  - The VM is kept after the run, passing or failing
  - The guest runs this docrun package (synced to vm.guest_src) with the
    dependencies cloud-init installs into vm.guest_venv, unless
    vm.remote_command overrides it
- Failure:
  - SSH wait is bounded by vm.ssh_attempts x vm.ssh_interval_s
"""

import shlex
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping

import yaml
from loguru import logger

from .checks.base import CheckContext
from .config import RunConfig, VmConfig
from .executor import RunSummary
from .lifecycle import LifecycleDriver, Resource
from .report import Reporter
from .util.events import EventLog
from .util.shell import run_cmd

SSH_OPTS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=ERROR",
]

# Installed into the guest venv so the synced docrun package can run there.
GUEST_REQUIREMENTS = (
    "typer>=0.12",
    "rich>=13.0",
    "loguru>=0.7",
    "pyyaml>=6.0",
    "pydantic>=2.0",
    "jsonschema>=4.0",
)

PACKAGE_DIR = Path(__file__).resolve().parent

INSTALL_HINT = """
Install with:
  sudo pacman -S libvirt virt-install cloud-image-utils  # Arch
  sudo apt-get install -y libvirt-daemon-system virtinst cloud-image-utils  # Ubuntu
  sudo usermod -aG libvirt $USER
  # Log out and back in for group membership
"""


@dataclass
class VmProvisioner:
    vm: VmConfig
    root: Path
    artifacts_dir: Path
    reporter: Reporter = field(default_factory=Reporter)
    sleep: Callable[[float], None] = time.sleep

    @property
    def image_path(self) -> Path:
        return self.artifacts_dir / "vm" / "base-images" / self.vm.image_name

    @property
    def disk_path(self) -> Path:
        return self.artifacts_dir / "vm" / "disks" / f"{self.vm.name}.qcow2"

    @property
    def cloud_init_dir(self) -> Path:
        return self.artifacts_dir / "vm" / "cloud-init"

    def virsh(self, *args: str) -> list[str]:
        return ["virsh", "--connect", self.vm.connect, *args]

    def ssh(self, *remote: str, connect_timeout: int | None = None) -> list[str]:
        cmd = ["ssh", "-q", *SSH_OPTS]
        if connect_timeout is not None:
            cmd += ["-o", f"ConnectTimeout={connect_timeout}"]
        return cmd + ["-p", str(self.vm.ssh_port), f"{self.vm.ssh_user}@localhost", *remote]

    def _run(self, cmd: list[str], stream: bool = False, timeout_s: float | None = None) -> int:
        return run_cmd(cmd, cwd=self.root, stream=stream, timeout_s=timeout_s).returncode

    def _domains(self, running_only: bool) -> list[str]:
        args = ["list", "--name"] if running_only else ["list", "--all", "--name"]
        res = run_cmd(self.virsh(*args), cwd=self.root, timeout_s=30)
        if not res.ok:
            return []
        return [line.strip() for line in res.stdout_text.splitlines() if line.strip()]

    # checks

    def check_prereqs(self, ctx: CheckContext) -> bool:
        for tool in ("virsh", "virt-install", "cloud-localds"):
            if not ctx.which(tool):
                return ctx.fail(f"{tool} not found")
            ctx.ok(f"{tool} available")
        return True

    def check_image(self, ctx: CheckContext) -> bool:
        if not self.image_path.is_file():
            return ctx.fail(f"image not found: {self.image_path}")
        return ctx.ok("base image cached")

    def check_cloud_init(self, ctx: CheckContext) -> bool:
        if not (self.cloud_init_dir / "cloud-init.img").is_file():
            return ctx.fail("cloud-init.img not found")
        return ctx.ok("cloud-init.img exists")

    def check_vm_create(self, ctx: CheckContext) -> bool:
        if self.vm.name not in self._domains(running_only=False):
            return ctx.fail(f"VM '{self.vm.name}' does not exist")
        return ctx.ok(f"VM '{self.vm.name}' exists")

    def check_vm_start(self, ctx: CheckContext) -> bool:
        if self.vm.name not in self._domains(running_only=True):
            return ctx.fail(f"VM '{self.vm.name}' not running")
        return ctx.ok(f"VM '{self.vm.name}' running")

    def ssh_reachable(self) -> bool:
        return self._run(self.ssh("true", connect_timeout=2), timeout_s=30) == 0

    def check_vm_accessible(self, ctx: CheckContext) -> bool:
        if not self.ssh_reachable():
            return ctx.fail(f"SSH to localhost:{self.vm.ssh_port} failed")
        return ctx.ok(f"SSH accessible at localhost:{self.vm.ssh_port}")

    # actions

    def run_prereqs(self, env: Mapping[str, str]) -> int:
        self.reporter.console.print(INSTALL_HINT, highlight=False, markup=False)
        return 1

    def run_image(self, env: Mapping[str, str]) -> int:
        self.image_path.parent.mkdir(parents=True, exist_ok=True)
        self.reporter.info(f"Downloading {self.vm.image_url}")
        return self._run(
            ["wget", "-q", "--show-progress", "-O", str(self.image_path), self.vm.image_url],
            stream=True,
        )

    def _ssh_public_key(self, env: Mapping[str, str]) -> str:
        ssh_dir = Path(env.get("HOME", str(Path.home()))) / ".ssh"
        for name in ("id_rsa.pub", "id_ed25519.pub"):
            if (ssh_dir / name).is_file():
                return (ssh_dir / name).read_text(encoding="utf-8").strip()
        self.reporter.info("Generating SSH key...")
        ssh_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        rc = self._run(["ssh-keygen", "-t", "ed25519", "-f", str(ssh_dir / "id_ed25519"), "-N", "", "-q"])
        if rc != 0:
            raise RuntimeError("ssh-keygen failed")
        return (ssh_dir / "id_ed25519.pub").read_text(encoding="utf-8").strip()

    def user_data(self, ssh_key: str) -> str:
        doc = {
            "users": [
                {
                    "name": self.vm.ssh_user,
                    "sudo": "ALL=(ALL) NOPASSWD:ALL",
                    "shell": "/bin/bash",
                    "groups": "kvm",
                    "ssh_authorized_keys": [ssh_key],
                }
            ],
            "package_update": True,
            "packages": ["git", "rsync", "python3", "python3-venv"],
            "runcmd": [
                ["python3", "-m", "venv", self.vm.guest_venv],
                [f"{self.vm.guest_venv}/bin/pip", "install", "--quiet", *GUEST_REQUIREMENTS],
                'echo "Cloud-init complete" > /var/log/cloud-init-done',
            ],
        }
        return "#cloud-config\n" + yaml.safe_dump(doc, sort_keys=False)

    def run_cloud_init(self, env: Mapping[str, str]) -> int:
        try:
            key = self._ssh_public_key(env)
        except (OSError, RuntimeError) as exc:
            self.reporter.fail(str(exc))
            return 1
        self.cloud_init_dir.mkdir(parents=True, exist_ok=True)
        user_data = self.cloud_init_dir / "user-data.yaml"
        user_data.write_text(self.user_data(key), encoding="utf-8")
        return self._run(["cloud-localds", str(self.cloud_init_dir / "cloud-init.img"), str(user_data)])

    def run_vm_create(self, env: Mapping[str, str]) -> int:
        self.disk_path.parent.mkdir(parents=True, exist_ok=True)
        rc = self._run([
            "qemu-img", "create", "-f", "qcow2",
            "-b", str(self.image_path), "-F", "qcow2",
            str(self.disk_path), self.vm.disk_size,
        ])
        if rc != 0:
            return rc
        netdev = (
            f"-netdev user,id=net0,hostfwd=tcp::{self.vm.ssh_port}-:22 "
            "-device virtio-net-pci,netdev=net0,addr=0x10"
        )
        return self._run([
            "virt-install", "--connect", self.vm.connect,
            "--name", self.vm.name,
            "--memory", str(self.vm.memory_mb),
            "--vcpus", str(self.vm.cpus),
            "--disk", str(self.disk_path),
            "--disk", f"{self.cloud_init_dir / 'cloud-init.img'},device=cdrom",
            "--os-variant", self.vm.os_variant,
            "--network", "none",
            "--graphics", "none",
            "--console", "pty,target_type=serial",
            "--noautoconsole",
            "--import",
            f"--qemu-commandline={netdev}",
        ], stream=True)

    def run_vm_start(self, env: Mapping[str, str]) -> int:
        return self._run(self.virsh("start", self.vm.name))

    def run_vm_accessible(self, env: Mapping[str, str]) -> int:
        self.reporter.info("Waiting for VM to be accessible...")
        for _ in range(self.vm.ssh_attempts):
            if self.ssh_reachable():
                self.reporter.info("Waiting for cloud-init to complete...")
                self._run(self.ssh("cloud-init status --wait"))
                return 0
            self.sleep(self.vm.ssh_interval_s)
        self.reporter.fail("Timeout waiting for VM")
        return 1

    def resources(self) -> list[Resource]:
        return [
            Resource("prereqs", self.run_prereqs, self.check_prereqs),
            Resource("image", self.run_image, self.check_image),
            Resource("cloud-init", self.run_cloud_init, self.check_cloud_init),
            Resource("vm-create", self.run_vm_create, self.check_vm_create),
            Resource("vm-start", self.run_vm_start, self.check_vm_start),
            Resource("vm-accessible", self.run_vm_accessible, self.check_vm_accessible),
        ]

    def destroy(self) -> None:
        if self.vm.name not in self._domains(running_only=False):
            return
        self.reporter.info("Destroying existing VM...")
        self._run(self.virsh("destroy", self.vm.name))
        self._run(self.virsh("undefine", self.vm.name, "--remove-all-storage"))
        self.disk_path.unlink(missing_ok=True)
        logger.info(f"destroyed VM {self.vm.name}")

    # handoff

    def _rsync(self, src: str, dest: str, *extra: str) -> int:
        ssh_cmd = " ".join(["ssh", *SSH_OPTS, "-p", str(self.vm.ssh_port)])
        return self._run(
            ["rsync", "-az", "-e", ssh_cmd, *extra, src, f"{self.vm.ssh_user}@localhost:{dest}"],
            stream=True,
        )

    def sync(self) -> int:
        self.reporter.banner("Syncing repository to VM...")
        excludes = [f"--exclude={e}" for e in self.vm.rsync_excludes]
        rc = self._rsync(f"{self.root}/", f"{self.vm.remote_dir}/", *excludes)
        if rc != 0 or self.vm.remote_command:
            return rc
        rc = self._run(self.ssh(f"mkdir -p {shlex.quote(self.vm.guest_src)}"))
        if rc != 0:
            return rc
        return self._rsync(
            f"{PACKAGE_DIR}/", f"{self.vm.guest_src}/docrun/", "--delete", "--exclude=__pycache__"
        )

    def guest_command(self) -> str:
        if self.vm.remote_command:
            return self.vm.remote_command
        src = self.vm.guest_src
        if not src.startswith("/"):
            src = f"$HOME/{src}"
        return f'PYTHONPATH="{src}" {self.vm.guest_venv}/bin/python -m docrun run'

    def remote_run(self, inner_args: list[str]) -> int:
        self.reporter.banner("Running docs in VM...")
        args = " ".join(shlex.quote(a) for a in inner_args)
        remote = f"cd {self.vm.remote_dir} && {self.guest_command()} {args}".rstrip()
        return self._run(self.ssh(remote), stream=True)

    def handoff(self, inner_args: list[str]) -> int:
        rc = self.sync()
        if rc != 0:
            return rc
        return self.remote_run(inner_args)


def inner_args(cfg: RunConfig) -> list[str]:
    args: list[str] = []
    if cfg.force:
        args.append("--force")
    if cfg.verbose:
        args.append("--verbose")
    if cfg.skip:
        args.append(f"--skip={','.join(cfg.skip)}")
    return args


def run_in_vm(
    cfg: RunConfig,
    *,
    reporter: Reporter | None = None,
    provisioner: VmProvisioner | None = None,
) -> RunSummary:
    reporter = reporter or Reporter(verbose=cfg.verbose)
    prov = provisioner or VmProvisioner(cfg.project.vm, cfg.root, cfg.artifacts_dir, reporter)
    events = EventLog(cfg.artifacts_dir / "events.jsonl", session="vm")

    driver = LifecycleDriver(
        prov.resources(),
        cfg.root,
        force=cfg.force,
        destroy=prov.destroy,
        source="vm",
        reporter=reporter,
        events=events,
    )
    started = time.monotonic()
    summary = driver.run(handoff=lambda: prov.handoff(inner_args(cfg)))
    elapsed = int(time.monotonic() - started)

    ssh_hint = f"ssh -p {cfg.project.vm.ssh_port} {cfg.project.vm.ssh_user}@localhost"
    reporter.console.print()
    if summary.ok:
        reporter.done(f"All tests passed! ({elapsed}s)")
        reporter.info(f"VM kept running. SSH: {ssh_hint}")
    elif summary.outcome_of("handoff") is not None:
        reporter.fail("Tests failed!")
        reporter.info(f"VM kept for debugging. SSH: {ssh_hint}")
    return summary
