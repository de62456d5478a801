"""Checks for the sample Android NativeAOT documentation.

Each function answers "is this step's effect already in place?" and records
what it observed. Steps without an entry here (e.g. `run-app`) are actions.
"""

from __future__ import annotations

import re
from pathlib import Path

from .base import CheckContext, CheckRegistry

NDK_VERSION = "27.2.12479018"
DOTNET_MAJOR = "11.0."
EMULATOR_SERIAL = "emulator-5554"
AVD_NAME = "test"

BUILTIN = CheckRegistry()


def _first_line(text: str | None) -> str:
    return text.splitlines()[0].strip() if text else ""


def _java_version(banner: str | None) -> str:
    m = re.search(r'"([^"]+)"', _first_line(banner))
    return m.group(1) if m else _first_line(banner)


def _android_home(ctx: CheckContext) -> Path | None:
    home = ctx.getenv("ANDROID_HOME")
    return Path(home) if home else None


def _dotnet(ctx: CheckContext) -> str | None:
    root = ctx.getenv("DOTNET_ROOT")
    if root and (Path(root) / "dotnet").is_file():
        return str(Path(root) / "dotnet")
    return ctx.which("dotnet")


@BUILTIN.register("prerequisites")
def prerequisites(ctx: CheckContext) -> bool:
    gcc = ctx.which("gcc")
    if not gcc:
        return ctx.fail("gcc not found")
    ctx.ok(f"gcc {_first_line(ctx.output([gcc, '--version']))} ({gcc})")

    java = ctx.which("java")
    if not java:
        return ctx.fail("java not found")
    ctx.ok(f"java {_java_version(ctx.output([java, '-version']))} ({java})")
    return True


@BUILTIN.register("java-home")
def java_home(ctx: CheckContext) -> bool:
    home = ctx.getenv("JAVA_HOME")
    if not home:
        return ctx.fail("JAVA_HOME not set")
    if not Path(home).is_dir():
        return ctx.fail(f"JAVA_HOME directory not found: {home}")
    version = _java_version(ctx.output([str(Path(home) / "bin" / "java"), "-version"]))
    return ctx.ok(f"JAVA_HOME {version} ({home})")


@BUILTIN.register("sdk-download")
def sdk_download(ctx: CheckContext) -> bool:
    home = _android_home(ctx)
    if home is None:
        return ctx.fail("ANDROID_HOME not set")
    sdkmanager = home / "cmdline-tools" / "latest" / "bin" / "sdkmanager"
    if not sdkmanager.is_file():
        return ctx.fail(f"sdkmanager not found at {sdkmanager}")
    version = _first_line(ctx.output([str(sdkmanager), "--version"]))
    return ctx.ok(f"sdkmanager {version} ({sdkmanager})")


@BUILTIN.register("sdk-licenses")
def sdk_licenses(ctx: CheckContext) -> bool:
    home = _android_home(ctx)
    licenses = (home / "licenses") if home else None
    if licenses is None or not licenses.is_dir():
        return ctx.fail(f"licenses directory not found at {licenses or '$ANDROID_HOME/licenses'}")
    return ctx.ok("SDK licenses accepted")


@BUILTIN.register("sdk-components")
def sdk_components(ctx: CheckContext) -> bool:
    home = _android_home(ctx)
    if home is None:
        return ctx.fail("ANDROID_HOME not set")
    adb = home / "platform-tools" / "adb"
    if not adb.is_file():
        return ctx.fail(f"adb not found at {adb}")
    banner = _first_line(ctx.output([str(adb), "version"]))
    ctx.ok(f"adb {banner.rsplit('version ', 1)[-1]} ({adb})")

    ndk = home / "ndk" / NDK_VERSION
    if not ndk.is_dir():
        return ctx.fail(f"NDK not found at {ndk}")
    version = NDK_VERSION
    props = ndk / "source.properties"
    if props.is_file():
        for line in props.read_text(encoding="utf-8", errors="replace").splitlines():
            if line.startswith("Pkg.Revision"):
                version = line.split("=", 1)[-1].strip()
    return ctx.ok(f"NDK {version} ({ndk})")


@BUILTIN.register("dotnet-install")
def dotnet_install(ctx: CheckContext) -> bool:
    dotnet = _dotnet(ctx)
    if not dotnet:
        return ctx.fail("dotnet not found in PATH or DOTNET_ROOT")
    version = ctx.output([dotnet, "--version"])
    if version is None:
        return ctx.fail("dotnet --version failed")
    if not version.startswith(DOTNET_MAJOR):
        return ctx.fail(f"dotnet version {version} (expected {DOTNET_MAJOR}x)")
    return ctx.ok(f"dotnet {version} ({dotnet})")


def feature_band(sdk_version: str) -> str:
    """'10.0.102' -> '10.0.100', '11.0.100-preview.1.x' -> '11.0.100'."""
    m = re.match(r"^(\d+)\.(\d+)\.\d+", sdk_version)
    return f"{m.group(1)}.{m.group(2)}.100" if m else ""


@BUILTIN.register("dotnet-workload")
def dotnet_workload(ctx: CheckContext) -> bool:
    dotnet = _dotnet(ctx)
    if not dotnet:
        return ctx.fail("dotnet not found")
    dotnet_root = Path(ctx.getenv("DOTNET_ROOT") or Path(dotnet).resolve().parent)

    listing = ctx.output([dotnet, "workload", "list"]) or ""
    workload = next((l for l in listing.splitlines() if "android" in l), "")
    if not workload:
        return ctx.fail("android workload not found in 'dotnet workload list'")

    m = re.search(r"SDK (\d+\.\d+\.\d+)", workload)
    workload_band = m.group(1) if m else ""
    sdk_band = feature_band(ctx.output([dotnet, "--version"]) or "")
    if workload_band != sdk_band:
        return ctx.fail(f"workload SDK band {workload_band} != current SDK band {sdk_band}")

    pack_roots = Path(ctx.getenv("DOTNETSDK_WORKLOAD_PACK_ROOTS") or dotnet_root / "packs")
    packs = sorted(pack_roots.glob("Microsoft.Android.Sdk.*")) + sorted(
        pack_roots.glob("*/Microsoft.Android.Sdk.*")
    )
    packs = [p for p in packs if p.is_dir()]
    if not packs:
        return ctx.fail(f"workload pack not found in {pack_roots}")

    parts = workload.split()
    version = parts[1] if len(parts) > 1 else "?"
    return ctx.ok(f"android workload {version} (SDK {workload_band}) ({packs[0]})")


@BUILTIN.register("build")
def build(ctx: CheckContext) -> bool:
    release = ctx.root / "sample" / "bin" / "Release"
    apks = [p for p in release.glob("**/*-Signed.apk") if "publish" in p.parts]
    if not apks:
        return ctx.fail("no signed APK found in sample/bin/Release/**/publish/")
    ctx.ok(f"signed APK exists: {apks[0].relative_to(ctx.root)}")

    if not (ctx.root / "sample" / "build.log").is_file():
        return ctx.fail("build.log not found")
    return ctx.ok("build.log exists")


BUILTIN.add("verify", build)


@BUILTIN.register("emulator-setup")
def emulator_setup(ctx: CheckContext) -> bool:
    avds = ctx.output(["avdmanager", "list", "avd"]) or ""
    if f"Name: {AVD_NAME}" not in avds:
        return ctx.fail(f"AVD '{AVD_NAME}' not found in 'avdmanager list avd'")
    return ctx.ok(f"AVD '{AVD_NAME}' exists")


@BUILTIN.register("emulator-start")
def emulator_start(ctx: CheckContext) -> bool:
    home = _android_home(ctx)
    adb = (home / "platform-tools" / "adb") if home else None
    if adb is None or not adb.is_file():
        return ctx.fail(f"adb not found at {adb or '$ANDROID_HOME/platform-tools/adb'}")

    devices = ctx.output([str(adb), "devices"]) or ""
    if EMULATOR_SERIAL not in devices:
        return ctx.fail(f"{EMULATOR_SERIAL} not in 'adb devices'")
    ctx.ok(f"{EMULATOR_SERIAL} connected")

    booted = (ctx.output([str(adb), "-s", EMULATOR_SERIAL, "shell", "getprop", "sys.boot_completed"]) or "").strip()
    if booted != "1":
        return ctx.fail(f"emulator not fully booted (sys.boot_completed={booted})")
    return ctx.ok("emulator fully booted")


def default_checks() -> CheckRegistry:
    return BUILTIN.copy()
