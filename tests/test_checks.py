import os
import stat

from docrun.checks.base import CheckRegistry, Observation
from docrun.checks.builtin import BUILTIN, default_checks, feature_band


def test_missing_check_means_action(tmp_path):
    reg = CheckRegistry()
    assert not reg.has_check("run-app")
    res = reg.check("run-app", {}, tmp_path)
    assert not res.satisfied
    assert res.reason == "no check registered"


def test_register_decorator_and_observations(tmp_path):
    reg = CheckRegistry()

    @reg.register("tool")
    def tool(ctx):
        ctx.ok("first thing fine")
        return ctx.ok(f"TOOL={ctx.getenv('TOOL')}")

    res = reg.check("tool", {"TOOL": "/opt/tool"}, tmp_path)
    assert res.satisfied
    assert res.reason == ""
    assert res.rendered() == ["✓ first thing fine", "✓ TOOL=/opt/tool"]
    assert reg.ids() == ["tool"]


def test_unsatisfied_reason_is_last_failure(tmp_path):
    reg = CheckRegistry({"x": lambda ctx: ctx.fail("thing missing")})
    res = reg.check("x", {}, tmp_path)
    assert not res.satisfied
    assert res.reason == "thing missing"
    assert res.observations == (Observation(False, "thing missing"),)


def test_unsatisfied_without_observations(tmp_path):
    reg = CheckRegistry({"x": lambda ctx: False})
    assert reg.check("x", {}, tmp_path).reason == "check reported unsatisfied"


def test_exception_is_reported_as_unsatisfied(tmp_path):
    def boom(ctx):
        raise RuntimeError("kaboom")

    reg = CheckRegistry({"x": boom})
    res = reg.check("x", {}, tmp_path)
    assert not res.satisfied
    assert "kaboom" in res.reason
    assert res.rendered() == ["✗ check errored: kaboom"]


def test_context_sees_given_env(tmp_path):
    bindir = tmp_path / "bin"
    bindir.mkdir()
    tool = bindir / "mytool"
    tool.write_text("#!/bin/sh\necho tool-version 1.2\n")
    tool.chmod(tool.stat().st_mode | stat.S_IEXEC)

    seen = {}

    def probe(ctx):
        seen["which"] = ctx.which("mytool")
        seen["output"] = ctx.output(["mytool"])
        seen["var"] = ctx.output("echo $MARKER")
        seen["failing"] = ctx.output("exit 3")
        return True

    env = {"PATH": f"{bindir}{os.pathsep}{os.environ.get('PATH', '')}", "MARKER": "from-store"}
    CheckRegistry({"p": probe}).check("p", env, tmp_path)
    assert seen["which"] == str(tool)
    assert seen["output"] == "tool-version 1.2"
    assert seen["var"] == "from-store"
    assert seen["failing"] is None


def test_copy_is_independent():
    base = CheckRegistry({"a": lambda ctx: True})
    other = base.copy()
    other.add("b", lambda ctx: True)
    assert not base.has_check("b")


def test_default_checks_cover_sample_docs():
    checks = default_checks()
    for step_id in [
        "prerequisites", "java-home", "sdk-download", "sdk-licenses", "sdk-components",
        "dotnet-install", "dotnet-workload", "build", "verify", "emulator-setup", "emulator-start",
    ]:
        assert checks.has_check(step_id), step_id
    assert not checks.has_check("run-app")
    checks.add("extra", lambda ctx: True)
    assert not BUILTIN.has_check("extra")


def test_sdk_licenses(tmp_path):
    checks = default_checks()
    res = checks.check("sdk-licenses", {}, tmp_path)
    assert not res.satisfied
    assert "licenses directory not found" in res.reason

    (tmp_path / "licenses").mkdir()
    assert checks.check("sdk-licenses", {"ANDROID_HOME": str(tmp_path)}, tmp_path).satisfied


def test_java_home_unset(tmp_path):
    res = default_checks().check("java-home", {}, tmp_path)
    assert not res.satisfied
    assert res.reason == "JAVA_HOME not set"


def test_build_needs_signed_apk_and_log(tmp_path):
    checks = default_checks()
    res = checks.check("build", {}, tmp_path)
    assert res.reason == "no signed APK found in sample/bin/Release/**/publish/"

    publish = tmp_path / "sample" / "bin" / "Release" / "net11.0-android" / "android-arm64" / "publish"
    publish.mkdir(parents=True)
    (publish / "com.example.sample-Signed.apk").write_bytes(b"PK")
    res = checks.check("build", {}, tmp_path)
    assert not res.satisfied
    assert res.reason == "build.log not found"

    (tmp_path / "sample" / "build.log").write_text("Build succeeded.\n")
    res = checks.check("verify", {}, tmp_path)
    assert res.satisfied
    assert res.rendered()[-1] == "✓ build.log exists"


def test_feature_band():
    assert feature_band("10.0.102") == "10.0.100"
    assert feature_band("11.0.100-preview.1.25080.5") == "11.0.100"
    assert feature_band("garbage") == ""
