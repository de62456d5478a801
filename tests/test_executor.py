import json

import pytest

from docrun.artifacts.store import ArtifactStore
from docrun.checks.base import CheckRegistry
from docrun.envstore import EnvironmentStore
from docrun.executor import CheckedRunner, Outcome, StepExecutor
from docrun.registry import Step
from docrun.util.events import EventLog


def _steps(*pairs):
    return [Step(id=i, source="guide.md", body=b, order=n) for n, (i, b) in enumerate(pairs)]


def _file_check(name):
    def check(ctx):
        if (ctx.root / name).exists():
            return ctx.ok(f"{name} exists")
        return ctx.fail(f"{name} missing")
    return check


@pytest.fixture
def store(tmp_path):
    return EnvironmentStore(tmp_path / "artifacts" / "env").load()


def _executor(store, checks, root, reporter, **kw):
    kw.setdefault("stream", False)
    return StepExecutor(store, checks, root, reporter=reporter, **kw)


def test_second_run_skips_satisfied_steps(tmp_path, store, reporter):
    checks = CheckRegistry({"make": _file_check("made.txt")})
    steps = _steps(("make", "echo built > made.txt"))

    first = _executor(store, checks, tmp_path, reporter).run(steps)
    assert first.outcome_of("make") is Outcome.RAN
    assert (tmp_path / "made.txt").read_text() == "built\n"

    (tmp_path / "made.txt").write_text("sentinel")
    second = _executor(store, checks, tmp_path, reporter).run(steps)
    assert second.outcome_of("make") is Outcome.SKIPPED
    assert (second.ran, second.skipped, second.failed) == (0, 1, 0)
    assert (tmp_path / "made.txt").read_text() == "sentinel"


def test_action_steps_always_run(tmp_path, store, reporter):
    steps = _steps(("run-app", "echo x >> runs.txt"))
    for _ in range(2):
        summary = _executor(store, CheckRegistry(), tmp_path, reporter).run(steps)
        assert summary.outcome_of("run-app") is Outcome.RAN
    assert (tmp_path / "runs.txt").read_text() == "x\nx\n"


def test_first_failure_stops_the_run(tmp_path, store, reporter):
    steps = _steps(
        ("ok", "export EARLY=1\ntrue"),
        ("broken", "false\necho unreachable > reached.txt"),
        ("later", "export LATER=1\ntouch later.txt"),
    )
    summary = _executor(store, CheckRegistry(), tmp_path, reporter).run(steps)

    assert [r.id for r in summary.results] == ["ok", "broken"]
    failure = summary.failure
    assert failure.id == "broken"
    assert failure.stage == "execution"
    assert "exited with status 1" in failure.message
    assert not (tmp_path / "reached.txt").exists()
    assert not (tmp_path / "later.txt").exists()
    assert store.lines == ["export EARLY=1"]
    assert "Stopping due to failure" in reporter.console.file.getvalue()


def test_pipeline_failure_fails_step(tmp_path, store, reporter):
    steps = _steps(("pipe", "false | cat"))
    summary = _executor(store, CheckRegistry(), tmp_path, reporter).run(steps)
    assert summary.outcome_of("pipe") is Outcome.FAILED


def test_exports_of_skipped_step_reach_later_steps(tmp_path, store, reporter):
    tool_home = tmp_path / "tool"
    tool_home.mkdir()

    def tool_installed(ctx):
        home = ctx.getenv("TOOL_HOME")
        if home and (ctx.root / "tool").samefile(home):
            return ctx.ok(f"TOOL_HOME={home}")
        return ctx.fail("TOOL_HOME not set")

    checks = CheckRegistry({"install": tool_installed})
    steps = _steps(
        ("install", f"export TOOL_HOME={tool_home}\nexit 1"),
        ("use", 'echo "$TOOL_HOME" > seen.txt'),
    )
    summary = _executor(store, checks, tmp_path, reporter).run(steps)

    assert summary.outcome_of("install") is Outcome.SKIPPED
    assert summary.outcome_of("use") is Outcome.RAN
    assert (tmp_path / "seen.txt").read_text().strip() == str(tool_home)
    assert (tmp_path / "artifacts" / "env").read_text() == f"export TOOL_HOME={tool_home}\n"


def test_postcondition_failure_is_fatal(tmp_path, store, reporter):
    checks = CheckRegistry({"install": _file_check("never.txt")})
    steps = _steps(("install", "echo pretending"), ("next", "touch next.txt"))
    summary = _executor(store, checks, tmp_path, reporter).run(steps)

    failure = summary.failure
    assert failure.id == "install"
    assert failure.stage == "postcondition"
    assert "command succeeded but postcondition failed: never.txt missing" in failure.message
    assert failure.observations == ("✗ never.txt missing",)
    assert summary.outcome_of("next") is None


def test_force_bypasses_precondition_not_postcondition(tmp_path, store, reporter):
    (tmp_path / "made.txt").write_text("old")
    checks = CheckRegistry({"make": _file_check("made.txt")})
    steps = _steps(("make", "echo new > made.txt"))

    summary = _executor(store, checks, tmp_path, reporter, force=True).run(steps)
    assert summary.outcome_of("make") is Outcome.RAN
    assert (tmp_path / "made.txt").read_text() == "new\n"

    steps = _steps(("make", "rm made.txt"))
    summary = _executor(store, checks, tmp_path, reporter, force=True).run(steps)
    assert summary.failure.stage == "postcondition"


def test_skip_set_bypasses_check_but_keeps_exports(tmp_path, store, reporter):
    called = []

    def check(ctx):
        called.append(True)
        return False

    checks = CheckRegistry({"sdk-download": check})
    steps = _steps(("sdk-download", "export ANDROID_HOME=/opt/sdk\ntouch ran.txt"))
    summary = _executor(store, checks, tmp_path, reporter, skip={"sdk-download"}).run(steps)

    result = summary.results[0]
    assert result.outcome is Outcome.SKIPPED
    assert result.message == "skipped by request"
    assert called == []
    assert not (tmp_path / "ran.txt").exists()
    assert store.lines == ["export ANDROID_HOME=/opt/sdk"]


def test_check_sees_store_environment(tmp_path, store, reporter):
    store.record("export MARKER=from-store")
    seen = []
    checks = CheckRegistry({"s": lambda ctx: seen.append(ctx.getenv("MARKER")) or True})
    _executor(store, checks, tmp_path, reporter, base_env={}).run(_steps(("s", "true")))
    assert seen == ["from-store"]


def test_step_logs_and_events(tmp_path, store, reporter):
    artifacts = ArtifactStore(tmp_path / "artifacts")
    events = EventLog(artifacts.events_path, session="docs")
    steps = _steps(("hello", "echo hello from step\necho oops >&2"))

    _executor(store, CheckRegistry(), tmp_path, reporter, artifacts=artifacts, events=events).run(steps)

    out, err = artifacts.step_logs("hello")
    assert out.read_text() == "hello from step\n"
    assert err.read_text() == "oops\n"
    records = [json.loads(l) for l in artifacts.events_path.read_text().splitlines()]
    assert records[-1]["stage"] == "step"
    assert records[-1]["id"] == "hello"
    assert records[-1]["outcome"] == "ran"
    assert records[-1]["session"] == "docs"


def test_verbose_shows_command(tmp_path, store, reporter):
    reporter.verbose = True
    _executor(store, CheckRegistry(), tmp_path, reporter).run(_steps(("v", "echo shown")))
    text = reporter.console.file.getvalue()
    assert "[CHECK] v" in text
    assert "echo shown" in text
    assert "[DONE] v" in text


def test_command_substitution_reaches_postcondition(tmp_path, store, reporter):
    def java_home(ctx):
        if ctx.env.get("JH") == "/opt/jdk":
            return ctx.ok("JH is /opt/jdk")
        return ctx.fail(f"JH is {ctx.env.get('JH')!r}")

    checks = CheckRegistry({"java-home": java_home})
    steps = _steps(("java-home", "export JH=$(dirname /opt/jdk/bin)"))

    summary = _executor(store, checks, tmp_path, reporter, force=True).run(steps)
    assert summary.outcome_of("java-home") is Outcome.RAN
    assert store.materialize() == [("JH", "/opt/jdk")]


def test_checked_runner_is_abstract(tmp_path):
    with pytest.raises(TypeError):
        CheckedRunner(CheckRegistry(), tmp_path)
