import pytest
from typer.testing import CliRunner

from docrun.cli import app

runner = CliRunner()


@pytest.fixture
def project(tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "01-hello.md").write_text(
        "# Hello\n\n<!-- step: hello -->\n```bash\necho hi > hello.txt\n```\n"
    )
    return tmp_path


def test_cli_help():
    res = runner.invoke(app, ["--help"])
    assert res.exit_code == 0
    assert "Run the command blocks embedded in your docs" in res.stdout


def test_cli_version():
    res = runner.invoke(app, ["--version"])
    assert res.exit_code == 0
    assert "docrun version" in res.stdout


def test_subcommand_help():
    for args in (["run", "--help"], ["status", "--help"], ["vm", "run", "--help"], ["emulator", "stop", "--help"]):
        res = runner.invoke(app, args)
        assert res.exit_code == 0, args


def test_list_does_not_execute(project):
    res = runner.invoke(app, ["run", "--list", "--root", str(project)])
    assert res.exit_code == 0
    assert "hello" in res.stdout
    assert "always runs" in res.stdout
    assert not (project / "hello.txt").exists()
    assert not (project / "artifacts").exists()


def test_run_executes_steps(project):
    res = runner.invoke(app, ["run", "--root", str(project)])
    assert res.exit_code == 0, res.stdout
    assert (project / "hello.txt").read_text() == "hi\n"
    assert "Summary: 1 completed, 0 skipped, 0 failed" in res.stdout


def test_run_failure_exit_code(project):
    (project / "docs" / "02-bad.md").write_text("<!-- step: bad -->\n```bash\nexit 2\n```\n")
    res = runner.invoke(app, ["run", "--root", str(project)])
    assert res.exit_code == 1
    assert "Stopping due to failure" in res.stdout


def test_run_skip_option(project):
    res = runner.invoke(app, ["run", "--root", str(project), "--skip", "hello"])
    assert res.exit_code == 0
    assert not (project / "hello.txt").exists()
    assert "Summary: 0 completed, 1 skipped, 0 failed" in res.stdout


def test_missing_env_file(project):
    res = runner.invoke(app, ["run", "--root", str(project), "--env-file", str(project / "nope.env")])
    assert res.exit_code == 1
    assert "Error:" in res.stdout
    assert not (project / "hello.txt").exists()


def test_missing_docs_dir(tmp_path):
    res = runner.invoke(app, ["run", "--root", str(tmp_path)])
    assert res.exit_code == 1
    assert "Docs directory not found" in res.stdout


def test_invalid_project_file(project):
    (project / "docrun.yaml").write_text("bogus: true\n")
    res = runner.invoke(app, ["run", "--root", str(project)])
    assert res.exit_code == 1
    assert "Invalid docrun.yaml" in res.stdout


def test_status_lists_actions(project):
    res = runner.invoke(app, ["status", "--root", str(project)])
    assert res.exit_code == 0
    assert "ACTION" in res.stdout
    assert not (project / "artifacts").exists()


def test_bare_list_option(project):
    res = runner.invoke(app, ["--list", "--root", str(project)])
    assert res.exit_code == 0, res.stdout
    assert "hello" in res.stdout
    assert not (project / "hello.txt").exists()


def test_bare_force_option(project):
    res = runner.invoke(app, ["--force", "--root", str(project)])
    assert res.exit_code == 0, res.stdout
    assert (project / "hello.txt").read_text() == "hi\n"


def test_bare_skip_option(project):
    res = runner.invoke(app, ["--skip", "hello", "--root", str(project)])
    assert res.exit_code == 0, res.stdout
    assert not (project / "hello.txt").exists()
