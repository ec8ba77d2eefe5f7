"""Tests for the dockprov command line interface."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import FakeRunner, which_all
from typer.testing import CliRunner

from dockprov import __version__, cli
from dockprov.cli import app
from dockprov.execution import ExecutionMode, Executor, Privilege
from dockprov.logging import Reporter

runner = CliRunner()

DEBIAN_RELEASE = (
    'PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\n'
    'ID=debian\n'
    'VERSION_ID="12"\n'
    "VERSION_CODENAME=bookworm\n"
)


def _prepare_environment(tmp_path: Path, os_release: str = DEBIAN_RELEASE) -> dict[str, str]:
    """Point config, logs and host identity at ``tmp_path``."""
    release = tmp_path / "os-release"
    release.write_text(os_release, encoding="utf-8")
    return {
        "DOCKPROV_CONFIG_FILE": str(tmp_path / "config.yml"),
        "DOCKPROV_LOGS_DIR": str(tmp_path / "logs"),
        "DOCKPROV_OS_RELEASE": str(release),
        "USER": "alice",
    }


@pytest.fixture
def recorded(monkeypatch: pytest.MonkeyPatch) -> FakeRunner:
    """Route every command the CLI issues into a recorder."""
    fake = FakeRunner()

    def build(mode: ExecutionMode, reporter: Reporter) -> Executor:
        return Executor(mode, reporter, runner=fake)

    monkeypatch.setattr(cli, "_build_executor", build)
    monkeypatch.setattr(cli, "resolve_privilege", lambda: Privilege.ROOT)
    monkeypatch.setattr("shutil.which", which_all)
    return fake


def test_version_option_outputs_package_version() -> None:
    """CLI ``--version`` flag emits the package version."""
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_invocation_without_subcommand_shows_help() -> None:
    """Calling the CLI without a subcommand shows help output."""
    result = runner.invoke(app)

    assert result.exit_code == 0
    assert "Install or remove Docker Engine" in result.stdout


def test_detect_json(tmp_path: Path, recorded: FakeRunner) -> None:
    """`detect --json` reports the classification and changes nothing."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["detect", "--json"], env=env)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["family"] == "debian"
    assert payload["package_manager"] == "apt"
    assert payload["support"] == "supported"
    assert payload["release"] == "bookworm"
    assert recorded.calls == []


def test_detect_table_reports_unsupported_release(tmp_path: Path, recorded: FakeRunner) -> None:
    """`detect` never enforces the support decision."""
    env = _prepare_environment(tmp_path, 'ID=centos\nVERSION_ID="7"\n')

    result = runner.invoke(app, ["detect"], env=env)

    assert result.exit_code == 0
    assert "Host classification" in result.stdout
    assert "unsupported" in result.stdout


def test_install_dry_run(tmp_path: Path, recorded: FakeRunner) -> None:
    """A dry-run install prints the plan and writes no operation log."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["install", "--dry-run", "-y"], env=env)

    assert result.exit_code == 0, result.output
    assert "[dry-run]" in result.stdout
    assert "docker-ce" in result.stdout
    assert not (tmp_path / "logs" / "operations.jsonl").exists()
    assert {call[0] for call in recorded.calls} <= {"systemctl", "dpkg"}


def test_install_records_operation(tmp_path: Path, recorded: FakeRunner,
                                   monkeypatch: pytest.MonkeyPatch) -> None:
    """A real install appends one JSON record with its steps."""
    env = _prepare_environment(tmp_path)
    monkeypatch.setattr(
        "dockprov.engine.fetch_url", lambda url, dest, *, timeout: dest.write_bytes(b"key")
    )
    monkeypatch.setattr(
        "dockprov.repository.read_key_fingerprint",
        lambda executor, path: "9DC858229FC7DD38854AE2D88D81803C0EBFCD88",
    )
    monkeypatch.setattr("dockprov.providers.debian.KEY_PATH", tmp_path / "docker.asc")
    monkeypatch.setattr("dockprov.providers.debian.SOURCES_PATH", tmp_path / "docker.list")

    result = runner.invoke(app, ["install", "-y", "--skip-group-add"], env=env)

    assert result.exit_code == 0, result.output
    lines = (tmp_path / "logs" / "operations.jsonl").read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[-1])
    assert record["op"] == "install"
    assert record["result"]["status"] in {"success", "warning"}
    assert record["steps"][0] == {"name": "privilege", "status": "info", "detail": "root"}
    assert (tmp_path / "logs" / "dockprov.log").exists()


def test_invalid_channel_exits_with_validation_code(tmp_path: Path, recorded: FakeRunner) -> None:
    """Unknown channels are rejected before anything runs."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["install", "--channel", "nightly", "--dry-run", "-y"], env=env)

    assert result.exit_code == 2
    assert recorded.calls == []


def test_unreadable_os_release_exits_with_environment_code(tmp_path: Path,
                                                           recorded: FakeRunner) -> None:
    """A missing os-release is a fatal precondition."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(
        app,
        ["install", "--dry-run", "-y", "--os-release", str(tmp_path / "absent")],
        env=env,
    )

    assert result.exit_code == 3


def test_invalid_config_file_exits_with_validation_code(tmp_path: Path,
                                                        recorded: FakeRunner) -> None:
    """Unknown keys in the YAML config are rejected."""
    env = _prepare_environment(tmp_path)
    (tmp_path / "config.yml").write_text("surprise: true\n", encoding="utf-8")

    result = runner.invoke(app, ["uninstall", "--dry-run", "-y"], env=env)

    assert result.exit_code == 2


def test_declined_prompt_exits_with_aborted_code(tmp_path: Path, recorded: FakeRunner) -> None:
    """Answering no at the prompt aborts with exit code 1."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["uninstall", "--dry-run"], env=env, input="n\n")

    assert result.exit_code == 1
    assert "Aborted by user." in result.output
