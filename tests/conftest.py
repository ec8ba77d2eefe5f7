"""Shared fixtures for the dockprov test suite.

No test executes a real subprocess: :class:`FakeRunner` stands in for
``subprocess.run`` and can optionally emulate the handful of file commands
(``install``, ``install -d``, ``cp -p``, ``rm -f``) the executor issues, so that re-run
behaviour can be exercised against files under ``tmp_path``.
"""
from __future__ import annotations

import io
import shutil
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from rich.console import Console

from dockprov.config import AppConfig, load_config
from dockprov.execution import ExecutionMode, Executor, Privilege
from dockprov.logging import Reporter


@dataclass
class FakeRunner:
    """Record commands and replay canned results keyed by argv prefix."""

    results: dict[tuple[str, ...], tuple[int, str, str]] = field(default_factory=dict)
    calls: list[list[str]] = field(default_factory=list)
    envs: list[Mapping[str, str] | None] = field(default_factory=list)
    emulate_files: bool = False

    def set(
        self,
        argv: Sequence[str],
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Return *returncode*/*stdout*/*stderr* for commands starting with *argv*."""
        self.results[tuple(argv)] = (returncode, stdout, stderr)

    def __call__(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        command = list(argv)
        self.calls.append(command)
        self.envs.append(env)
        returncode, stdout, stderr = self._lookup(command)
        if returncode == 0 and self.emulate_files:
            self._emulate(command)
        return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)

    def commands(self, name: str) -> list[list[str]]:
        """Return recorded calls whose program is *name*."""
        return [call for call in self.calls if call and call[0] == name]

    def _lookup(self, command: list[str]) -> tuple[int, str, str]:
        best: tuple[int, str, str] = (0, "", "")
        best_length = -1
        for prefix, result in self.results.items():
            length = len(prefix)
            if tuple(command[:length]) == prefix and length > best_length:
                best = result
                best_length = length
        return best

    def _emulate(self, command: list[str]) -> None:
        program = command[0]
        if program == "install" and "-d" in command:
            Path(command[-1]).mkdir(parents=True, exist_ok=True)
        elif program == "install":
            shutil.copyfile(command[-2], command[-1])
        elif program == "cp":
            shutil.copyfile(command[-2], command[-1])
        elif program == "rm":
            Path(command[-1]).unlink(missing_ok=True)


def make_reporter() -> Reporter:
    """Return a reporter writing to in-memory consoles."""
    return Reporter(
        console=Console(file=io.StringIO(), width=200, highlight=False, soft_wrap=True),
        err_console=Console(file=io.StringIO(), width=200, highlight=False, soft_wrap=True),
    )


def reporter_output(reporter: Reporter) -> str:
    """Return everything *reporter* printed to stdout and stderr."""
    out = reporter.console.file.getvalue()  # type: ignore[attr-defined]
    err = reporter.err_console.file.getvalue()  # type: ignore[attr-defined]
    return out + err


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Fresh command recorder."""
    return FakeRunner()


@pytest.fixture
def reporter() -> Reporter:
    """Reporter capturing output in memory."""
    return make_reporter()


@pytest.fixture
def make_executor(
    fake_runner: FakeRunner,
    reporter: Reporter,
) -> Callable[..., Executor]:
    """Factory for executors wired to the shared runner and reporter."""

    def factory(
        *,
        dry_run: bool = False,
        verbose: bool = False,
        privilege: Privilege = Privilege.ROOT,
    ) -> Executor:
        mode = ExecutionMode(dry_run=dry_run, verbose=verbose, privilege=privilege)
        return Executor(mode, reporter, runner=fake_runner)

    return factory


@pytest.fixture
def write_os_release(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing an os-release file from keyword fields."""

    def factory(**fields: str) -> Path:
        path = tmp_path / "os-release"
        lines = [f'{key}="{value}"' for key, value in fields.items()]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return factory


@pytest.fixture
def settings(tmp_path: Path) -> AppConfig:
    """Configuration isolated from the host's /etc and environment."""
    return load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={
            "logs_dir": str(tmp_path / "logs"),
            "os_release": str(tmp_path / "os-release"),
        },
    )


def which_all(name: str) -> str | None:
    """Pretend every program is installed."""
    return f"/usr/bin/{name}"


def which_none(name: str) -> str | None:
    """Pretend nothing is installed."""
    return None


def which_only(*names: str) -> Callable[[str], str | None]:
    """Return a ``which`` that finds only *names*."""

    def which(name: str) -> str | None:
        return f"/usr/bin/{name}" if name in names else None

    return which


@pytest.fixture
def debian_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> dict[str, Path]:
    """Redirect the APT key and source paths under ``tmp_path``."""
    from dockprov.providers import debian

    paths = {
        "KEY_PATH": tmp_path / "keyrings" / "docker.asc",
        "LEGACY_KEY_PATH": tmp_path / "keyrings" / "docker.gpg",
        "SOURCES_PATH": tmp_path / "sources.list.d" / "docker.list",
    }
    for name, value in paths.items():
        monkeypatch.setattr(debian, name, value)
    return paths
