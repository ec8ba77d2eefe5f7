"""Privilege- and dry-run-aware command execution.

Every externally visible mutation (package-manager calls, file installs,
service commands) goes through :class:`Executor`. Two call shapes exist:

* :meth:`Executor.run` executes as the invoking user.
* :meth:`Executor.run_privileged` executes as root, either directly or through
  the escalation mechanism resolved once at startup (:func:`resolve_privilege`).

Under dry-run neither shape executes anything: the fully formed command line is
logged and a ``DRY_RUN`` outcome is returned. Read-only probes use
:meth:`Executor.query`, which always executes and never raises on failure.
"""
from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .errors import CommandError, FatalPrecondition
from .logging import Reporter


class Privilege(str, Enum):
    """How privileged commands reach root."""

    ROOT = "root"
    SUDO = "sudo"
    NONE = "none"


def resolve_privilege(
    *,
    euid: int | None = None,
    which: Callable[[str], str | None] = shutil.which,
    sudo_bin: str = "sudo",
) -> Privilege:
    """Determine the privilege path for this process exactly once."""
    if euid is None:
        euid = os.geteuid()
    if euid == 0:
        return Privilege.ROOT
    if which(sudo_bin):
        return Privilege.SUDO
    return Privilege.NONE


@dataclass(frozen=True, slots=True)
class ExecutionMode:
    """Process-wide execution flags, fixed for the lifetime of a run."""

    dry_run: bool = False
    verbose: bool = False
    privilege: Privilege = Privilege.NONE


class OutcomeStatus(str, Enum):
    """Result classification for an executed (or simulated) command."""

    OK = "ok"
    DRY_RUN = "dry-run"
    TOLERATED = "tolerated"


@dataclass(slots=True)
class CommandOutcome:
    """What happened when a command was requested."""

    argv: list[str]
    privileged: bool
    status: OutcomeStatus
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    error: CommandError | None = None

    @property
    def ok(self) -> bool:
        """``True`` unless the command failed and the failure was tolerated."""
        return self.status is not OutcomeStatus.TOLERATED


Runner = Callable[..., subprocess.CompletedProcess[str]]


def _default_runner(
    argv: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    input: str | None = None,
) -> subprocess.CompletedProcess[str]:
    merged: dict[str, str] | None = None
    if env:
        merged = os.environ.copy()
        merged.update(env)
    return subprocess.run(  # noqa: S603
        list(argv),
        capture_output=True,
        text=True,
        check=False,
        env=merged,
        input=input,
    )


@dataclass
class Executor:
    """Single call path for commands and file mutations."""

    mode: ExecutionMode
    reporter: Reporter
    runner: Runner = _default_runner
    sudo_bin: str = "sudo"
    journal: list[CommandOutcome] = field(default_factory=list)

    @property
    def dry_run(self) -> bool:
        """Whether mutations are simulated."""
        return self.mode.dry_run

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def run(
        self,
        argv: Sequence[str],
        *,
        tolerate: bool = False,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> CommandOutcome:
        """Execute *argv* as the invoking user."""
        command = [str(item) for item in argv]
        if self.mode.dry_run:
            self.reporter.info(f"[dry-run] {_format(command, env)}")
            return self._record(command, privileged=False, status=OutcomeStatus.DRY_RUN)
        if self.mode.verbose:
            self.reporter.info(f"Running: {_format(command, env)}")
        return self._execute(command, command, privileged=False, tolerate=tolerate,
                             env=env, input=input)

    def run_privileged(
        self,
        argv: Sequence[str],
        *,
        tolerate: bool = False,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> CommandOutcome:
        """Execute *argv* as root, escalating through sudo when required."""
        command = [str(item) for item in argv]
        privilege = self.mode.privilege
        if self.mode.dry_run:
            label = _privilege_label(privilege)
            self.reporter.info(f"[dry-run] ({label}) {_format(command, env)}")
            return self._record(command, privileged=True, status=OutcomeStatus.DRY_RUN)
        if privilege is Privilege.NONE:
            raise FatalPrecondition(
                f"Root privileges are required for '{shlex.join(command)}' "
                "and sudo is not available."
            )
        if self.mode.verbose:
            self.reporter.info(f"Running ({privilege.value}): {_format(command, env)}")
        actual = command
        if privilege is Privilege.SUDO:
            actual = [self.sudo_bin]
            if env:
                actual.extend(["env", *(f"{key}={value}" for key, value in env.items())])
            actual.extend(command)
        return self._execute(command, actual, privileged=True, tolerate=tolerate,
                             env=env, input=input)

    def query(self, argv: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Run a read-only probe. Executes even under dry-run; never raises."""
        command = [str(item) for item in argv]
        if self.mode.verbose:
            self.reporter.info(f"Running (query): {_format(command, None)}")
        try:
            return self.runner(command)
        except FileNotFoundError as exc:
            return subprocess.CompletedProcess(command, 127, stdout="", stderr=str(exc))

    # ------------------------------------------------------------------
    # File mutations (always privileged)
    # ------------------------------------------------------------------

    def install_file(
        self,
        source: Path,
        dest: Path,
        *,
        mode: int = 0o644,
        make_parents: bool = False,
    ) -> None:
        """Install *source* at *dest* with *mode* via ``install(1)``."""
        if make_parents and not dest.parent.is_dir():
            self.run_privileged(["install", "-d", "-m", "0755", str(dest.parent)])
        self.run_privileged(["install", "-m", f"{mode:04o}", str(source), str(dest)])

    def write_file(self, dest: Path, content: str, *, mode: int = 0o644) -> bool:
        """Write *content* to *dest*; return ``False`` when it is already current."""
        if _read_text(dest) == content:
            return False
        if self.mode.dry_run:
            label = _privilege_label(self.mode.privilege)
            self.reporter.info(f"[dry-run] ({label}) write {dest} ({len(content)} bytes)")
            self._record(["write", str(dest)], privileged=True, status=OutcomeStatus.DRY_RUN)
            return True
        fd, temp_name = tempfile.mkstemp(prefix="dockprov-", suffix=f"-{dest.name}")
        temp = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            self.install_file(temp, dest, mode=mode, make_parents=True)
        finally:
            temp.unlink(missing_ok=True)
        return True

    def remove_file(self, path: Path, *, tolerate: bool = True) -> CommandOutcome:
        """Remove *path* if present (``rm -f``)."""
        return self.run_privileged(["rm", "-f", str(path)], tolerate=tolerate)

    def backup_file(self, path: Path, *, suffix: str) -> Path | None:
        """Copy *path* to ``<path>.bak.<suffix>`` preserving attributes."""
        if not path.is_file():
            return None
        backup = path.with_name(f"{path.name}.bak.{suffix}")
        self.run_privileged(["cp", "-p", str(path), str(backup)])
        return backup

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _execute(
        self,
        command: list[str],
        actual: list[str],
        *,
        privileged: bool,
        tolerate: bool,
        env: Mapping[str, str] | None,
        input: str | None,
    ) -> CommandOutcome:
        try:
            result = self.runner(actual, env=env, input=input)
        except FileNotFoundError as exc:
            result = subprocess.CompletedProcess(actual, 127, stdout="", stderr=str(exc))
        stdout = result.stdout or ""
        stderr = result.stderr or ""
        if result.returncode == 0:
            return self._record(command, privileged=privileged, status=OutcomeStatus.OK,
                                stdout=stdout, stderr=stderr)
        error = CommandError(command, result.returncode, stdout=stdout, stderr=stderr)
        if not tolerate:
            raise error
        self.reporter.warn(
            f"Ignoring failure (exit {result.returncode}): {shlex.join(command)}"
        )
        return self._record(
            command,
            privileged=privileged,
            status=OutcomeStatus.TOLERATED,
            returncode=result.returncode,
            stdout=stdout,
            stderr=stderr,
            error=error,
        )

    def _record(
        self,
        command: list[str],
        *,
        privileged: bool,
        status: OutcomeStatus,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        error: CommandError | None = None,
    ) -> CommandOutcome:
        outcome = CommandOutcome(
            argv=command,
            privileged=privileged,
            status=status,
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
            error=error,
        )
        self.journal.append(outcome)
        return outcome


def _privilege_label(privilege: Privilege) -> str:
    return privilege.value if privilege is not Privilege.NONE else "no privilege path"


def _format(command: Sequence[str], env: Mapping[str, str] | None) -> str:
    prefix = " ".join(f"{key}={value}" for key, value in (env or {}).items())
    joined = shlex.join(command)
    return f"{prefix} {joined}" if prefix else joined


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (FileNotFoundError, IsADirectoryError, PermissionError):
        return None


__all__ = [
    "CommandOutcome",
    "ExecutionMode",
    "Executor",
    "OutcomeStatus",
    "Privilege",
    "Runner",
    "resolve_privilege",
]
