"""Error taxonomy shared by every provisioning stage.

Every fatal condition derives from :class:`ProvisionError` and carries the
exit code the CLI should terminate with. Tolerated command failures are not
exceptions at all; they surface as :class:`dockprov.execution.CommandOutcome`
values with a ``TOLERATED`` status.
"""
from __future__ import annotations

from collections.abc import Sequence

from .exit_codes import ExitCode


class ProvisionError(RuntimeError):
    """Base class for errors that abort a provisioning run."""

    exit_code: int = ExitCode.PROVIDER


class FatalPrecondition(ProvisionError):
    """Raised before any mutation when the host cannot be provisioned."""

    exit_code = ExitCode.ENVIRONMENT


class VerificationFailure(ProvisionError):
    """Raised when a downloaded signing key does not match its pinned fingerprint."""

    exit_code = ExitCode.VERIFICATION

    def __init__(self, url: str, expected: str, actual: str | None) -> None:
        """Record the key URL and both fingerprints for reporting."""
        self.url = url
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"GPG fingerprint mismatch for {url} "
            f"(expected {expected}, got {actual or 'nothing'})"
        )


class ProvisionAborted(ProvisionError):
    """Raised when the operator declines the confirmation prompt."""

    exit_code = ExitCode.ABORTED


class CommandError(ProvisionError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int,
        *,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Capture the failing command line and its output."""
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = stderr.strip() or stdout.strip() or "no output"
        super().__init__(
            f"{' '.join(self.argv)} failed (exit {returncode}): {message}"
        )

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        """Surface the child's status when it fits in a process exit code."""
        if 0 < self.returncode < 256:
            return self.returncode
        return int(ExitCode.PROVIDER)


__all__ = [
    "CommandError",
    "FatalPrecondition",
    "ProvisionAborted",
    "ProvisionError",
    "VerificationFailure",
]
