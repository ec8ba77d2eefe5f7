"""Post-install sanity checks."""
from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass, field

from .execution import CommandOutcome, Executor
from .logging import Reporter


@dataclass(slots=True)
class VerificationReport:
    """Outcomes of the checks that ran."""

    outcomes: list[CommandOutcome] = field(default_factory=list)
    hello_world: bool = False
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "commands": [" ".join(outcome.argv) for outcome in self.outcomes],
            "hello_world": self.hello_world,
            "skipped": list(self.skipped),
        }


def verify_installation(
    executor: Executor,
    reporter: Reporter,
    *,
    with_compose: bool,
    run_hello_world: bool,
    service_manager: bool,
    which: Callable[[str], str | None] = shutil.which,
) -> VerificationReport:
    """Check the docker CLI, compose and optionally run ``hello-world``.

    ``docker --version`` failing is fatal. ``docker compose version`` may fail
    when only the standalone binary exists, in which case
    ``docker-compose --version`` must succeed instead.
    """
    report = VerificationReport()
    report.outcomes.append(_report(reporter, executor.run(["docker", "--version"])))

    if with_compose:
        if executor.dry_run or which("docker"):
            plugin = executor.run(["docker", "compose", "version"], tolerate=True)
            report.outcomes.append(_report(reporter, plugin))
            if not plugin.ok:
                standalone = executor.run(["docker-compose", "--version"])
                report.outcomes.append(_report(reporter, standalone))
        else:
            report.skipped.append("compose")

    if run_hello_world:
        if not service_manager:
            reporter.warn("Skipping hello-world run due to lack of running Docker daemon.")
            report.skipped.append("hello-world")
        else:
            report.outcomes.append(
                executor.run_privileged(["docker", "run", "--rm", "hello-world"])
            )
            report.hello_world = True
    return report


def _report(reporter: Reporter, outcome: CommandOutcome) -> CommandOutcome:
    text = outcome.stdout.strip()
    if outcome.ok and text:
        reporter.info(text.splitlines()[0])
    return outcome


__all__ = ["VerificationReport", "verify_installation"]
