"""Provisioning orchestration.

Control flow for ``install``: resolve the host, validate support, run the
preflight checks, probe the environment, confirm, configure the repository,
install packages, enable the service, enrol the operator in the docker group
and verify. ``uninstall`` shares everything up to the confirmation and then
only dispatches the backend's uninstall.
"""
from __future__ import annotations

import functools
import os
import platform
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .config import AppConfig, RunConfig
from .distro import FamilyProfile, HostIdentity, load_host_identity, resolve_profile
from .environment import KERNEL_OSRELEASE, HostEnvironment, probe_environment
from .errors import FatalPrecondition, ProvisionAborted
from .execution import CommandOutcome, Executor, OutcomeStatus, Privilege
from .groups import (
    GroupMembershipPlan,
    GroupMembershipSpec,
    apply_membership_plan,
    plan_membership,
    resolve_target_user,
)
from .logging import Reporter
from .providers import ProvisionContext, SystemdProvider, backend_for
from .providers.base import BaseBackend
from .repository import (
    Fetcher,
    FingerprintReader,
    RepositoryOutcome,
    RepositoryProvisioner,
    fetch_url,
)
from .verify import VerificationReport, verify_installation
from .versions import SupportResult, validate_support

Confirm = Callable[[str], bool]


@dataclass(slots=True)
class Resolution:
    """Identity, profile and support decision for the host."""

    identity: HostIdentity
    profile: FamilyProfile
    support: SupportResult

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.identity.id,
            "version": self.identity.version,
            "like": list(self.identity.like),
            "codenames": list(self.identity.codenames),
            "pretty_name": self.identity.pretty_name,
            "family": self.profile.family.value,
            "package_manager": self.profile.package_manager.value,
            "repo_identity": self.profile.repo_identity,
            "matched_by": self.profile.matched_by,
            "support": self.support.decision.value,
            "reason": self.support.reason,
            "release": self.support.release,
            "warnings": list(self.support.warnings),
        }


@dataclass(slots=True)
class ProvisionReport:
    """Summary of a completed run."""

    action: str
    resolution: Resolution
    environment: HostEnvironment
    dry_run: bool = False
    repository: RepositoryOutcome | None = None
    group: GroupMembershipPlan | None = None
    verification: VerificationReport | None = None
    commands: list[CommandOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def tolerated(self) -> list[CommandOutcome]:
        """Commands whose failure was deliberately ignored."""
        return [outcome for outcome in self.commands if outcome.status is OutcomeStatus.TOLERATED]

    @property
    def changed(self) -> int:
        """Number of privileged commands that actually executed successfully."""
        return sum(
            1
            for outcome in self.commands
            if outcome.privileged and outcome.status is OutcomeStatus.OK
        )

    @property
    def backups(self) -> list[str]:
        """Backup files written while configuring the repository."""
        if self.repository is None or self.repository.backup is None:
            return []
        return [str(self.repository.backup)]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "action": self.action,
            "dry_run": self.dry_run,
            "resolution": self.resolution.to_dict(),
            "environment": self.environment.to_dict(),
            "repository_written": bool(self.repository and self.repository.written),
            "backups": self.backups,
            "group_actions": [action.kind for action in self.group.actions] if self.group else [],
            "verification": self.verification.to_dict() if self.verification else None,
            "tolerated": [" ".join(outcome.argv) for outcome in self.tolerated],
            "changed": self.changed,
        }


class ProvisioningEngine:
    """Drive a single install or uninstall run."""

    def __init__(
        self,
        settings: AppConfig,
        run: RunConfig,
        executor: Executor,
        reporter: Reporter,
        *,
        confirm: Confirm | None = None,
        which: Callable[[str], str | None] = shutil.which,
        fetch: Fetcher | None = None,
        fingerprint_reader: FingerprintReader | None = None,
        env: Mapping[str, str] | None = None,
        kernel_release: Path = KERNEL_OSRELEASE,
        machine: Callable[[], str] = platform.machine,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Wire the engine to its collaborators; nothing touches the host yet."""
        self.settings = settings
        self.run = run
        self.executor = executor
        self.reporter = reporter
        self.confirm = confirm
        self.which = which
        self.fetch = fetch or functools.partial(fetch_url, timeout=settings.download_timeout)
        self.fingerprint_reader = fingerprint_reader
        self.env = dict(os.environ if env is None else env)
        self.kernel_release = kernel_release
        self.machine = machine
        self.clock = clock
        self.systemd = SystemdProvider(executor, which=which)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def inspect(self) -> Resolution:
        """Read and classify the host without enforcing any decision."""
        identity = load_host_identity(self.settings.os_release)
        profile = resolve_profile(identity, which=self.which)
        support = validate_support(profile, identity)
        return Resolution(identity=identity, profile=profile, support=support)

    def resolve(self) -> Resolution:
        """Classify the host, failing on an unresolved family or unsupported version."""
        resolution = self.inspect()
        identity, profile, support = resolution.identity, resolution.profile, resolution.support
        if not profile.resolved:
            raise FatalPrecondition(f"Unsupported distribution '{identity.raw_id}'.")
        if profile.is_fallback:
            token = profile.matched_by.partition(":")[2]
            self.reporter.warn(
                f"Distribution '{identity.id}' is not explicitly supported; treating it as "
                f"{profile.family.value} (ID_LIKE={token})."
            )
        for message in support.warnings:
            self.reporter.warn(message)
        if support.fatal:
            raise FatalPrecondition(support.reason)
        self.reporter.info(
            f"Detected {identity.pretty_name or identity.id} "
            f"({profile.family.value}, {profile.package_manager.value}, "
            f"repository '{profile.repo_identity}')."
        )
        return resolution

    def preflight(self, resolution: Resolution) -> None:
        """Check the package manager and privilege path before any mutation."""
        binary = resolution.profile.package_manager.binary
        if binary is None or self.which(binary) is None:
            raise FatalPrecondition(
                f"Package manager '{binary or 'none'}' not found on PATH."
            )
        if not self.executor.dry_run and self.executor.mode.privilege is Privilege.NONE:
            raise FatalPrecondition("This action requires root privileges or sudo.")
        if self.run.channel == "test":
            self.reporter.warn("Test channel selected; using nightly builds where available.")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def install(self) -> ProvisionReport:
        """Install the runtime, enable it and enrol the operator."""
        resolution, environment, backend = self._prepare("installation")
        report = ProvisionReport(
            action="install",
            resolution=resolution,
            environment=environment,
            dry_run=self.executor.dry_run,
        )

        report.repository = backend.setup_repository(self.run.channel)
        backend.install(with_compose=self.run.with_compose)

        if environment.service_manager:
            self.systemd.enable_now()
        else:
            self.reporter.warn("Skipping service enable/start due to missing systemd.")

        report.group = self._enrol()

        verify_run = self.run.verify_run
        if verify_run is None:
            verify_run = environment.service_manager
        report.verification = verify_installation(
            self.executor,
            self.reporter,
            with_compose=self.run.with_compose,
            run_hello_world=verify_run,
            service_manager=environment.service_manager,
            which=self.which,
        )
        self.reporter.info("Docker installation complete.")
        return self._finish(report)

    def uninstall(self) -> ProvisionReport:
        """Stop the service and remove packages, repository and key."""
        resolution, environment, backend = self._prepare("uninstallation")
        report = ProvisionReport(
            action="uninstall",
            resolution=resolution,
            environment=environment,
            dry_run=self.executor.dry_run,
        )
        if environment.service_manager:
            self.systemd.disable_now()
        backend.uninstall()
        self.reporter.info("Docker uninstallation complete.")
        return self._finish(report)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _prepare(self, verb: str) -> tuple[Resolution, HostEnvironment, BaseBackend]:
        resolution = self.resolve()
        self.preflight(resolution)
        environment = probe_environment(
            self.systemd,
            self.reporter,
            tools=self.settings.prerequisite_tools,
            which=self.which,
            kernel_release=self.kernel_release,
        )
        self._confirm(verb)
        return resolution, environment, self._backend(resolution)

    def _confirm(self, verb: str) -> None:
        if self.run.assume_yes:
            return
        if self.confirm is None:
            raise ProvisionAborted("Confirmation required; re-run with --assume-yes.")
        if not self.confirm(f"Proceed with Docker {verb}?"):
            raise ProvisionAborted("Aborted by user.")

    def _backend(self, resolution: Resolution) -> BaseBackend:
        repositories = RepositoryProvisioner(
            self.executor,
            self.reporter,
            fetch=self.fetch,
            fingerprint_reader=self.fingerprint_reader,
            which=self.which,
            clock=self.clock,
        )
        context = ProvisionContext(
            executor=self.executor,
            reporter=self.reporter,
            run=self.run,
            settings=self.settings,
            identity=resolution.identity,
            profile=resolution.profile,
            support=resolution.support,
            repositories=repositories,
            fetch=self.fetch,
            which=self.which,
            machine=self.machine,
        )
        return backend_for(resolution.profile)(context)

    def _enrol(self) -> GroupMembershipPlan | None:
        if self.run.skip_group_add:
            self.reporter.info("Skipping docker group modification.")
            return None
        user = resolve_target_user(self.run.target_user, env=self.env)
        if not user:
            self.reporter.warn("Unable to determine target user for docker group.")
            return None
        plan = plan_membership(GroupMembershipSpec(user=user))
        for message in plan.warnings:
            self.reporter.warn(message)
        if not plan.status.user_exists:
            return plan
        if plan.satisfied:
            self.reporter.info(f"User '{user}' already in docker group.")
            return plan
        apply_membership_plan(plan, self.executor)
        if not self.executor.dry_run:
            self.reporter.info(
                f"Added '{user}' to docker group. User must log out/in to apply."
            )
        return plan

    def _finish(self, report: ProvisionReport) -> ProvisionReport:
        report.commands = list(self.executor.journal)
        report.warnings = list(self.reporter.warnings)
        return report


__all__ = [
    "Confirm",
    "ProvisionReport",
    "ProvisioningEngine",
    "Resolution",
]
