"""Shared plumbing for package-manager backends."""
from __future__ import annotations

import platform
import shutil
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Protocol

from ..config import AppConfig, RunConfig
from ..distro import FamilyProfile, HostIdentity
from ..execution import CommandOutcome, Executor
from ..logging import Reporter
from ..repository import (
    DOCKER_RPM_FINGERPRINT,
    Fetcher,
    RepositoryOutcome,
    RepositoryProvisioner,
    RepositorySource,
    fetch_url,
)
from ..versions import SupportResult

ENGINE_PACKAGES: tuple[str, ...] = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
)
COMPOSE_PLUGIN = "docker-compose-plugin"


@dataclass(slots=True)
class ProvisionContext:
    """Everything a backend needs, resolved once per run."""

    executor: Executor
    reporter: Reporter
    run: RunConfig
    settings: AppConfig
    identity: HostIdentity
    profile: FamilyProfile
    support: SupportResult
    repositories: RepositoryProvisioner
    fetch: Fetcher = fetch_url
    which: Callable[[str], str | None] = shutil.which
    machine: Callable[[], str] = platform.machine


class PackageBackend(Protocol):
    """Capability set every distribution family provides."""

    def setup_repository(self, channel: str) -> RepositoryOutcome | None:
        """Configure the upstream package source for *channel*."""

    def install(self, *, with_compose: bool) -> None:
        """Install the runtime and, optionally, the compose plugin."""

    def uninstall(self) -> None:
        """Remove everything :meth:`setup_repository` and :meth:`install` added."""


class BaseBackend:
    """Helpers common to the concrete backends."""

    env: ClassVar[Mapping[str, str] | None] = None

    def __init__(self, context: ProvisionContext) -> None:
        """Bind the backend to *context*."""
        self.context = context

    @property
    def executor(self) -> Executor:
        """Shortcut to the run's executor."""
        return self.context.executor

    @property
    def reporter(self) -> Reporter:
        """Shortcut to the run's reporter."""
        return self.context.reporter

    @property
    def manager(self) -> str:
        """Package-manager binary resolved for this host."""
        binary = self.context.profile.package_manager.binary
        if binary is None:
            raise RuntimeError("Backend constructed without a package manager.")
        return binary

    @property
    def base_url(self) -> str:
        """Upstream repository root for this host's repository identity."""
        root = self.context.settings.repository.base_url.rstrip("/")
        return f"{root}/{self.context.profile.repo_identity}"

    def packages(self, *, with_compose: bool) -> list[str]:
        """Runtime packages to install, plus the compose plugin when requested."""
        packages = list(ENGINE_PACKAGES)
        if with_compose:
            packages.append(COMPOSE_PLUGIN)
        return packages

    def privileged(
        self,
        argv: Sequence[str],
        *,
        tolerate: bool = False,
    ) -> CommandOutcome:
        """Run *argv* as root with the backend's environment."""
        env = dict(self.env) if self.env else None
        return self.executor.run_privileged(argv, tolerate=tolerate, env=env)

    def rpm_source(
        self,
        channel: str,
        *,
        key_path: Path,
        config_path: Path,
        release: str = "",
    ) -> RepositorySource:
        """Source description shared by the RPM-based families."""
        return RepositorySource(
            base_url=self.base_url,
            release=release,
            channel=channel,
            key_url=f"{self.base_url}/gpg",
            key_path=key_path,
            fingerprint=DOCKER_RPM_FINGERPRINT,
            config_path=config_path,
        )


__all__ = [
    "BaseBackend",
    "COMPOSE_PLUGIN",
    "ENGINE_PACKAGES",
    "PackageBackend",
    "ProvisionContext",
]
