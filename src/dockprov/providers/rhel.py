"""dnf/yum backend for RHEL rebuilds and Fedora."""
from __future__ import annotations

from pathlib import Path

from ..repository import RepositoryOutcome, RepositorySource
from .base import COMPOSE_PLUGIN, ENGINE_PACKAGES, BaseBackend

REPO_PATH = Path("/etc/yum.repos.d/docker-ce.repo")
KEY_PATH = Path("/etc/pki/rpm-gpg/docker.gpg")

CONFLICTS = (
    "docker",
    "docker-client",
    "docker-client-latest",
    "docker-common",
    "docker-latest",
    "docker-latest-logrotate",
    "docker-logrotate",
    "docker-engine",
    "podman-docker",
)
STORAGE_PREREQUISITES = ("yum-utils", "device-mapper-persistent-data", "lvm2")
SELINUX_POLICY = "container-selinux"


class RhelBackend(BaseBackend):
    """RPM repository and package handling for RHEL-compatible hosts and Fedora.

    The repository path segment comes from the resolved repository identity,
    ``centos`` for the RHEL rebuilds and ``fedora`` for Fedora.
    """

    def setup_repository(self, channel: str) -> RepositoryOutcome:
        """Verify the RPM signing key and write ``docker-ce.repo``."""
        source = self.rpm_source(channel, key_path=KEY_PATH, config_path=REPO_PATH)
        repositories = self.context.repositories
        repositories.ensure_trust_tooling([[self.manager, "install", "-y", "gnupg2"]])
        return repositories.provision(
            source,
            render_repo_file(source),
            after_key=[["rpm", "--import", str(KEY_PATH)]],
            refresh=[[self.manager, "makecache"]],
        )

    def install(self, *, with_compose: bool) -> None:
        """Remove conflicts, ensure the SELinux policy, then install docker-ce."""
        self.privileged([self.manager, "remove", "-y", *CONFLICTS], tolerate=True)
        self.privileged([self.manager, "install", "-y", *STORAGE_PREREQUISITES], tolerate=True)
        if self.executor.query(["rpm", "-q", SELINUX_POLICY]).returncode != 0:
            self.privileged([self.manager, "install", "-y", SELINUX_POLICY], tolerate=True)
        else:
            self.reporter.info(f"{SELINUX_POLICY} already installed.")
        self.privileged([self.manager, "install", "-y", *self.packages(with_compose=with_compose)])

    def uninstall(self) -> None:
        """Remove the packages, the repository file and the signing key."""
        self.privileged(
            [self.manager, "remove", "-y", *ENGINE_PACKAGES, COMPOSE_PLUGIN],
            tolerate=True,
        )
        self.executor.remove_file(REPO_PATH)
        self.executor.remove_file(KEY_PATH)
        self.privileged([self.manager, "makecache"], tolerate=True)


def render_repo_file(source: RepositorySource) -> str:
    """Render a yum/dnf ``.repo`` stanza for *source*."""
    return (
        f"[docker-ce-{source.channel}]\n"
        "name=Docker CE Repository\n"
        f"baseurl={source.base_url}/$releasever/$basearch/{source.channel}\n"
        "enabled=1\n"
        "gpgcheck=1\n"
        f"gpgkey=file://{source.key_path}\n"
    )


__all__ = ["RhelBackend", "render_repo_file"]
