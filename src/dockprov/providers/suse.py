"""zypper backend for openSUSE and SLES."""
from __future__ import annotations

from pathlib import Path

from ..repository import RepositoryOutcome, RepositorySource
from .base import COMPOSE_PLUGIN, ENGINE_PACKAGES, BaseBackend

REPO_PATH = Path("/etc/zypp/repos.d/docker-ce.repo")
KEY_PATH = Path("/etc/pki/trust/anchors/docker.gpg")
CONFLICTS = ("docker", "docker-client", "containerd", "runc")

ZYPPER = ("zypper", "--non-interactive")


class SuseBackend(BaseBackend):
    """Configure the docker-ce zypper repository and manage its packages."""

    def setup_repository(self, channel: str) -> RepositoryOutcome:
        """Verify the signing key and write the zypper ``.repo`` file."""
        source = self.rpm_source(channel, key_path=KEY_PATH, config_path=REPO_PATH)
        repositories = self.context.repositories
        repositories.ensure_trust_tooling([[*ZYPPER, "install", "gpg2"]])
        return repositories.provision(
            source,
            render_repo_file(source),
            after_key=[["rpm", "--import", str(KEY_PATH)]],
            refresh=[[*ZYPPER, "refresh"]],
        )

    def install(self, *, with_compose: bool) -> None:
        """Remove distribution docker packages, then install docker-ce."""
        self.privileged([*ZYPPER, "remove", *CONFLICTS], tolerate=True)
        self.privileged([*ZYPPER, "install", *self.packages(with_compose=with_compose)])

    def uninstall(self) -> None:
        """Remove the packages, the repository file and the signing key."""
        self.privileged([*ZYPPER, "remove", *ENGINE_PACKAGES, COMPOSE_PLUGIN], tolerate=True)
        self.executor.remove_file(REPO_PATH)
        self.executor.remove_file(KEY_PATH)
        self.privileged([*ZYPPER, "refresh"], tolerate=True)


def render_repo_file(source: RepositorySource) -> str:
    """Render the zypper repository stanza for *source*."""
    return (
        f"[docker-ce-{source.channel}]\n"
        "name=Docker CE Repository\n"
        f"baseurl={source.base_url}/{source.channel}\n"
        "enabled=1\n"
        "gpgcheck=1\n"
        f"gpgkey=file://{source.key_path}\n"
    )


__all__ = ["SuseBackend", "render_repo_file"]
