"""APT backend for Debian, Ubuntu and their derivatives."""
from __future__ import annotations

from pathlib import Path

from ..errors import FatalPrecondition
from ..repository import DOCKER_DEBIAN_FINGERPRINT, RepositoryOutcome, RepositorySource
from .base import COMPOSE_PLUGIN, ENGINE_PACKAGES, BaseBackend

KEY_PATH = Path("/etc/apt/keyrings/docker.asc")
LEGACY_KEY_PATH = Path("/etc/apt/keyrings/docker.gpg")
SOURCES_PATH = Path("/etc/apt/sources.list.d/docker.list")

PREREQUISITES = ("ca-certificates", "curl", "gnupg")
CONFLICTS = ("docker", "docker-engine", "docker.io", "containerd", "runc", "podman-docker")

# uname -m -> dpkg architecture, used when dpkg itself is unavailable.
MACHINE_ARCHITECTURES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "armv6l": "armhf",
    "ppc64le": "ppc64el",
    "s390x": "s390x",
}


class DebianBackend(BaseBackend):
    """Configure download.docker.com for APT and manage the docker-ce packages."""

    env = {"DEBIAN_FRONTEND": "noninteractive"}

    def setup_repository(self, channel: str) -> RepositoryOutcome:
        """Verify the signing key and write ``docker.list``."""
        release = self.release()
        architecture = self.architecture()
        source = RepositorySource(
            base_url=self.base_url,
            release=release,
            channel=channel,
            key_url=f"{self.base_url}/gpg",
            key_path=KEY_PATH,
            fingerprint=DOCKER_DEBIAN_FINGERPRINT,
            config_path=SOURCES_PATH,
        )
        repositories = self.context.repositories
        repositories.ensure_trust_tooling(
            [["apt-get", "update"], ["apt-get", "install", "-y", "gnupg"]],
            env=dict(self.env),
        )
        return repositories.provision(
            source,
            render_sources_line(source, architecture),
            refresh=[["apt-get", "update"]],
            env=dict(self.env),
        )

    def install(self, *, with_compose: bool) -> None:
        """Install prerequisites, drop legacy packages, then install docker-ce."""
        self.privileged(["apt-get", "install", "-y", *PREREQUISITES], tolerate=True)
        self.privileged(["apt-get", "remove", "-y", *CONFLICTS], tolerate=True)
        self.privileged(["apt-get", "install", "-y", *self.packages(with_compose=with_compose)])

    def uninstall(self) -> None:
        """Remove the packages, the source list and the signing key."""
        packages = [*ENGINE_PACKAGES, COMPOSE_PLUGIN, "docker-ce-rootless-extras"]
        self.privileged(["apt-get", "remove", "-y", *packages], tolerate=True)
        self.privileged(["apt-get", "autoremove", "-y"], tolerate=True)
        for path in (SOURCES_PATH, KEY_PATH, LEGACY_KEY_PATH):
            self.executor.remove_file(path)
        self.privileged(["apt-get", "update"], tolerate=True)

    def release(self) -> str:
        """Repository suite: the validated codename, else ``lsb_release -cs``."""
        if self.context.support.release:
            return self.context.support.release
        result = self.executor.query(["lsb_release", "-cs"])
        codename = (result.stdout or "").strip().lower()
        if result.returncode == 0 and codename:
            return codename
        raise FatalPrecondition("Unable to determine Debian/Ubuntu codename.")

    def architecture(self) -> str:
        """dpkg architecture name for the repository line."""
        result = self.executor.query(["dpkg", "--print-architecture"])
        value = (result.stdout or "").strip()
        if result.returncode == 0 and value:
            return value
        machine = self.context.machine().lower()
        return MACHINE_ARCHITECTURES.get(machine, machine)


def render_sources_line(source: RepositorySource, architecture: str) -> str:
    """Render the one-line APT source for *source*."""
    return (
        f"deb [arch={architecture} signed-by={source.key_path}] "
        f"{source.base_url} {source.release} {source.channel}\n"
    )


__all__ = ["DebianBackend", "render_sources_line"]
