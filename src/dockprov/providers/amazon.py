"""Amazon Linux 2 backend.

Amazon ships docker through ``amazon-linux-extras`` and has no packaged
compose plugin, so compose is installed as a pinned standalone binary.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path

from .base import BaseBackend

COMPOSE_BINARY = Path("/usr/local/bin/docker-compose")
COMPOSE_RELEASE_URL = "https://github.com/docker/compose/releases/download"
CONFLICTS = ("docker", "docker-engine", "docker.io", "podman-docker")


class AmazonBackend(BaseBackend):
    """Provision docker from the amazon-linux-extras topic."""

    def setup_repository(self, channel: str) -> None:
        """Enable the ``docker`` extras topic; the channel does not apply here."""
        self.privileged(["amazon-linux-extras", "enable", "docker"])
        self.privileged(["yum", "clean", "metadata"])

    def install(self, *, with_compose: bool) -> None:
        """Install the distribution docker package and optionally compose."""
        self.privileged(["yum", "remove", "-y", *CONFLICTS], tolerate=True)
        self.privileged(["yum", "install", "-y", "docker"])
        if with_compose:
            self.install_compose_binary()

    def uninstall(self) -> None:
        """Remove docker, disable the extras topic and delete the compose binary."""
        self.privileged(["yum", "remove", "-y", "docker", "docker-engine"], tolerate=True)
        self.privileged(["amazon-linux-extras", "disable", "docker"], tolerate=True)
        self.executor.remove_file(COMPOSE_BINARY)

    def compose_url(self) -> str:
        """Download URL of the pinned compose release for this machine."""
        version = self.context.settings.compose_version
        return f"{COMPOSE_RELEASE_URL}/{version}/docker-compose-linux-{self.context.machine()}"

    def install_compose_binary(self) -> None:
        """Fetch the standalone compose binary and install it executable."""
        url = self.compose_url()
        if self.executor.dry_run:
            self.reporter.info(f"[dry-run] Would download {url} to {COMPOSE_BINARY}")
            return
        fd, temp_name = tempfile.mkstemp(prefix="dockprov-compose-")
        os.close(fd)
        temp = Path(temp_name)
        try:
            self.context.fetch(url, temp)
            self.executor.install_file(temp, COMPOSE_BINARY, mode=0o755, make_parents=True)
        finally:
            temp.unlink(missing_ok=True)
        self.reporter.warn(
            f"Compose V2 installed as standalone {COMPOSE_BINARY}; "
            "it will not receive package-manager updates."
        )


__all__ = ["AmazonBackend", "COMPOSE_BINARY"]
